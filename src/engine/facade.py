# ABOUTME: Composes extraction, weakness analysis, scoring, planning and ingestion into request-level calls.
# ABOUTME: Exposes recommend, plan_path and ingest_feedback to the surrounding service layer.

from __future__ import annotations

from typing import Iterable, Optional

from loguru import logger

from src.common.config import EngineConfig
from src.common.errors import MalformedRecordError
from src.common.schemas import FeedbackEvent, IngestAck, LearningPath, RecommendationResult, WeaknessProfile
from src.common.stores import CourseCatalogStore, LearnerStore, ProgressStore
from src.planner.cancellation import CancellationToken
from src.planner.graph import GraphValidator
from src.planner.optimizer import PathOptimizer
from src.recommender.features import CachedFeatureExtractor, normalize_learner
from src.recommender.model import RecommendationModel

from .ingest import FeedbackIngestor
from .weakness import WeaknessAnalyzer


class LearningEngine:
    """Request-level facade over the recommendation and path-planning engine."""

    def __init__(
        self,
        learner_store: LearnerStore,
        progress_store: ProgressStore,
        catalog_store: CourseCatalogStore,
        config: Optional[EngineConfig] = None,
        model: Optional[RecommendationModel] = None,
    ):
        self.config = config or EngineConfig()
        self.learner_store = learner_store
        self.progress_store = progress_store
        self.catalog_store = catalog_store

        self.extractor = CachedFeatureExtractor(self.config.features)
        self.analyzer = WeaknessAnalyzer(self.config.weakness)
        self.model = model or RecommendationModel(self.config.model, buckets=self.config.features.hash_buckets)
        self.optimizer = PathOptimizer(self.config.planner, GraphValidator())
        self.ingestor = FeedbackIngestor(
            progress_store=progress_store,
            learner_store=learner_store,
            catalog_store=catalog_store,
            model=self.model,
            analyzer=self.analyzer,
            extractor=self.extractor,
            config=self.config.ingest,
        )

    def recommend(self, learner_id: str, k: int = 5, snapshot_version: Optional[int] = None) -> RecommendationResult:
        """Top-k courses for the learner, excluding courses already completed."""

        if k < 1:
            raise MalformedRecordError("k must be at least 1")
        learner = normalize_learner(self.learner_store.get(learner_id))
        weakness = self.weakness(learner_id)
        completed = self._completed(learner_id)
        graph = self.catalog_store.get_graph()

        learner_vec = self.extractor.extract_learner(learner, weakness)
        candidates = [
            self.extractor.extract_course(course)
            for course_id, course in sorted(graph.courses.items())
            if course_id not in completed
        ]
        result = self.model.score(learner_vec, candidates, k=k, snapshot_version=snapshot_version)
        logger.debug(
            "recommend {} -> {} (model v{}, cold_start={})",
            learner_id,
            list(result.course_ids),
            result.model_version,
            result.cold_start,
        )
        return result

    def plan_path(
        self,
        learner_id: str,
        goal_skill_tags: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> LearningPath:
        """Minimum-cost course sequence reaching the goals (the learner's stated goals by default)."""

        learner = normalize_learner(self.learner_store.get(learner_id))
        goals = set(goal_skill_tags) if goal_skill_tags is not None else set(learner.goals)
        if not goals:
            raise MalformedRecordError(f"learner '{learner_id}' has no goal skills to plan toward")
        weakness = self.weakness(learner_id)
        path = self.optimizer.plan_path(
            current_skills=learner.skills,
            goal_skill_tags=goals,
            course_graph=self.catalog_store.get_graph(),
            deficiency_priorities=weakness.priorities() if weakness else None,
            completed=self._completed(learner_id),
            cancel_token=cancel_token,
            learner_id=learner_id,
        )
        logger.debug("plan {} goals={} -> {}", learner_id, sorted(goals), list(path.course_ids))
        return path

    def ingest_feedback(self, event: FeedbackEvent) -> IngestAck:
        return self.ingestor.ingest(event)

    def weakness(self, learner_id: str) -> Optional[WeaknessProfile]:
        """Latest recomputed weakness profile, computed on demand when none exists yet."""

        profile = self.ingestor.weakness(learner_id)
        if profile is not None:
            return profile
        history = self.progress_store.list_history(learner_id)
        if not any(record.attempts for record in history):
            return None
        return self.analyzer.analyze(history, learner_id=learner_id)

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self.ingestor.flush(timeout)

    def close(self) -> None:
        self.ingestor.close()

    def __enter__(self) -> "LearningEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _completed(self, learner_id: str) -> frozenset:
        return frozenset(record.course_id for record in self.progress_store.list_history(learner_id) if record.completed)
