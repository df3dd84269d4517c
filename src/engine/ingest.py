# ABOUTME: Consumes feedback events exactly once and fans them out to progress, weakness and model updates.
# ABOUTME: Serializes per-learner weakness recomputation and the global model update stream with bounded queues.

from __future__ import annotations

import math
import queue
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Callable, Deque, Dict, Iterable, Optional, Set, Tuple

from cachetools import TTLCache
from loguru import logger

from src.common.config import IngestConfig
from src.common.errors import MalformedRecordError, Overloaded
from src.common.schemas import FeedbackEvent, IngestAck, Outcome, QuizAttempt, WeaknessProfile
from src.common.stores import CourseCatalogStore, LearnerStore, ProgressStore
from src.recommender.features import CourseVector, FeatureExtractor, LearnerVector, normalize_learner
from src.recommender.model import RecommendationModel

from .weakness import WeaknessAnalyzer

_STOP = object()


@dataclass
class IngestStats:
    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    model_updates: int = 0
    weakness_runs: int = 0


class FeedbackIngestor:
    """
    At-least-once feedback in, exactly-once effects out.

    `ingest` validates and deduplicates under a lock, appends progress
    synchronously and returns; weakness recomputation (one drain per learner
    at a time) and model updates (one writer thread, FIFO) run in the
    background. Full queues reject new events with `Overloaded`.
    """

    def __init__(
        self,
        progress_store: ProgressStore,
        learner_store: LearnerStore,
        catalog_store: CourseCatalogStore,
        model: RecommendationModel,
        analyzer: Optional[WeaknessAnalyzer] = None,
        extractor: Optional[FeatureExtractor] = None,
        config: Optional[IngestConfig] = None,
        timer: Optional[Callable[[], float]] = None,
    ):
        self.config = config or IngestConfig()
        self.progress_store = progress_store
        self.learner_store = learner_store
        self.catalog_store = catalog_store
        self.model = model
        self.analyzer = analyzer or WeaknessAnalyzer()
        self.extractor = extractor or FeatureExtractor()

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        # Event ids are remembered for the redelivery window only.
        kwargs = {"timer": timer} if timer is not None else {}
        self._seen: TTLCache = TTLCache(
            maxsize=self.config.dedupe_max_entries, ttl=self.config.dedupe_window_seconds, **kwargs
        )
        self._pending = 0
        self._closed = False
        self._stats = IngestStats()
        self._weakness: Dict[str, WeaknessProfile] = {}
        self._learner_queues: Dict[str, Deque[str]] = {}
        self._draining: Set[str] = set()

        self._pool = ThreadPoolExecutor(max_workers=self.config.weakness_workers, thread_name_prefix="weakness")
        self._model_queue: "queue.Queue" = queue.Queue(maxsize=self.config.model_queue_size)
        self._model_thread = threading.Thread(target=self._run_model_updates, name="model-updates", daemon=True)
        self._model_thread.start()

    def ingest(self, event: FeedbackEvent) -> IngestAck:
        """Apply a feedback event once; duplicates are acknowledged without effect."""

        event = self._validate(event)
        with self._lock:
            if event.event_id in self._seen:
                self._stats.duplicates += 1
                return IngestAck(event.event_id, duplicate=True)

        learner = normalize_learner(self.learner_store.get(event.learner_id))
        course = self.catalog_store.get_graph().courses.get(event.course_id)
        if course is None:
            raise MalformedRecordError(f"event '{event.event_id}' references unknown course '{event.course_id}'")
        features = self.extractor.extract(learner, course, self._weakness.get(event.learner_id))

        with self._lock:
            if event.event_id in self._seen:
                self._stats.duplicates += 1
                return IngestAck(event.event_id, duplicate=True)
            if self._closed:
                raise Overloaded("Feedback ingestor is shut down")
            backlog = self._learner_queues.get(event.learner_id)
            if (backlog is not None and len(backlog) >= self.config.learner_queue_size) or self._model_queue.full():
                self._stats.rejected += 1
                logger.warning("rejecting event {}: queues full for learner {}", event.event_id, event.learner_id)
                raise Overloaded(f"Feedback queues are full for learner '{event.learner_id}'; retry later")

            self._apply_progress(event)
            self.learner_store.increment_interactions(event.learner_id)
            self._seen[event.event_id] = True
            self._stats.accepted += 1
            self._pending += 2

            # Only producers add, and they hold the lock, so this cannot block.
            self._model_queue.put_nowait((event, features))
            self._learner_queues.setdefault(event.learner_id, deque()).append(event.event_id)
            if event.learner_id not in self._draining:
                self._draining.add(event.learner_id)
                self._pool.submit(self._drain_learner, event.learner_id)

        logger.debug("accepted event {} ({}) for learner {}", event.event_id, event.outcome.value, event.learner_id)
        return IngestAck(event.event_id)

    def ingest_all(self, events: Iterable[FeedbackEvent], flush_timeout: Optional[float] = None) -> IngestStats:
        """Pump an event source, waiting for the queues to drain whenever they push back."""

        for event in events:
            try:
                self.ingest(event)
            except Overloaded:
                self.flush(flush_timeout)
                self.ingest(event)
        self.flush(flush_timeout)
        return self.stats()

    def weakness(self, learner_id: str) -> Optional[WeaknessProfile]:
        return self._weakness.get(learner_id)

    def stats(self) -> IngestStats:
        with self._lock:
            return IngestStats(**asdict(self._stats))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until every accepted event has been fully applied."""

        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._model_queue.put(_STOP)
        self._model_thread.join()
        self._pool.shutdown(wait=True)
        logger.info("feedback ingestor closed ({})", self.stats())

    def __enter__(self) -> "FeedbackIngestor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _validate(self, event: FeedbackEvent) -> FeedbackEvent:
        if not isinstance(event, FeedbackEvent):
            raise MalformedRecordError(f"Expected FeedbackEvent, got {type(event).__name__}")
        for name in ("event_id", "learner_id", "course_id"):
            value = getattr(event, name)
            if not isinstance(value, str) or not value.strip():
                raise MalformedRecordError(f"event is missing required field '{name}'")
        if not isinstance(event.timestamp, datetime):
            raise MalformedRecordError(f"event '{event.event_id}' has no valid timestamp")
        if not isinstance(event.outcome, Outcome):
            try:
                event = replace(event, outcome=Outcome(str(event.outcome)))
            except ValueError as exc:
                raise MalformedRecordError(f"event '{event.event_id}' has unknown outcome {event.outcome!r}") from exc
        if event.time_spent is None or not math.isfinite(event.time_spent) or event.time_spent < 0:
            raise MalformedRecordError(f"event '{event.event_id}' has invalid time_spent")
        if event.outcome == Outcome.QUIZ_RESULT and not (event.skill and event.skill.strip()):
            raise MalformedRecordError(f"quiz event '{event.event_id}' is missing its skill tag")
        self.model.target_for(event)
        return event

    def _apply_progress(self, event: FeedbackEvent) -> None:
        if event.outcome == Outcome.QUIZ_RESULT:
            attempt = QuizAttempt(timestamp=event.timestamp, score=float(event.value), skill=event.skill.strip())
            self.progress_store.append_attempt(event.learner_id, event.course_id, attempt, event.time_spent)
        elif event.outcome == Outcome.COMPLETION:
            if event.lesson_id:
                self.progress_store.append_lesson(event.learner_id, event.course_id, event.lesson_id, event.time_spent)
            elif event.value >= self.config.completion_threshold:
                self.progress_store.mark_completed(event.learner_id, event.course_id, event.time_spent)
            else:
                # Partial completion only counts as time on the course.
                self.progress_store.add_time(event.learner_id, event.course_id, event.time_spent)

    def _drain_learner(self, learner_id: str) -> None:
        while True:
            with self._lock:
                backlog = self._learner_queues.get(learner_id)
                if not backlog:
                    self._learner_queues.pop(learner_id, None)
                    self._draining.discard(learner_id)
                    return
                # Recomputation reads the full history, so pending triggers collapse into one run.
                batch = len(backlog)
                backlog.clear()
            try:
                history = self.progress_store.list_history(learner_id)
                profile = self.analyzer.analyze(history, learner_id=learner_id)
                with self._lock:
                    self._weakness[learner_id] = profile
                    self._stats.weakness_runs += 1
                logger.debug("weakness for {} recomputed: weak={}", learner_id, list(profile.weak_skills))
            except Exception:
                logger.exception("weakness recomputation failed for learner {}", learner_id)
                with self._lock:
                    self._stats.failed += batch
            finally:
                with self._lock:
                    self._pending -= batch
                    self._idle.notify_all()

    def _run_model_updates(self) -> None:
        while True:
            item = self._model_queue.get()
            if item is _STOP:
                self._model_queue.task_done()
                return
            event, features = item
            try:
                self._apply_model_update(event, features)
            except Exception:
                logger.exception("model update failed for event {}", event.event_id)
                with self._lock:
                    self._stats.failed += 1
            finally:
                with self._lock:
                    self._pending -= 1
                    self._idle.notify_all()
                self._model_queue.task_done()

    def _apply_model_update(self, event: FeedbackEvent, features: Tuple[LearnerVector, CourseVector]) -> None:
        self.model.update(event, features)
        with self._lock:
            self._stats.model_updates += 1
