# ABOUTME: Implements the online course-scoring model behind recommendations.
# ABOUTME: Keeps parameters in immutable versioned snapshots swapped atomically by a single writer.

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from src.common.config import ModelConfig
from src.common.errors import MalformedRecordError, StaleSnapshotError
from src.common.schemas import FeedbackEvent, Outcome, Rationale, Recommendation, RecommendationResult

from .features import CourseVector, LearnerVector
from .prior import PopulationPrior

PAIR_SCALARS = 9
GOAL_INDEX = 1
REMEDIATION_INDEX = 3

# Bias, goal alignment, proficiency overlap, remediation, difficulty gap,
# absolute gap, duration, prerequisites, interaction scale.
INITIAL_SCALAR_WEIGHTS = np.array([0.0, 2.0, -1.0, 1.5, 0.0, -1.0, -0.25, -0.1, 0.0])


def pair_features(learner: LearnerVector, course: CourseVector) -> np.ndarray:
    """Create the model input for one learner-course pair."""

    if learner.buckets != course.buckets:
        raise MalformedRecordError(
            f"Feature bucket mismatch: learner has {learner.buckets}, course has {course.buckets}"
        )
    goal_align = float(np.dot(learner.goals, course.gains))
    overlap = float(np.dot(learner.proficiency, course.gains))
    remediation = float(np.dot(learner.deficiency, course.gains))
    gap = course.difficulty - learner.mean_proficiency
    scalars = [
        1.0,
        goal_align,
        overlap,
        remediation,
        gap,
        abs(gap),
        course.duration,
        course.prerequisites,
        learner.interaction_scale,
    ]
    return np.concatenate([scalars, learner.goals * course.gains, learner.deficiency * course.gains])


def _sigmoid(z: float) -> float:
    z = float(np.clip(z, -60.0, 60.0))
    return 1.0 / (1.0 + np.exp(-z))


def _clamp_probability(p: float) -> float:
    return float(np.clip(np.nan_to_num(p, nan=0.0, posinf=1.0, neginf=0.0), 0.0, 1.0))


@dataclass(frozen=True, eq=False)
class ModelSnapshot:
    """Point-in-time, read-only copy of the model parameters."""

    version: int
    weights: np.ndarray
    buckets: int
    prior: PopulationPrior = field(default_factory=PopulationPrior)
    n_updates: int = 0

    @classmethod
    def initial(cls, buckets: int) -> "ModelSnapshot":
        weights = np.concatenate([INITIAL_SCALAR_WEIGHTS, np.zeros(2 * buckets)])
        weights.setflags(write=False)
        return cls(version=0, weights=weights, buckets=buckets)


class RecommendationModel:
    """
    Logistic course scorer with online updates over copy-on-write snapshots.

    Algorithm:
    1. Build pair features from learner and course vectors.
    2. Cold-start learners are scored by the population prior instead.
    3. Everyone else gets P(success) = sigmoid(w @ x).
    4. Each feedback event takes one gradient step toward the observed outcome,
       with a learning rate that shrinks as the learner accumulates interactions.
    5. The adjusted weights are clipped and published as a new snapshot version.
    """

    def __init__(
        self,
        config: Optional[ModelConfig] = None,
        buckets: int = 16,
        snapshot: Optional[ModelSnapshot] = None,
    ):
        self.config = config or ModelConfig()
        self._write_lock = threading.Lock()
        self._current = snapshot or ModelSnapshot.initial(buckets)
        self._retained: Tuple[ModelSnapshot, ...] = (self._current,)

    @property
    def version(self) -> int:
        return self._current.version

    def snapshot(self, version: Optional[int] = None) -> ModelSnapshot:
        """Return the current snapshot, or a pinned version still inside the retention window."""

        current = self._current
        if version is None or version == current.version:
            return current
        if version > current.version or version < 0:
            raise MalformedRecordError(f"Unknown model snapshot version {version}")
        for snap in self._retained:
            if snap.version == version:
                return snap
        raise StaleSnapshotError(version, current.version, self.config.retention_versions)

    def is_cold_start(self, learner: LearnerVector) -> bool:
        return learner.interaction_count < self.config.cold_start_threshold

    def predict(
        self, snapshot: ModelSnapshot, learner: LearnerVector, course: CourseVector
    ) -> Tuple[float, Rationale]:
        """Confidence in [0, 1] and rationale for one pair under the given snapshot."""

        cfg = self.config
        if self.is_cold_start(learner):
            confidence = snapshot.prior.score(
                course.course_id,
                course.difficulty,
                learner.mean_proficiency,
                alpha=cfg.prior_alpha,
                beta=cfg.prior_beta,
                fit_weight=cfg.prior_fit_weight,
            )
            return _clamp_probability(confidence), Rationale.COLD_START

        x = pair_features(learner, course)
        if len(x) != len(snapshot.weights):
            raise MalformedRecordError(
                f"Feature length {len(x)} does not match model snapshot v{snapshot.version} ({len(snapshot.weights)})"
            )
        confidence = _clamp_probability(_sigmoid(np.dot(snapshot.weights, x)))

        goal = snapshot.weights[GOAL_INDEX] * x[GOAL_INDEX]
        remediation = snapshot.weights[REMEDIATION_INDEX] * x[REMEDIATION_INDEX]
        if remediation > 0 and remediation >= goal:
            rationale = Rationale.REMEDIATION
        elif goal > 0:
            rationale = Rationale.GOAL_ALIGNED
        else:
            rationale = Rationale.PERSONALIZED
        return confidence, rationale

    def score(
        self,
        learner: LearnerVector,
        candidates: Sequence[CourseVector],
        k: Optional[int] = None,
        snapshot_version: Optional[int] = None,
    ) -> RecommendationResult:
        """Rank candidate courses by confidence (desc), breaking ties by course id (asc)."""

        if k is not None and k < 0:
            raise MalformedRecordError("k must be non-negative")
        snap = self.snapshot(snapshot_version)

        seen = set()
        scored = []
        for course in candidates:
            if course.course_id in seen:
                raise MalformedRecordError(f"Duplicate candidate course '{course.course_id}'")
            seen.add(course.course_id)
            confidence, rationale = self.predict(snap, learner, course)
            scored.append(Recommendation(course.course_id, confidence, rationale))

        scored.sort(key=lambda rec: (-rec.confidence, rec.course_id))
        if k is not None:
            scored = scored[:k]
        return RecommendationResult(
            learner_id=learner.learner_id,
            items=tuple(scored),
            model_version=snap.version,
            cold_start=self.is_cold_start(learner),
            status="ok" if scored else "no_candidates",
        )

    def target_for(self, event: FeedbackEvent) -> float:
        """Map a feedback outcome to a training label in [0, 1]."""

        value = float(event.value)
        if not np.isfinite(value):
            raise MalformedRecordError(f"event '{event.event_id}' has a non-finite value")
        if event.outcome == Outcome.RATING:
            if not 0.0 <= value <= self.config.rating_scale:
                raise MalformedRecordError(
                    f"event '{event.event_id}' rating {value} outside [0, {self.config.rating_scale}]"
                )
            return value / self.config.rating_scale
        if not 0.0 <= value <= 1.0:
            raise MalformedRecordError(f"event '{event.event_id}' value {value} outside [0, 1]")
        return value

    def update(self, event: FeedbackEvent, features: Tuple[LearnerVector, CourseVector]) -> ModelSnapshot:
        """Apply one bounded gradient step for the event and publish a new snapshot."""

        learner, course = features
        target = self.target_for(event)
        x = pair_features(learner, course)
        if not np.all(np.isfinite(x)):
            raise MalformedRecordError(f"event '{event.event_id}' produced non-finite features")

        cfg = self.config
        with self._write_lock:
            current = self._current
            if len(x) != len(current.weights):
                raise MalformedRecordError(
                    f"Feature length {len(x)} does not match model snapshot v{current.version}"
                )
            weights = np.array(current.weights, dtype=np.float64)
            prediction = _sigmoid(np.dot(weights, x))
            gradient = (prediction - target) * x + cfg.l2 * weights
            learning_rate = cfg.learning_rate / (1.0 + cfg.lr_decay * learner.interaction_count)
            step = learning_rate * gradient
            norm = float(np.linalg.norm(step))
            if norm > cfg.max_step:
                step *= cfg.max_step / norm
            weights = np.clip(weights - step, -cfg.weight_clip, cfg.weight_clip)
            weights = np.nan_to_num(weights, nan=0.0)
            weights.setflags(write=False)

            snapshot = ModelSnapshot(
                version=current.version + 1,
                weights=weights,
                buckets=current.buckets,
                prior=current.prior.observe(course.course_id, target),
                n_updates=current.n_updates + 1,
            )
            self._current = snapshot
            self._retained = (self._retained + (snapshot,))[-cfg.retention_versions :]

        logger.debug(
            "model v{} <- event {} (learner={}, course={}, target={:.2f}, pred={:.2f}, lr={:.4f})",
            snapshot.version,
            event.event_id,
            event.learner_id,
            event.course_id,
            target,
            prediction,
            learning_rate,
        )
        return snapshot

    def save(self, path: Path) -> None:
        """Save the current snapshot to an .npz file."""

        snap = self._current
        course_ids = sorted(snap.prior.outcomes)
        np.savez(
            path,
            weights=np.asarray(snap.weights),
            version=snap.version,
            buckets=snap.buckets,
            n_updates=snap.n_updates,
            prior_ids=np.array(course_ids, dtype=str),
            prior_trials=np.array([snap.prior.outcomes[c][0] for c in course_ids], dtype=np.int64),
            prior_successes=np.array([snap.prior.outcomes[c][1] for c in course_ids], dtype=np.float64),
        )

    @classmethod
    def load(cls, path: Path, config: Optional[ModelConfig] = None) -> "RecommendationModel":
        """Load a model whose current snapshot is the one stored at `path`."""

        data = np.load(path, allow_pickle=False)
        weights = np.array(data["weights"], dtype=np.float64)
        weights.setflags(write=False)
        prior = PopulationPrior(
            outcomes={
                str(course_id): (int(trials), float(successes))
                for course_id, trials, successes in zip(
                    data["prior_ids"], data["prior_trials"], data["prior_successes"]
                )
            }
        )
        snapshot = ModelSnapshot(
            version=int(data["version"]),
            weights=weights,
            buckets=int(data["buckets"]),
            prior=prior,
            n_updates=int(data["n_updates"]),
        )
        return cls(config=config, buckets=snapshot.buckets, snapshot=snapshot)
