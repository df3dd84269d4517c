# ABOUTME: Turns learner and course records into fixed-dimension numeric vectors for scoring.
# ABOUTME: Hashes skill tags into stable buckets and caches extraction results with a TTL.

from __future__ import annotations

import hashlib
import math
import numbers
import threading
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import numpy as np
from cachetools import TTLCache

from src.common.config import FeatureConfig
from src.common.errors import MalformedRecordError
from src.common.schemas import CourseNode, LearnerProfile, WeaknessProfile

LEARNER_SCALARS = 2
COURSE_SCALARS = 3


@dataclass(frozen=True, eq=False)
class LearnerVector:
    """Learner features: proficiency, goal and deficiency buckets, then two scalars."""

    learner_id: str
    values: np.ndarray
    interaction_count: int

    @property
    def buckets(self) -> int:
        return (len(self.values) - LEARNER_SCALARS) // 3

    @property
    def proficiency(self) -> np.ndarray:
        return self.values[: self.buckets]

    @property
    def goals(self) -> np.ndarray:
        return self.values[self.buckets : 2 * self.buckets]

    @property
    def deficiency(self) -> np.ndarray:
        return self.values[2 * self.buckets : 3 * self.buckets]

    @property
    def mean_proficiency(self) -> float:
        return float(self.values[-2])

    @property
    def interaction_scale(self) -> float:
        return float(self.values[-1])


@dataclass(frozen=True, eq=False)
class CourseVector:
    """Course features: skill-gain buckets, then difficulty, duration and prerequisite scalars."""

    course_id: str
    values: np.ndarray

    @property
    def buckets(self) -> int:
        return len(self.values) - COURSE_SCALARS

    @property
    def gains(self) -> np.ndarray:
        return self.values[: self.buckets]

    @property
    def difficulty(self) -> float:
        return float(self.values[-3])

    @property
    def duration(self) -> float:
        return float(self.values[-2])

    @property
    def prerequisites(self) -> float:
        return float(self.values[-1])


def skill_bucket(tag: str, buckets: int) -> int:
    """Stable bucket index for a skill tag (independent of PYTHONHASHSEED)."""

    digest = hashlib.blake2b(tag.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % buckets


def normalize_learner(profile: LearnerProfile) -> LearnerProfile:
    """Canonicalize skill and goal tags; duplicate tags keep their highest proficiency."""

    context = f"learner '{profile.learner_id}'"
    skills = _require_proficiencies(profile.skills, context)
    goals = _require_goals(profile.goals, context)
    merged: Dict[str, float] = {}
    for tag, value in skills.items():
        name = tag.strip()
        merged[name] = max(merged.get(name, 0.0), float(value))
    return LearnerProfile(
        learner_id=profile.learner_id,
        skills=merged,
        goals=frozenset(goal.strip() for goal in goals if goal.strip()),
        learning_style=profile.learning_style,
        interaction_count=profile.interaction_count,
    )


class FeatureExtractor:
    """Pure, deterministic projection of records into fixed-length vectors."""

    def __init__(self, config: Optional[FeatureConfig] = None):
        self.config = config or FeatureConfig()

    @property
    def learner_dim(self) -> int:
        return 3 * self.config.hash_buckets + LEARNER_SCALARS

    @property
    def course_dim(self) -> int:
        return self.config.hash_buckets + COURSE_SCALARS

    def extract(
        self,
        learner: LearnerProfile,
        course: CourseNode,
        weakness: Optional[WeaknessProfile] = None,
    ) -> Tuple[LearnerVector, CourseVector]:
        return self.extract_learner(learner, weakness), self.extract_course(course)

    def extract_learner(self, learner: LearnerProfile, weakness: Optional[WeaknessProfile] = None) -> LearnerVector:
        context = f"learner '{learner.learner_id}'"
        skills = _require_proficiencies(learner.skills, context)
        goals = _require_goals(learner.goals, context)
        if learner.interaction_count < 0:
            raise MalformedRecordError(f"{context} has negative interaction_count")

        buckets = self.config.hash_buckets
        proficiency = self._hash_unit_sum(skills)
        goal_buckets = self._hash_unit_sum({goal: 1.0 for goal in goals})
        deficiency = self._hash_unit_sum(weakness.priorities()) if weakness is not None else np.zeros(buckets)

        mean_prof = float(np.mean(list(skills.values()))) if skills else 0.0
        interaction_scale = min(
            1.0, math.log1p(learner.interaction_count) / math.log1p(self.config.interaction_scale)
        )
        values = np.concatenate([proficiency, goal_buckets, deficiency, [mean_prof, interaction_scale]])
        values.setflags(write=False)
        return LearnerVector(
            learner_id=learner.learner_id,
            values=values,
            interaction_count=learner.interaction_count,
        )

    def extract_course(self, course: CourseNode) -> CourseVector:
        context = f"course '{course.course_id}'"
        gains = _require_skill_map(course.skill_gains, context)
        if not gains:
            raise MalformedRecordError(f"{context} teaches no skills")
        if any(value <= 0 for value in gains.values()):
            raise MalformedRecordError(f"{context} has a non-positive skill gain")
        if course.duration is None or not math.isfinite(course.duration) or course.duration <= 0:
            raise MalformedRecordError(f"{context} duration must be a positive number")
        if course.difficulty is None or course.difficulty < 1:
            raise MalformedRecordError(f"{context} difficulty tier must be >= 1")

        cfg = self.config
        if cfg.max_difficulty_tier > 1:
            difficulty = min(1.0, (course.difficulty - 1) / (cfg.max_difficulty_tier - 1))
        else:
            difficulty = 0.0
        duration = min(1.0, math.log1p(course.duration) / math.log1p(cfg.duration_scale))
        prerequisites = min(1.0, len(course.prerequisites) / cfg.prerequisite_scale)

        values = np.concatenate([self._hash_unit_sum(gains), [difficulty, duration, prerequisites]])
        values.setflags(write=False)
        return CourseVector(course_id=course.course_id, values=values)

    def _hash_unit_sum(self, weights: Mapping[str, float]) -> np.ndarray:
        vector = np.zeros(self.config.hash_buckets, dtype=np.float64)
        # Sorted so floating-point accumulation order is fixed.
        for tag in sorted(weights):
            vector[skill_bucket(tag, self.config.hash_buckets)] += float(weights[tag])
        total = vector.sum()
        if total > 0:
            vector /= total
        return vector


class CachedFeatureExtractor(FeatureExtractor):
    """FeatureExtractor with a TTL cache keyed on the content of its inputs.

    Extraction is pure, so two threads racing on the same miss compute the same
    vectors; the lock only guards the cache's internal bookkeeping.
    """

    def __init__(self, config: Optional[FeatureConfig] = None, timer: Callable[[], float] = None):
        super().__init__(config)
        kwargs = {"timer": timer} if timer is not None else {}
        self._learners: TTLCache = TTLCache(
            maxsize=self.config.cache_max_entries, ttl=self.config.cache_ttl_seconds, **kwargs
        )
        self._courses: TTLCache = TTLCache(
            maxsize=self.config.cache_max_entries, ttl=self.config.cache_ttl_seconds, **kwargs
        )
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def extract_learner(self, learner: LearnerProfile, weakness: Optional[WeaknessProfile] = None) -> LearnerVector:
        # Keys are only built from validated content.
        context = f"learner '{learner.learner_id}'"
        _require_proficiencies(learner.skills, context)
        _require_goals(learner.goals, context)
        key = (_learner_fingerprint(learner), _weakness_fingerprint(weakness))
        return self._cached(self._learners, key, lambda: super(CachedFeatureExtractor, self).extract_learner(learner, weakness))

    def extract_course(self, course: CourseNode) -> CourseVector:
        _require_skill_map(course.skill_gains, f"course '{course.course_id}'")
        key = _course_fingerprint(course)
        return self._cached(self._courses, key, lambda: super(CachedFeatureExtractor, self).extract_course(course))

    def _cached(self, cache: TTLCache, key, compute):
        with self._lock:
            hit = cache.get(key)
            if hit is not None:
                self.hits += 1
                return hit
            self.misses += 1
        value = compute()
        with self._lock:
            cache[key] = value
        return value

    def clear(self) -> None:
        with self._lock:
            self._learners.clear()
            self._courses.clear()


def _require_skill_map(skills, context: str) -> Mapping[str, float]:
    if skills is None:
        raise MalformedRecordError(f"{context} is missing its skill map")
    if not isinstance(skills, Mapping):
        raise MalformedRecordError(f"{context} skill map must be a mapping")
    for tag, value in skills.items():
        if not isinstance(tag, str) or not tag.strip():
            raise MalformedRecordError(f"{context} has an invalid skill tag {tag!r}")
        if not isinstance(value, numbers.Real) or isinstance(value, bool) or not math.isfinite(value):
            raise MalformedRecordError(f"{context} skill '{tag}' has a non-numeric value {value!r}")
    return skills


def _require_proficiencies(skills, context: str) -> Mapping[str, float]:
    skills = _require_skill_map(skills, context)
    for tag, value in skills.items():
        if not 0.0 <= value <= 1.0:
            raise MalformedRecordError(f"{context} proficiency for '{tag}' outside [0, 1]: {value}")
    return skills


def _require_goals(goals, context: str) -> FrozenSet[str]:
    if goals is None:
        raise MalformedRecordError(f"{context} is missing its goal set")
    if isinstance(goals, str) or not isinstance(goals, Iterable):
        raise MalformedRecordError(f"{context} goals must be a collection of skill tags")
    goals = tuple(goals)
    if not all(isinstance(goal, str) for goal in goals):
        raise MalformedRecordError(f"{context} has a non-string goal tag")
    return frozenset(goals)


def _learner_fingerprint(learner: LearnerProfile):
    return (
        learner.learner_id,
        tuple(sorted(learner.skills.items())),
        tuple(sorted(learner.goals)),
        learner.interaction_count,
    )


def _course_fingerprint(course: CourseNode):
    return (
        course.course_id,
        tuple(sorted(course.skill_gains.items())),
        tuple(sorted(course.prerequisites or (), key=str)),
        course.duration,
        course.difficulty,
    )


def _weakness_fingerprint(weakness: Optional[WeaknessProfile]):
    if weakness is None:
        return None
    return tuple(sorted(weakness.priorities().items()))
