# ABOUTME: Defines canonical data structures shared by the recommender, planner and ingestor.
# ABOUTME: Centralizes learner, course, progress, weakness, feedback and result records.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple


@dataclass(frozen=True)
class LearnerProfile:
    """Learner skill state as supplied by the surrounding service."""

    learner_id: str
    skills: Mapping[str, float]
    goals: FrozenSet[str] = frozenset()
    learning_style: str = "unspecified"
    interaction_count: int = 0

    def with_interactions(self, interaction_count: int) -> "LearnerProfile":
        return replace(self, interaction_count=interaction_count)


@dataclass(frozen=True)
class CourseNode:
    """Catalog course with its taught skills and prerequisite edges."""

    course_id: str
    skill_gains: Mapping[str, float]
    prerequisites: FrozenSet[str] = frozenset()
    duration: float = 1.0
    difficulty: int = 1


@dataclass(frozen=True)
class CourseGraph:
    """Versioned snapshot of the course catalog."""

    version: int
    courses: Mapping[str, CourseNode]

    def __len__(self) -> int:
        return len(self.courses)

    def teaches(self, skill: str) -> bool:
        return any(skill in course.skill_gains for course in self.courses.values())


@dataclass(frozen=True)
class QuizAttempt:
    timestamp: datetime
    score: float
    skill: str


@dataclass(frozen=True)
class ProgressRecord:
    """Append-only progress of one learner on one course."""

    learner_id: str
    course_id: str
    attempts: Tuple[QuizAttempt, ...] = ()
    completed_lessons: FrozenSet[str] = frozenset()
    time_spent: float = 0.0
    completed: bool = False

    def append_attempt(self, attempt: QuizAttempt, time_spent: float = 0.0) -> "ProgressRecord":
        return replace(self, attempts=self.attempts + (attempt,), time_spent=self.time_spent + time_spent)

    def append_lesson(self, lesson_id: str, time_spent: float = 0.0) -> "ProgressRecord":
        return replace(
            self,
            completed_lessons=self.completed_lessons | {lesson_id},
            time_spent=self.time_spent + time_spent,
        )

    def mark_completed(self, time_spent: float = 0.0) -> "ProgressRecord":
        return replace(self, completed=True, time_spent=self.time_spent + time_spent)

    def add_time(self, time_spent: float) -> "ProgressRecord":
        return replace(self, time_spent=self.time_spent + time_spent)


@dataclass(frozen=True)
class WeaknessProfile:
    """Per-skill deficiency scores derived from a learner's quiz history."""

    learner_id: str
    deficiencies: Mapping[str, float]
    attempt_counts: Mapping[str, int]
    weak_skills: Tuple[str, ...]
    as_of: Optional[datetime] = None

    def is_weak(self, skill: str) -> bool:
        return skill in self.weak_skills

    def priorities(self) -> Dict[str, float]:
        """Deficiency scores restricted to weak skills, in priority order."""
        return {skill: self.deficiencies[skill] for skill in self.weak_skills}


class Rationale(str, Enum):
    COLD_START = "cold_start"
    REMEDIATION = "remediation"
    GOAL_ALIGNED = "goal_aligned"
    PERSONALIZED = "personalized"


@dataclass(frozen=True)
class Recommendation:
    course_id: str
    confidence: float
    rationale: Rationale


@dataclass(frozen=True)
class RecommendationResult:
    """Ranked recommendations plus the metadata needed to interpret them."""

    learner_id: str
    items: Tuple[Recommendation, ...]
    model_version: int
    cold_start: bool = False
    status: str = "ok"

    @property
    def course_ids(self) -> Tuple[str, ...]:
        return tuple(item.course_id for item in self.items)


@dataclass(frozen=True)
class LearningPath:
    """Ordered course sequence that reaches the goal skills."""

    learner_id: str
    course_ids: Tuple[str, ...]
    goals: FrozenSet[str]
    total_duration: float
    total_cost: float
    projected_skills: Mapping[str, float] = field(default_factory=dict)
    remediated_skills: Tuple[str, ...] = ()
    completed: FrozenSet[str] = frozenset()

    def __len__(self) -> int:
        return len(self.course_ids)


class Outcome(str, Enum):
    COMPLETION = "completion"
    QUIZ_RESULT = "quiz_result"
    RATING = "rating"


@dataclass(frozen=True)
class FeedbackEvent:
    """Interaction outcome delivered (at least once) by the progress tracker."""

    event_id: str
    learner_id: str
    course_id: str
    outcome: Outcome
    timestamp: datetime
    value: float = 1.0
    skill: Optional[str] = None
    time_spent: float = 0.0
    lesson_id: Optional[str] = None


@dataclass(frozen=True)
class IngestAck:
    event_id: str
    duplicate: bool = False
