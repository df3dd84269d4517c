# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports schema types, errors and configuration for convenience.

from .config import EngineConfig, load_engine_config
from .errors import (
    Cancelled,
    CycleDetectedError,
    EngineError,
    MalformedRecordError,
    Overloaded,
    StaleSnapshotError,
    UnreachableGoalError,
)
from .schemas import (
    CourseGraph,
    CourseNode,
    FeedbackEvent,
    LearnerProfile,
    LearningPath,
    Outcome,
    ProgressRecord,
    QuizAttempt,
    RecommendationResult,
    WeaknessProfile,
)

__all__ = [
    "EngineConfig",
    "load_engine_config",
    "Cancelled",
    "CycleDetectedError",
    "EngineError",
    "MalformedRecordError",
    "Overloaded",
    "StaleSnapshotError",
    "UnreachableGoalError",
    "CourseGraph",
    "CourseNode",
    "FeedbackEvent",
    "LearnerProfile",
    "LearningPath",
    "Outcome",
    "ProgressRecord",
    "QuizAttempt",
    "RecommendationResult",
    "WeaknessProfile",
]
