# ABOUTME: Exposes the request-level engine and its feedback-driven components.
# ABOUTME: Groups the weakness analyzer, feedback ingestor and facade.

from .facade import LearningEngine
from .ingest import FeedbackIngestor, IngestStats
from .weakness import WeaknessAnalyzer, analyze

__all__ = [
    "LearningEngine",
    "FeedbackIngestor",
    "IngestStats",
    "WeaknessAnalyzer",
    "analyze",
]
