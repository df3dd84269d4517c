# ABOUTME: Declares the error taxonomy shared by the recommendation and planning engines.
# ABOUTME: Separates bad input, structural planning failures, and retryable backpressure signals.

from __future__ import annotations

from typing import Iterable, Sequence


class EngineError(Exception):
    """Base class for every error raised by the engine."""

    retryable = False


class MalformedRecordError(EngineError, ValueError):
    """A learner, course, progress or feedback record is missing or invalid."""


class CycleDetectedError(EngineError):
    """The course prerequisite graph contains a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        loop = " -> ".join(self.cycle + self.cycle[:1])
        super().__init__(f"Prerequisite cycle detected: {loop}")


class UnreachableGoalError(EngineError):
    """No sequence of catalog courses can satisfy the requested goals."""

    def __init__(self, goals: Iterable[str], detail: str = ""):
        self.goals = sorted(goals)
        message = f"No path exists for goal(s) {', '.join(self.goals)}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StaleSnapshotError(EngineError):
    """A pinned model snapshot fell out of the retention window."""

    retryable = True

    def __init__(self, requested: int, current: int, retention: int):
        self.requested = requested
        self.current = current
        self.retention = retention
        super().__init__(
            f"Model snapshot v{requested} is stale (current v{current}, retention {retention}); refetch"
        )


class Overloaded(EngineError):
    """Ingestion queues are full; the caller should back off and retry."""

    retryable = True


class Cancelled(EngineError):
    """A cooperative cancellation or deadline aborted the computation."""
