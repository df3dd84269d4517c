# ABOUTME: Provides cooperative cancellation and deadlines for long-running planning calls.
# ABOUTME: Callers hold the token; the optimizer polls it between search steps.

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from src.common.errors import Cancelled


class CancellationToken:
    """Cancelled explicitly via `cancel()` or implicitly once the deadline passes."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if timeout is not None and deadline is not None:
            raise ValueError("Pass either timeout or deadline, not both")
        self._clock = clock
        self._event = threading.Event()
        self.deadline = clock() + timeout if timeout is not None else deadline

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and self._clock() >= self.deadline

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            reason = "deadline exceeded" if not self._event.is_set() else "cancelled by caller"
            raise Cancelled(f"Planning aborted ({reason}){' during ' + stage if stage else ''}")
