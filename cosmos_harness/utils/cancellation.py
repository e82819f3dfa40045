"""
Cancellation
============
Caller-controlled cancellation signal, checked before every suspension point
(LLM call, file I/O). Safe to set from another thread or task.
"""
import threading

from cosmos_harness.core.errors import HarnessError


class RunCancelled(HarnessError):
    """Raised at a suspension point once cancellation was requested."""


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self.reason or "cancelled by caller")
