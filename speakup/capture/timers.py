"""
Single-shot timers for the capture pipeline.

Timers are scheduled through anything exposing ``call_later(delay, cb)``
that returns a handle with ``cancel()``, plus a ``time()`` clock; an
asyncio event loop fits.
Arming a timer always cancels the pending one of the same kind first, so
at most one timer per kind is ever pending.
"""

from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Protocol

from loguru import logger


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...

    def time(self) -> float: ...


class TimerKind(str, Enum):
    SILENCE = "silence"
    MAX_UTTERANCE = "max_utterance"
    SESSION_RENEWAL = "session_renewal"
    STOP_FALLBACK = "stop_fallback"
    RESTART = "restart"
    RESUME = "resume"


# Cancelled together whenever the buffer is flushed or capture stops
CAPTURE_TIMERS = (
    TimerKind.SILENCE,
    TimerKind.MAX_UTTERANCE,
    TimerKind.SESSION_RENEWAL,
)


class TimerSet:
    """Keyed single-shot timers with synchronous cancellation."""

    def __init__(self, scheduler: Scheduler):
        self._scheduler = scheduler
        self._handles: Dict[TimerKind, TimerHandle] = {}

    def arm(self, kind: TimerKind, delay: float, callback: Callable[[], None]) -> None:
        """(Re)arm a timer; the previous one of the same kind never fires."""
        self.cancel(kind)

        def fire() -> None:
            if self._handles.get(kind) is handle:
                del self._handles[kind]
            callback()

        handle = self._scheduler.call_later(max(0.0, delay), fire)
        self._handles[kind] = handle

    def arm_if_idle(self, kind: TimerKind, delay: float, callback: Callable[[], None]) -> None:
        if not self.is_pending(kind):
            self.arm(kind, delay, callback)

    def cancel(self, kind: TimerKind) -> None:
        handle = self._handles.pop(kind, None)
        if handle is not None:
            handle.cancel()

    def cancel_many(self, kinds: Iterable[TimerKind]) -> None:
        for kind in kinds:
            self.cancel(kind)

    def cancel_capture(self) -> None:
        self.cancel_many(CAPTURE_TIMERS)

    def cancel_all(self) -> None:
        pending = list(self._handles)
        self.cancel_many(pending)
        if pending:
            logger.debug(f"Cancelled timers: {[k.value for k in pending]}")

    def is_pending(self, kind: TimerKind) -> bool:
        return kind in self._handles

    @property
    def pending(self) -> List[str]:
        return sorted(k.value for k in self._handles)
