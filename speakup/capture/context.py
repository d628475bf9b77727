"""
Shared state for one capture pipeline.

A single CaptureContext is owned per connection. It holds the generation
counter, the current capture session, the utterance buffer, the timers and
the playback state; nothing in the capture package keeps module globals.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from speakup.capture.buffer import UtteranceBuffer
from speakup.capture.timers import Scheduler, TimerSet
from speakup.config import Settings


class CaptureMode(str, Enum):
    """How an utterance is finished."""

    AUTO = "auto"  # flush after a silence window
    PUSH_TO_FINISH = "push_to_finish"  # flush on manual stop or max-duration cutoff

    @classmethod
    def parse(cls, value: Optional[str], default: "CaptureMode" = None) -> "CaptureMode":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return default or cls.AUTO


class SessionState(str, Enum):
    STARTING = "starting"
    LISTENING = "listening"
    ENDING = "ending"


@dataclass
class CaptureSession:
    """One continuous-recognition connection, identified by its token."""

    token: int
    state: SessionState = SessionState.STARTING
    created_at: float = 0.0  # scheduler clock


@dataclass
class PlaybackState:
    playing: bool = False
    resume_capture: bool = False
    last_reply_text: str = ""


@dataclass(frozen=True)
class CaptureTiming:
    """Capture timer durations, in seconds."""

    silence: float = 1.8
    max_utterance: float = 180.0
    session_renewal: float = 50.0
    stop_fallback: float = 0.4
    restart_backoff: float = 0.25
    resume_delay: float = 0.3

    @classmethod
    def from_settings(cls, settings: Settings) -> "CaptureTiming":
        return cls(
            silence=settings.capture_silence_ms / 1000.0,
            max_utterance=settings.capture_max_utterance_ms / 1000.0,
            session_renewal=settings.capture_session_renewal_ms / 1000.0,
            stop_fallback=settings.capture_stop_fallback_ms / 1000.0,
            restart_backoff=settings.capture_restart_backoff_ms / 1000.0,
            resume_delay=settings.playback_resume_delay_ms / 1000.0,
        )


class CaptureContext:
    """Owned state for the recognizer lifecycle and playback coordinator."""

    def __init__(
        self,
        scheduler: Scheduler,
        timing: Optional[CaptureTiming] = None,
        mode: CaptureMode = CaptureMode.AUTO,
    ):
        self.scheduler = scheduler
        self.timing = timing or CaptureTiming()
        self.mode = mode
        self.buffer = UtteranceBuffer()
        self.timers = TimerSet(scheduler)
        self.playback = PlaybackState()
        self.session: Optional[CaptureSession] = None
        # Set by start(), cleared synchronously by stop()
        self.keep_alive = False
        self.manual_stop = False
        self._generation = 0
        self.closed = False

    @property
    def generation(self) -> int:
        """Token of the newest session ever issued."""
        return self._generation

    def now(self) -> float:
        return self.scheduler.time()

    def next_token(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return self.session is not None and self.session.token == token

    @property
    def capturing(self) -> bool:
        return self.session is not None

    def teardown(self) -> None:
        """Cancel every pending timer and drop all session state."""
        self.timers.cancel_all()
        self.buffer.clear()
        self.session = None
        self.keep_alive = False
        self.closed = True
