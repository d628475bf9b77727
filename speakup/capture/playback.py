"""
Playback coordinator.

Owns the single audio output sink. Only one playback resource is alive at
a time; starting a new one stops, rewinds and releases the previous one.
Capture is paused while synthesized speech plays and resumed afterwards if
it was running when playback began.
"""

import base64
import binascii
import itertools
from typing import Optional, Protocol, Union

from loguru import logger

from speakup.capture.context import CaptureContext
from speakup.capture.events import PlaybackEnded, PlaybackEvent, PlaybackFailed, PlaybackStarted
from speakup.capture.recognizer import RecognizerLifecycleManager
from speakup.capture.timers import TimerKind


class AudioSink(Protocol):
    """Audio output provided by the host platform."""

    def load(self, token: int, audio: bytes) -> None: ...

    def play(self, token: int) -> None: ...

    def stop(self, token: int) -> None:
        """Stop and rewind."""

    def release(self, token: int) -> None: ...


def decode_audio(audio: Union[str, bytes]) -> bytes:
    """Decode base64 transport audio; raises ValueError on garbage."""
    if isinstance(audio, str):
        audio = audio.strip()
        if audio.startswith("data:") and "," in audio:
            audio = audio.split(",", 1)[1]
        audio = audio.encode("ascii", errors="ignore")
    try:
        return base64.b64decode(audio, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid audio payload: {e}") from e


class PlaybackCoordinator:
    def __init__(
        self,
        context: CaptureContext,
        sink: AudioSink,
        lifecycle: RecognizerLifecycleManager,
        connection_id: str = "",
    ):
        self.context = context
        self.sink = sink
        self.lifecycle = lifecycle
        self.connection_id = connection_id
        self._tokens = itertools.count(1)
        self._resource: Optional[int] = None

    @property
    def resource(self) -> Optional[int]:
        """Token of the retained playback resource, if any."""
        return self._resource

    @property
    def playing(self) -> bool:
        return self.context.playback.playing

    def remember_reply(self, text: str) -> None:
        """Record the text about to be spoken, for echo comparison."""
        self.context.playback.last_reply_text = text or ""

    def play(self, audio: bytes, reply_text: Optional[str] = None) -> Optional[int]:
        """Replace any current playback with ``audio`` and start it."""
        if reply_text is not None:
            self.remember_reply(reply_text)

        self._release_current()
        if not audio:
            return None

        # A resume still waiting to fire carries over to the new playback
        timers = self.context.timers
        if timers.is_pending(TimerKind.RESUME):
            timers.cancel(TimerKind.RESUME)
            self.context.playback.resume_capture = True

        token = next(self._tokens)
        self._resource = token
        logger.debug(f"[{self.connection_id}] Loading playback {token} ({len(audio)} bytes)")
        self.sink.load(token, audio)
        self.sink.play(token)
        return token

    def stop(self) -> None:
        """Stop playback without starting anything new."""
        had_resource = self._resource is not None
        self._release_current()
        if had_resource:
            self._after_playback()

    def handle(self, event: PlaybackEvent) -> None:
        if self._resource is None or event.token != self._resource:
            logger.debug(f"[{self.connection_id}] Dropping stale {type(event).__name__} ({event.token})")
            return

        if isinstance(event, PlaybackStarted):
            self._on_started()
        elif isinstance(event, PlaybackEnded):
            self._on_finished()
        elif isinstance(event, PlaybackFailed):
            logger.warning(f"[{self.connection_id}] Playback {event.token} failed: {event.reason}")
            self._on_finished()

    def teardown(self) -> None:
        self._release_current()
        self.context.playback.resume_capture = False

    def _on_started(self) -> None:
        ctx = self.context
        ctx.playback.playing = True
        if ctx.capturing or ctx.keep_alive:
            ctx.playback.resume_capture = True
            logger.debug(f"[{self.connection_id}] Pausing capture for playback")
            self.lifecycle.pause_for_playback()

    def _on_finished(self) -> None:
        self._release_current(rewind=False)
        self._after_playback()

    def _after_playback(self) -> None:
        ctx = self.context
        ctx.playback.playing = False
        if ctx.playback.resume_capture:
            ctx.playback.resume_capture = False
            ctx.timers.arm(TimerKind.RESUME, ctx.timing.resume_delay, self._resume_capture)

    def _resume_capture(self) -> None:
        if self.context.closed:
            return
        logger.debug(f"[{self.connection_id}] Resuming capture after playback")
        self.lifecycle.start(force_fresh=True)

    def _release_current(self, rewind: bool = True) -> None:
        token = self._resource
        if token is None:
            return
        self._resource = None
        self.context.playback.playing = False
        if rewind:
            self.sink.stop(token)
        self.sink.release(token)
