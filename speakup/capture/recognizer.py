"""
Recognizer lifecycle manager.

Keeps continuous speech capture alive across provider session limits:

- exactly one capture session is current; every session gets a fresh
  generation token and events carrying any other token are dropped
- a provider-forced end while capture should stay active restarts a new
  session after a short backoff and keeps the buffer
- a deliberate stop flushes the buffer as one finished utterance, with a
  hard-kill fallback when the provider never reports the end
"""

from typing import Callable, Optional, Protocol

from loguru import logger

from speakup.capture.context import CaptureContext, CaptureMode, CaptureSession, SessionState
from speakup.capture.echo import EchoFilter
from speakup.capture.events import (
    ERROR_MESSAGES,
    FragmentResult,
    RecognitionError,
    RecognitionErrorKind,
    RecognizerEvent,
    SessionEnded,
    SessionStarted,
)
from speakup.capture.timers import TimerKind


class Recognizer(Protocol):
    """Continuous speech recognition provided by the host platform."""

    def start(self, token: int) -> None: ...

    def stop(self, token: int) -> None:
        """Ask the session to finish; it reports back with a session-end event."""

    def abort(self, token: int) -> None:
        """Drop the session immediately, detaching its event handlers."""


UtteranceHandler = Callable[[str], None]
TranscriptHandler = Callable[[str, bool], None]
NoticeHandler = Callable[[RecognitionErrorKind, str], None]


class RecognizerLifecycleManager:
    """Owns the current capture session and the utterance buffer flush."""

    def __init__(
        self,
        context: CaptureContext,
        recognizer: Recognizer,
        on_utterance: UtteranceHandler,
        on_transcript: Optional[TranscriptHandler] = None,
        on_notice: Optional[NoticeHandler] = None,
        echo_filter: Optional[EchoFilter] = None,
        connection_id: str = "",
    ):
        self.context = context
        self.recognizer = recognizer
        self.on_utterance = on_utterance
        self.on_transcript = on_transcript
        self.on_notice = on_notice
        self.echo_filter = echo_filter or EchoFilter()
        self.connection_id = connection_id
        self.flush_count = 0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def start(self, force_fresh: bool = False) -> None:
        """Begin listening and mark capture as intended to stay active."""
        ctx = self.context
        if ctx.closed:
            return

        # A stop whose end event is still outstanding
        stopping = not ctx.keep_alive
        ctx.keep_alive = True
        ctx.manual_stop = False
        ctx.timers.cancel(TimerKind.RESTART)

        session = ctx.session
        if session is not None and session.state is SessionState.ENDING and stopping:
            logger.debug(f"[{self.connection_id}] Start while session {session.token} is ending; replacing it")
            self._discard_session()
            self.flush("manual_stop")
            self._open_session()
            return

        if session is not None and not force_fresh:
            logger.debug(f"[{self.connection_id}] Capture already started (session {session.token})")
            return

        self._open_session()

    def stop(self) -> None:
        """
        Declare a manual stop. Intent-to-remain-active is cleared right away;
        the hardware end arrives asynchronously, so a fallback timer forces
        the flush and teardown if it never does.

        A resume promised to a playback pause is cancelled too.
        """
        playback = self.context.playback
        if playback.resume_capture or self.context.timers.is_pending(TimerKind.RESUME):
            logger.debug(f"[{self.connection_id}] Manual stop cancels the resume after playback")
        playback.resume_capture = False
        self.context.timers.cancel(TimerKind.RESUME)
        self._end_capture()

    def pause_for_playback(self) -> None:
        """Stop capture like stop() but leave the playback resume in place."""
        self._end_capture()

    def _end_capture(self) -> None:
        ctx = self.context
        ctx.manual_stop = True
        ctx.keep_alive = False
        ctx.timers.cancel_many((TimerKind.RESTART, TimerKind.SILENCE, TimerKind.SESSION_RENEWAL))

        session = ctx.session
        if session is None:
            self.flush("manual_stop")
            return

        logger.info(f"[{self.connection_id}] Stopping capture session {session.token}")
        self._request_end(session)

    def set_mode(self, mode: CaptureMode) -> None:
        ctx = self.context
        if mode is ctx.mode:
            return
        ctx.mode = mode
        logger.info(f"[{self.connection_id}] Capture mode set to {mode.value}")
        if mode is CaptureMode.PUSH_TO_FINISH:
            ctx.timers.cancel(TimerKind.SILENCE)
        elif not ctx.buffer.is_empty:
            self._arm_silence()

    def flush(self, reason: str) -> bool:
        """
        Hand the buffered utterance to the turn handler exactly once.

        Returns True when an utterance was sent; an empty buffer is a no-op.
        """
        ctx = self.context
        ctx.timers.cancel_capture()
        text = ctx.buffer.drain()

        # The session may still be open (silence flush while listening);
        # its renewal deadline stays measured from when it started
        session = ctx.session
        if session is not None and session.state is not SessionState.ENDING and ctx.keep_alive:
            self._arm_renewal(session)

        if not text:
            logger.debug(f"[{self.connection_id}] Flush ({reason}) with empty buffer")
            return False

        self.flush_count += 1
        logger.info(f"[{self.connection_id}] Flushing utterance ({reason}): {len(text)} chars")
        self.on_utterance(text)
        return True

    def teardown(self) -> None:
        ctx = self.context
        if ctx.session is not None:
            self.recognizer.abort(ctx.session.token)
        ctx.teardown()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def handle(self, event: RecognizerEvent) -> None:
        """Dispatch a recognizer event, ignoring any from superseded sessions."""
        if not self.context.is_current(event.token):
            logger.debug(
                f"[{self.connection_id}] Dropping stale {type(event).__name__} "
                f"(token {event.token}, current {self._current_token()})"
            )
            return

        if isinstance(event, SessionStarted):
            self._on_session_started()
        elif isinstance(event, FragmentResult):
            self._on_fragments(event)
        elif isinstance(event, RecognitionError):
            self._on_error(event)
        elif isinstance(event, SessionEnded):
            self._on_session_ended()

    def _on_session_started(self) -> None:
        session = self.context.session
        if session.state is SessionState.STARTING:
            session.state = SessionState.LISTENING
        logger.debug(f"[{self.connection_id}] Session {session.token} listening")

    def _on_fragments(self, event: FragmentResult) -> None:
        ctx = self.context

        # Playing guard wins over any text comparison
        if ctx.playback.playing:
            logger.debug(f"[{self.connection_id}] Discarding fragment during playback")
            return

        candidate = event.text
        reference = ctx.playback.last_reply_text
        if candidate and reference and self.echo_filter(candidate, reference):
            logger.debug(f"[{self.connection_id}] Suppressed echo: {candidate!r}")
            return

        ctx.buffer.append_final(event.final_text)
        ctx.buffer.set_interim(event.interim_text)

        if ctx.buffer.is_empty:
            return

        ctx.timers.arm_if_idle(
            TimerKind.MAX_UTTERANCE,
            ctx.timing.max_utterance,
            lambda: self.flush("max_duration"),
        )
        if ctx.mode is CaptureMode.AUTO:
            self._arm_silence()

        if self.on_transcript is not None:
            self.on_transcript(ctx.buffer.text, not ctx.buffer.interim)

    def _on_error(self, event: RecognitionError) -> None:
        kind = event.kind
        if kind.is_ignorable:
            logger.debug(f"[{self.connection_id}] Ignoring recognizer error: {event.reason}")
            return

        if kind.blocks_restart:
            self.context.keep_alive = False
            logger.warning(f"[{self.connection_id}] Recognizer permission error: {event.reason}")
        else:
            logger.info(f"[{self.connection_id}] Recognizer error: {event.reason}")

        if self.on_notice is not None:
            self.on_notice(kind, ERROR_MESSAGES[kind])

    def _on_session_ended(self) -> None:
        ctx = self.context
        session = ctx.session
        ctx.timers.cancel(TimerKind.STOP_FALLBACK)
        ctx.session = None

        if ctx.keep_alive:
            # Provider cap or renewal: restart silently, buffer untouched
            logger.info(f"[{self.connection_id}] Session {session.token} ended by provider; restarting")
            ctx.timers.cancel(TimerKind.SESSION_RENEWAL)
            ctx.timers.arm(TimerKind.RESTART, ctx.timing.restart_backoff, self._restart)
            return

        logger.info(f"[{self.connection_id}] Session {session.token} ended")
        self.flush("manual_stop" if ctx.manual_stop else "session_end")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _open_session(self) -> None:
        ctx = self.context
        self._discard_session()
        session = CaptureSession(token=ctx.next_token(), created_at=ctx.now())
        ctx.session = session
        self._arm_renewal(session)
        logger.info(f"[{self.connection_id}] Starting capture session {session.token}")
        self.recognizer.start(session.token)

    def _discard_session(self) -> None:
        ctx = self.context
        old = ctx.session
        if old is None:
            return
        ctx.session = None
        ctx.timers.cancel_many((TimerKind.SESSION_RENEWAL, TimerKind.STOP_FALLBACK))
        self.recognizer.abort(old.token)

    def _restart(self) -> None:
        ctx = self.context
        if ctx.closed or not ctx.keep_alive or ctx.session is not None:
            return
        self._open_session()

    def _renew(self) -> None:
        ctx = self.context
        session = ctx.session
        if session is None or not ctx.keep_alive:
            return
        logger.debug(f"[{self.connection_id}] Renewing capture session {session.token}")
        self._request_end(session)

    def _request_end(self, session: CaptureSession) -> None:
        session.state = SessionState.ENDING
        self.recognizer.stop(session.token)
        self.context.timers.arm(
            TimerKind.STOP_FALLBACK,
            self.context.timing.stop_fallback,
            self._on_end_timeout,
        )

    def _on_end_timeout(self) -> None:
        ctx = self.context
        session = ctx.session
        if session is not None:
            logger.warning(
                f"[{self.connection_id}] No end event for session {session.token}; forcing teardown"
            )
            ctx.session = None
            ctx.timers.cancel(TimerKind.SESSION_RENEWAL)
            self.recognizer.abort(session.token)

        if ctx.keep_alive:
            self._open_session()
        else:
            self.flush("stop_fallback")

    def _arm_silence(self) -> None:
        self.context.timers.arm(
            TimerKind.SILENCE,
            self.context.timing.silence,
            lambda: self.flush("silence"),
        )

    def _arm_renewal(self, session: CaptureSession) -> None:
        ctx = self.context
        elapsed = ctx.now() - session.created_at
        ctx.timers.arm(
            TimerKind.SESSION_RENEWAL,
            ctx.timing.session_renewal - elapsed,
            self._renew,
        )

    def _current_token(self) -> Optional[int]:
        session = self.context.session
        return session.token if session is not None else None
