"""
Capture pipeline: one per connection.

Wires the capture context, recognizer lifecycle, playback coordinator and
turn orchestrator together and routes inbound hardware events to the
component that owns them.
"""

from typing import Optional, Union

from loguru import logger

from speakup.capture.context import CaptureContext, CaptureMode, CaptureTiming
from speakup.capture.echo import EchoFilter
from speakup.capture.events import (
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
    RecognitionErrorKind,
    RecognizerEvent,
)
from speakup.capture.playback import AudioSink, PlaybackCoordinator
from speakup.capture.recognizer import Recognizer, RecognizerLifecycleManager
from speakup.capture.timers import Scheduler
from speakup.capture.turn import FeedbackProvider, LearnerProfile, Presenter, ReplyProvider, TurnOrchestrator
from speakup.config import Settings, settings as default_settings


class CapturePipeline:
    """
    Explicit lifecycle: ``init()`` builds the owned state, ``teardown()``
    cancels timers, stops playback and in-flight turns.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        sink: AudioSink,
        presenter: Presenter,
        reply_service: ReplyProvider,
        feedback_service: Optional[FeedbackProvider],
        scheduler: Scheduler,
        config: Optional[Settings] = None,
        timing: Optional[CaptureTiming] = None,
        connection_id: str = "",
    ):
        self.recognizer = recognizer
        self.sink = sink
        self.presenter = presenter
        self.reply_service = reply_service
        self.feedback_service = feedback_service
        self.scheduler = scheduler
        self.config = config or default_settings
        self.timing = timing or CaptureTiming.from_settings(self.config)
        self.connection_id = connection_id

        self.context: Optional[CaptureContext] = None
        self.lifecycle: Optional[RecognizerLifecycleManager] = None
        self.playback: Optional[PlaybackCoordinator] = None
        self.orchestrator: Optional[TurnOrchestrator] = None

    def init(self, profile: Optional[LearnerProfile] = None) -> "CapturePipeline":
        mode = CaptureMode.parse(self.config.capture_mode)
        self.context = CaptureContext(self.scheduler, self.timing, mode)
        self.orchestrator = TurnOrchestrator(
            reply_service=self.reply_service,
            feedback_service=self.feedback_service,
            presenter=self.presenter,
            profile=profile,
            feedback_tail=self.config.feedback_history_tail,
            connection_id=self.connection_id,
        )
        self.lifecycle = RecognizerLifecycleManager(
            self.context,
            self.recognizer,
            on_utterance=self.orchestrator.submit,
            on_transcript=self._on_transcript,
            on_notice=self._on_notice,
            echo_filter=EchoFilter(self.config.echo_min_chars, self.config.echo_overlap_ratio),
            connection_id=self.connection_id,
        )
        self.playback = PlaybackCoordinator(
            self.context, self.sink, self.lifecycle, connection_id=self.connection_id
        )
        self.orchestrator.playback = self.playback
        logger.debug(f"[{self.connection_id}] Capture pipeline ready (mode={mode.value})")
        return self

    async def teardown(self) -> None:
        if self.context is None or self.context.closed:
            return
        self.orchestrator.cancel()
        self.playback.teardown()
        self.lifecycle.teardown()
        await self.orchestrator.drain()
        logger.debug(f"[{self.connection_id}] Capture pipeline torn down")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def dispatch(self, event: Union[RecognizerEvent, PlaybackEvent]) -> None:
        if isinstance(event, (PlaybackStarted, PlaybackEnded, PlaybackFailed)):
            self.playback.handle(event)
        else:
            self.lifecycle.handle(event)

    def start_capture(self) -> None:
        self.lifecycle.start()

    def stop_capture(self) -> None:
        self.lifecycle.stop()

    def set_mode(self, mode: CaptureMode) -> None:
        self.lifecycle.set_mode(mode)

    def submit_text(self, text: str):
        """Typed input skips capture and goes straight to a turn."""
        return self.orchestrator.submit(text)

    def play_preview(self, audio: bytes) -> None:
        self.playback.play(audio)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def _on_transcript(self, text: str, is_final: bool) -> None:
        self.presenter.show_transcript(text, is_final)

    def _on_notice(self, kind: RecognitionErrorKind, message: str) -> None:
        self.presenter.show_notice(kind.value, message)
