"""
Turn orchestrator.

Drives one turn per finalized utterance:

    IDLE -> AWAITING_REPLY -> (REPLY_RECEIVED | REPLY_FAILED)
         -> AWAITING_FEEDBACK -> (FEEDBACK_RECEIVED | FEEDBACK_FAILED) -> IDLE

History is appended before playback starts, and playback is triggered
before feedback is requested. Feedback failures never touch the reply or
the conversation history.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, Set

from loguru import logger

from speakup.capture.playback import PlaybackCoordinator, decode_audio
from speakup.prompts import DEFAULT_LEVEL, DEFAULT_TOPIC
from speakup.services.errors import ServiceError
from speakup.services.feedback_service import Feedback, FeedbackContext
from speakup.services.llm_service import ConversationHistory, Message
from speakup.services.reply_service import Reply


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    REPLY_RECEIVED = "reply_received"
    REPLY_FAILED = "reply_failed"
    AWAITING_FEEDBACK = "awaiting_feedback"
    FEEDBACK_RECEIVED = "feedback_received"
    FEEDBACK_FAILED = "feedback_failed"


class ReplyProvider(Protocol):
    async def reply(self, history, topic: str, level: str, voice_id: Optional[str]) -> Reply: ...


class FeedbackProvider(Protocol):
    async def generate(self, transcript: str, context: Optional[FeedbackContext] = None) -> Feedback: ...


class Presenter(Protocol):
    """Where turn output is rendered (a socket, a test recorder...)."""

    def show_transcript(self, text: str, is_final: bool) -> None: ...

    def show_user_text(self, text: str) -> None: ...

    def show_reply(self, text: str, persona: str) -> None: ...

    def show_feedback(self, feedback: Feedback) -> None: ...

    def show_notice(self, kind: str, message: str) -> None: ...

    def show_turn_state(self, state: TurnState) -> None: ...


@dataclass
class LearnerProfile:
    topic: str = DEFAULT_TOPIC
    level: str = DEFAULT_LEVEL
    voice_id: Optional[str] = None
    user: str = "friend"


@dataclass
class Turn:
    utterance: str
    state: TurnState = TurnState.IDLE
    reply: Optional[Reply] = None
    feedback: Optional[Feedback] = None
    error: Optional[str] = None
    transitions: List[TurnState] = field(default_factory=list)


class TurnOrchestrator:
    def __init__(
        self,
        reply_service: ReplyProvider,
        feedback_service: Optional[FeedbackProvider],
        presenter: Presenter,
        playback: Optional[PlaybackCoordinator] = None,
        history: Optional[ConversationHistory] = None,
        profile: Optional[LearnerProfile] = None,
        feedback_tail: int = 6,
        connection_id: str = "",
    ):
        self.reply_service = reply_service
        self.feedback_service = feedback_service
        self.presenter = presenter
        self.playback = playback
        self.history = history if history is not None else ConversationHistory()
        self.profile = profile or LearnerProfile()
        self.feedback_tail = feedback_tail
        self.connection_id = connection_id
        self.state = TurnState.IDLE
        self.turns: List[Turn] = []
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, text: str) -> Optional[asyncio.Task]:
        """Schedule a turn for ``text`` on the running loop."""
        if not text or not text.strip():
            return None
        task = asyncio.get_running_loop().create_task(self.run_turn(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled turn to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    async def run_turn(self, text: str) -> Optional[Turn]:
        clean = text.strip()
        if not clean:
            return None

        turn = Turn(utterance=clean)
        self.turns.append(turn)

        self.history.add_user_message(clean)
        self.presenter.show_user_text(clean)

        self._set_state(turn, TurnState.AWAITING_REPLY)
        try:
            reply = await self.reply_service.reply(
                list(self.history.messages),
                topic=self.profile.topic,
                level=self.profile.level,
                voice_id=self.profile.voice_id,
            )
        except ServiceError as e:
            logger.error(f"[{self.connection_id}] Reply failed: {e}")
            turn.error = str(e)
            self._set_state(turn, TurnState.REPLY_FAILED)
            self.presenter.show_notice("reply_failed", str(e))
            self._set_state(turn, TurnState.IDLE)
            return turn

        turn.reply = reply
        self._set_state(turn, TurnState.REPLY_RECEIVED)
        reply_text = (reply.text or "").strip()
        if reply_text:
            self.history.add_assistant_message(reply_text)
            self.presenter.show_reply(reply_text, reply.persona)

        self._play(reply, reply_text)

        if self.feedback_service is not None:
            await self._request_feedback(turn, clean)

        self._set_state(turn, TurnState.IDLE)
        return turn

    def _play(self, reply: Reply, reply_text: str) -> None:
        if self.playback is None:
            return
        if reply_text:
            self.playback.remember_reply(reply_text)
        if not reply.audio:
            return
        try:
            audio = decode_audio(reply.audio)
        except ValueError as e:
            logger.warning(f"[{self.connection_id}] Skipping reply audio: {e}")
            self.presenter.show_notice("playback_failed", "Couldn't play the coach's voice.")
            return
        self.playback.play(audio, reply_text=reply_text)

    async def _request_feedback(self, turn: Turn, utterance: str) -> None:
        self._set_state(turn, TurnState.AWAITING_FEEDBACK)
        context = self.feedback_context()
        try:
            feedback = await self.feedback_service.generate(utterance, context)
        except ServiceError as e:
            logger.warning(f"[{self.connection_id}] Feedback failed: {e}")
            self._set_state(turn, TurnState.FEEDBACK_FAILED)
            self.presenter.show_notice("feedback_failed", f"Feedback error: {e}")
            return

        turn.feedback = feedback
        self._set_state(turn, TurnState.FEEDBACK_RECEIVED)
        self.presenter.show_feedback(feedback)

    def feedback_context(self) -> FeedbackContext:
        tail: List[Message] = self.history.tail(self.feedback_tail)
        return FeedbackContext(
            level=self.profile.level,
            topic=self.profile.topic,
            user=self.profile.user,
            last_assistant=self.history.last_assistant(),
            history_tail=[m.to_dict() for m in tail],
        )

    def _set_state(self, turn: Turn, state: TurnState) -> None:
        turn.state = state
        turn.transitions.append(state)
        self.state = state
        self.presenter.show_turn_state(state)
