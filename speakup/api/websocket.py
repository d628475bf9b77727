"""
WebSocket API for real-time conversation.

The browser owns the speech recognizer and the audio element; this module
runs the capture state machine for it:
1. Receive recognizer and playback events (tagged with generation tokens)
2. Feed them to the connection's CapturePipeline
3. Send recognizer/playback commands back to the browser
4. Send transcripts, coach replies, feedback and notices to render
"""

import asyncio
import base64
import json
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Set, Union

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from loguru import logger

from speakup.capture.context import CaptureMode
from speakup.capture.events import (
    Fragment,
    FragmentResult,
    PlaybackEnded,
    PlaybackEvent,
    PlaybackFailed,
    PlaybackStarted,
    RecognitionError,
    RecognizerEvent,
    SessionEnded,
    SessionStarted,
)
from speakup.capture.pipeline import CapturePipeline
from speakup.capture.playback import decode_audio
from speakup.capture.turn import LearnerProfile, TurnState
from speakup.config import Settings, get_settings
from speakup.services.errors import ServiceError
from speakup.services.feedback_service import Feedback, FeedbackService, get_feedback_service
from speakup.services.reply_service import ReplyService, get_reply_service
from speakup.services.voice_catalog import VoiceCatalog, get_voice_catalog

router = APIRouter()


class MessageType(str, Enum):
    """Types of messages sent over WebSocket."""

    # Client -> Server: hardware events
    RECOGNIZER_SESSION_START = "recognizer.session_start"
    RECOGNIZER_RESULT = "recognizer.result"
    RECOGNIZER_ERROR = "recognizer.error"
    RECOGNIZER_SESSION_END = "recognizer.session_end"
    PLAYBACK_STARTED = "playback.started"
    PLAYBACK_ENDED = "playback.ended"
    PLAYBACK_ERROR = "playback.error"

    # Client -> Server: controls
    CAPTURE_START = "capture.start"
    CAPTURE_STOP = "capture.stop"
    CAPTURE_MODE = "capture.mode"
    PROFILE_UPDATE = "profile.update"
    TEXT_SUBMIT = "text.submit"
    VOICE_PREVIEW = "voice.preview"
    PING = "ping"

    # Server -> Client: hardware commands
    RECOGNIZER_START = "recognizer.start"
    RECOGNIZER_STOP = "recognizer.stop"
    RECOGNIZER_ABORT = "recognizer.abort"
    PLAYBACK_LOAD = "playback.load"
    PLAYBACK_PLAY = "playback.play"
    PLAYBACK_STOP = "playback.stop"
    PLAYBACK_RELEASE = "playback.release"

    # Server -> Client: rendering
    TRANSCRIPT = "transcript"
    USER_TEXT = "user_text"
    AI_TEXT = "ai_text"
    FEEDBACK = "feedback"
    NOTICE = "notice"
    TURN_STATE = "turn_state"
    CONNECTED = "connected"
    PONG = "pong"
    ERROR = "error"


class Outbox:
    """
    Ordered outbound queue. The capture state machine is synchronous, so
    commands are queued here and a sender task writes them to the socket.
    """

    def __init__(self):
        self.queue: "asyncio.Queue[dict]" = asyncio.Queue()

    def put(self, kind: MessageType, **payload: Any) -> None:
        self.queue.put_nowait({"type": kind.value, **payload})


class RemoteRecognizer:
    """Recognizer implemented by the browser on the other end of the socket."""

    def __init__(self, outbox: Outbox):
        self.outbox = outbox

    def start(self, token: int) -> None:
        self.outbox.put(MessageType.RECOGNIZER_START, token=token)

    def stop(self, token: int) -> None:
        self.outbox.put(MessageType.RECOGNIZER_STOP, token=token)

    def abort(self, token: int) -> None:
        self.outbox.put(MessageType.RECOGNIZER_ABORT, token=token)


class RemoteAudioSink:
    """The browser's audio element."""

    def __init__(self, outbox: Outbox):
        self.outbox = outbox

    def load(self, token: int, audio: bytes) -> None:
        self.outbox.put(
            MessageType.PLAYBACK_LOAD,
            token=token,
            audio=base64.b64encode(audio).decode("ascii"),
        )

    def play(self, token: int) -> None:
        self.outbox.put(MessageType.PLAYBACK_PLAY, token=token)

    def stop(self, token: int) -> None:
        self.outbox.put(MessageType.PLAYBACK_STOP, token=token)

    def release(self, token: int) -> None:
        self.outbox.put(MessageType.PLAYBACK_RELEASE, token=token)


class SocketPresenter:
    def __init__(self, outbox: Outbox):
        self.outbox = outbox

    def show_transcript(self, text: str, is_final: bool) -> None:
        self.outbox.put(MessageType.TRANSCRIPT, text=text, is_final=is_final)

    def show_user_text(self, text: str) -> None:
        self.outbox.put(MessageType.USER_TEXT, text=text)

    def show_reply(self, text: str, persona: str) -> None:
        self.outbox.put(MessageType.AI_TEXT, text=text, persona=persona)

    def show_feedback(self, feedback: Feedback) -> None:
        self.outbox.put(MessageType.FEEDBACK, data=feedback.to_dict())

    def show_notice(self, kind: str, message: str) -> None:
        self.outbox.put(MessageType.NOTICE, kind=kind, message=message)

    def show_turn_state(self, state: TurnState) -> None:
        self.outbox.put(MessageType.TURN_STATE, state=state.value)


def _token(data: Dict[str, Any]) -> int:
    value = data.get("token")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("Missing or invalid token")
    return value


def _fragments(raw: Any) -> tuple:
    fragments = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        text = item.get("text") or item.get("transcript") or ""
        if not isinstance(text, str):
            continue
        fragments.append(Fragment(text=text, is_final=bool(item.get("is_final"))))
    return tuple(fragments)


def parse_event(data: Dict[str, Any]) -> Optional[Union[RecognizerEvent, PlaybackEvent]]:
    """Build a hardware event from a client message; None for non-events."""
    kind = data.get("type")
    if kind == MessageType.RECOGNIZER_SESSION_START:
        return SessionStarted(token=_token(data))
    if kind == MessageType.RECOGNIZER_RESULT:
        return FragmentResult(token=_token(data), fragments=_fragments(data.get("fragments")))
    if kind == MessageType.RECOGNIZER_ERROR:
        return RecognitionError(token=_token(data), reason=str(data.get("reason") or ""))
    if kind == MessageType.RECOGNIZER_SESSION_END:
        return SessionEnded(token=_token(data))
    if kind == MessageType.PLAYBACK_STARTED:
        return PlaybackStarted(token=_token(data))
    if kind == MessageType.PLAYBACK_ENDED:
        return PlaybackEnded(token=_token(data))
    if kind == MessageType.PLAYBACK_ERROR:
        return PlaybackFailed(token=_token(data), reason=str(data.get("reason") or ""))
    return None


def update_profile(profile: LearnerProfile, data: Dict[str, Any]) -> None:
    for key in ("topic", "level", "voice_id", "user"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            setattr(profile, key, value.strip())


class ConversationConnection:
    """One socket, one pipeline."""

    def __init__(
        self,
        websocket: WebSocket,
        reply_service: ReplyService,
        feedback_service: FeedbackService,
        catalog: VoiceCatalog,
        config: Settings,
    ):
        self.websocket = websocket
        self.session_id = str(uuid.uuid4())
        self.catalog = catalog
        self.outbox = Outbox()
        self.profile = LearnerProfile()
        self.pipeline = CapturePipeline(
            recognizer=RemoteRecognizer(self.outbox),
            sink=RemoteAudioSink(self.outbox),
            presenter=SocketPresenter(self.outbox),
            reply_service=reply_service,
            feedback_service=feedback_service,
            scheduler=asyncio.get_running_loop(),
            config=config,
            connection_id=self.session_id[:8],
        ).init(self.profile)
        self._background: Set[asyncio.Task] = set()

    async def sender(self) -> None:
        while True:
            message = await self.outbox.queue.get()
            await self.websocket.send_json(message)

    async def handle_text(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON from {self.session_id}: {e}")
            self.outbox.put(MessageType.ERROR, message="Invalid JSON message")
            return
        if not isinstance(data, dict):
            self.outbox.put(MessageType.ERROR, message="Message must be a JSON object")
            return

        try:
            event = parse_event(data)
        except ValueError as e:
            logger.debug(f"Malformed event from {self.session_id}: {e}")
            return

        if event is not None:
            self.pipeline.dispatch(event)
            return

        msg_type = data.get("type")
        if msg_type == MessageType.PING:
            self.outbox.put(MessageType.PONG)
        elif msg_type == MessageType.CAPTURE_START:
            self.pipeline.start_capture()
        elif msg_type == MessageType.CAPTURE_STOP:
            self.pipeline.stop_capture()
        elif msg_type == MessageType.CAPTURE_MODE:
            self.pipeline.set_mode(CaptureMode.parse(data.get("mode"), self.pipeline.context.mode))
        elif msg_type == MessageType.PROFILE_UPDATE:
            update_profile(self.profile, data)
            logger.info(f"Session {self.session_id} profile: {self.profile}")
        elif msg_type == MessageType.TEXT_SUBMIT:
            text = data.get("text")
            if isinstance(text, str):
                self.pipeline.submit_text(text)
        elif msg_type == MessageType.VOICE_PREVIEW:
            self._spawn(self.preview(data.get("voice_id")))
        else:
            self.outbox.put(MessageType.ERROR, message=f"Unknown message type: {msg_type}")

    async def preview(self, voice_id: Optional[str]) -> None:
        try:
            audio = decode_audio(await self.catalog.preview(voice_id))
        except (ServiceError, ValueError) as e:
            logger.warning(f"Voice preview failed for {self.session_id}: {e}")
            self.outbox.put(MessageType.NOTICE, kind="preview_failed", message=str(e))
            return
        self.pipeline.play_preview(audio)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await self.pipeline.teardown()


@router.websocket("/ws/conversation")
async def conversation_endpoint(
    websocket: WebSocket,
    reply_service: ReplyService = Depends(get_reply_service),
    feedback_service: FeedbackService = Depends(get_feedback_service),
    catalog: VoiceCatalog = Depends(get_voice_catalog),
    config: Settings = Depends(get_settings),
):
    """WebSocket endpoint for real-time conversation."""
    await websocket.accept()
    connection = ConversationConnection(websocket, reply_service, feedback_service, catalog, config)
    session_id = connection.session_id
    logger.info(f"Client connected: {session_id}")

    sender_task = asyncio.create_task(connection.sender())
    connection.outbox.put(
        MessageType.CONNECTED,
        session_id=session_id,
        mode=connection.pipeline.context.mode.value,
    )

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                logger.info(f"Received disconnect message for {session_id}")
                break
            text = message.get("text")
            if text is None:
                connection.outbox.put(MessageType.ERROR, message="Binary frames are not supported")
                continue
            await connection.handle_text(text)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {session_id}")
    except Exception as e:
        logger.exception(f"WebSocket error for {session_id}: {e}")
    finally:
        await connection.close()
        sender_task.cancel()
        try:
            await sender_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Sender for {session_id} stopped: {e}")
        logger.info(f"Client disconnected: {session_id}")
