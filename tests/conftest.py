"""Pytest configuration helpers and hardware/service fakes."""

from __future__ import annotations

import itertools
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without installing the package."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

from speakup.capture.context import CaptureContext, CaptureMode, CaptureTiming  # noqa: E402
from speakup.capture.playback import PlaybackCoordinator  # noqa: E402
from speakup.capture.recognizer import RecognizerLifecycleManager  # noqa: E402
from speakup.services.errors import ServiceError  # noqa: E402
from speakup.services.feedback_service import Feedback, normalize_feedback  # noqa: E402
from speakup.services.reply_service import Reply  # noqa: E402


class ManualHandle:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """call_later() that only fires when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._handles: List[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualHandle:
        handle = ManualHandle(self.now + delay, next(self._seq), callback, args)
        self._handles.append(handle)
        return handle

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)


class RecordingRecognizer:
    def __init__(self):
        self.calls: List[Tuple[str, int]] = []

    def start(self, token: int) -> None:
        self.calls.append(("start", token))

    def stop(self, token: int) -> None:
        self.calls.append(("stop", token))

    def abort(self, token: int) -> None:
        self.calls.append(("abort", token))

    def tokens(self, action: str) -> List[int]:
        return [token for name, token in self.calls if name == action]


class RecordingSink:
    def __init__(self):
        self.calls: List[Tuple[str, int]] = []
        self.loaded: List[bytes] = []

    def load(self, token: int, audio: bytes) -> None:
        self.calls.append(("load", token))
        self.loaded.append(audio)

    def play(self, token: int) -> None:
        self.calls.append(("play", token))

    def stop(self, token: int) -> None:
        self.calls.append(("stop", token))

    def release(self, token: int) -> None:
        self.calls.append(("release", token))


class RecordingPresenter:
    def __init__(self, log: Optional[list] = None):
        self.log = log if log is not None else []

    def show_transcript(self, text, is_final):
        self.log.append(("transcript", text, is_final))

    def show_user_text(self, text):
        self.log.append(("user_text", text))

    def show_reply(self, text, persona):
        self.log.append(("reply", text))

    def show_feedback(self, feedback):
        self.log.append(("feedback", feedback))

    def show_notice(self, kind, message):
        self.log.append(("notice", kind, message))

    def show_turn_state(self, state):
        self.log.append(("state", state))

    def of(self, kind: str) -> list:
        return [entry for entry in self.log if entry[0] == kind]


class FakeReplyService:
    def __init__(self, text: str = "Nice! What did you buy?", audio: Optional[str] = None, error: Optional[str] = None, log: Optional[list] = None):
        self.text = text
        self.audio = audio
        self.error = error
        self.calls: List[dict] = []
        self.log = log

    async def reply(self, history, topic, level, voice_id):
        snapshot = [(m.role, m.content) for m in history]
        self.calls.append({"history": snapshot, "topic": topic, "level": level, "voice_id": voice_id})
        if self.log is not None:
            self.log.append(("reply_call",))
        if self.error:
            raise ServiceError(self.error)
        return Reply(text=self.text, audio=self.audio, persona="Warm coach")


class FakeFeedbackService:
    def __init__(self, raw: Optional[dict] = None, error: Optional[str] = None, log: Optional[list] = None):
        self.raw = raw or {"grammar": {"score": 6, "tip": "Past tense of go is went."}}
        self.error = error
        self.calls: List[tuple] = []
        self.log = log

    async def generate(self, transcript, context=None) -> Feedback:
        self.calls.append((transcript, context))
        if self.log is not None:
            self.log.append(("feedback_call",))
        if self.error:
            raise ServiceError(self.error)
        return normalize_feedback(self.raw)


TIMING = CaptureTiming(
    silence=1.8,
    max_utterance=180.0,
    session_renewal=50.0,
    stop_fallback=0.4,
    restart_backoff=0.25,
    resume_delay=0.3,
)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def recognizer():
    return RecordingRecognizer()


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def context(scheduler):
    return CaptureContext(scheduler, TIMING, CaptureMode.AUTO)


@pytest.fixture()
def utterances():
    return []


@pytest.fixture()
def notices():
    return []


@pytest.fixture()
def transcripts():
    return []


@pytest.fixture()
def lifecycle(context, recognizer, utterances, notices, transcripts):
    return RecognizerLifecycleManager(
        context,
        recognizer,
        on_utterance=utterances.append,
        on_transcript=lambda text, is_final: transcripts.append((text, is_final)),
        on_notice=lambda kind, message: notices.append(kind),
        connection_id="test",
    )


@pytest.fixture()
def playback(context, sink, lifecycle):
    return PlaybackCoordinator(context, sink, lifecycle, connection_id="test")
