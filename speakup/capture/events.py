"""
Hardware events dispatched into the capture state machine.

Every recognizer event carries the generation token of the capture session
that produced it, and every playback event carries the token of the
playback resource it belongs to. Consumers compare the token against the
current one before mutating any state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple, Union


class RecognitionErrorKind(str, Enum):
    """User-facing categories for recognizer error reason codes."""

    NO_SPEECH = "no_speech"
    NO_MICROPHONE = "no_microphone"
    PERMISSION_DENIED = "permission_denied"
    ABORTED = "aborted"
    UNKNOWN = "unknown"

    @property
    def blocks_restart(self) -> bool:
        """Permission-class errors must not trigger an automatic restart."""
        return self in (
            RecognitionErrorKind.NO_MICROPHONE,
            RecognitionErrorKind.PERMISSION_DENIED,
        )

    @property
    def is_ignorable(self) -> bool:
        return self is RecognitionErrorKind.ABORTED


_ERROR_REASONS = {
    "no-speech": RecognitionErrorKind.NO_SPEECH,
    "audio-capture": RecognitionErrorKind.NO_MICROPHONE,
    "not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "service-not-allowed": RecognitionErrorKind.PERMISSION_DENIED,
    "aborted": RecognitionErrorKind.ABORTED,
}

ERROR_MESSAGES = {
    RecognitionErrorKind.NO_SPEECH: "No speech detected. Try speaking a bit louder.",
    RecognitionErrorKind.NO_MICROPHONE: "No microphone found or microphone access was blocked.",
    RecognitionErrorKind.PERMISSION_DENIED: "Microphone permission denied. Allow access and press the mic again.",
    RecognitionErrorKind.ABORTED: "",
    RecognitionErrorKind.UNKNOWN: "Speech recognition error. Press the mic to try again.",
}


def classify_error(reason: str) -> RecognitionErrorKind:
    """Map a raw recognizer reason code onto a RecognitionErrorKind."""
    key = (reason or "").strip().lower().replace("_", "-")
    return _ERROR_REASONS.get(key, RecognitionErrorKind.UNKNOWN)


@dataclass(frozen=True)
class Fragment:
    """One piece of transcribed text; final fragments never change again."""

    text: str
    is_final: bool = False


@dataclass(frozen=True)
class SessionStarted:
    token: int


@dataclass(frozen=True)
class FragmentResult:
    token: int
    fragments: Tuple[Fragment, ...] = field(default_factory=tuple)

    @property
    def final_text(self) -> str:
        return join_text(f.text for f in self.fragments if f.is_final)

    @property
    def interim_text(self) -> str:
        return join_text(f.text for f in self.fragments if not f.is_final)

    @property
    def text(self) -> str:
        return join_text([self.final_text, self.interim_text])


@dataclass(frozen=True)
class RecognitionError:
    token: int
    reason: str

    @property
    def kind(self) -> RecognitionErrorKind:
        return classify_error(self.reason)


@dataclass(frozen=True)
class SessionEnded:
    token: int


@dataclass(frozen=True)
class PlaybackStarted:
    token: int


@dataclass(frozen=True)
class PlaybackEnded:
    token: int


@dataclass(frozen=True)
class PlaybackFailed:
    token: int
    reason: str = ""


RecognizerEvent = Union[SessionStarted, FragmentResult, RecognitionError, SessionEnded]
PlaybackEvent = Union[PlaybackStarted, PlaybackEnded, PlaybackFailed]


def join_text(parts) -> str:
    """Join text pieces with single spaces, skipping blanks."""
    return " ".join(p.strip() for p in parts if p and p.strip())
