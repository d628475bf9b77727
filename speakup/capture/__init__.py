"""
Capture module for the SpeakUp backend.

The turn-capture state machine:
- RecognizerLifecycleManager: continuous recognition across session limits
- UtteranceBuffer / TimerSet: utterance accumulation and flush timing
- EchoFilter: suppresses the coach's own voice
- PlaybackCoordinator: single audio sink, capture pause/resume
- TurnOrchestrator: reply, playback and feedback per utterance
- CapturePipeline: wires the above for one connection
"""

from .buffer import UtteranceBuffer
from .context import CaptureContext, CaptureMode, CaptureSession, CaptureTiming, PlaybackState
from .echo import EchoFilter, is_echo, normalize
from .pipeline import CapturePipeline
from .playback import PlaybackCoordinator
from .recognizer import RecognizerLifecycleManager
from .timers import TimerKind, TimerSet
from .turn import LearnerProfile, TurnOrchestrator, TurnState

__all__ = [
    "CaptureContext",
    "CaptureMode",
    "CapturePipeline",
    "CaptureSession",
    "CaptureTiming",
    "EchoFilter",
    "LearnerProfile",
    "PlaybackCoordinator",
    "PlaybackState",
    "RecognizerLifecycleManager",
    "TimerKind",
    "TimerSet",
    "TurnOrchestrator",
    "TurnState",
    "UtteranceBuffer",
    "is_echo",
    "normalize",
]
