"""
Services module for the SpeakUp backend.

This module provides the vendor-backed collaborators:
- LLMService: chat completions over an OpenAI-compatible API
- TTSService: Azure Speech synthesis
- ReplyService: coach reply text plus synthesized audio
- FeedbackService: per-utterance scored feedback
- VoiceCatalog: instructor voices and previews
"""

from .errors import ServiceError
from .feedback_service import Feedback, FeedbackContext, FeedbackService, normalize_feedback
from .llm_service import ConversationHistory, LLMService, Message
from .reply_service import Reply, ReplyService
from .tts_service import TTSService
from .voice_catalog import VoiceCatalog

__all__ = [
    "ConversationHistory",
    "Feedback",
    "FeedbackContext",
    "FeedbackService",
    "LLMService",
    "Message",
    "Reply",
    "ReplyService",
    "ServiceError",
    "TTSService",
    "VoiceCatalog",
    "normalize_feedback",
]
