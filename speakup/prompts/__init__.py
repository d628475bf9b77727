"""
Prompts module for the SpeakUp speaking coach.

Contains prompts for:
- Coach replies (conversation mode)
- Per-utterance feedback (scoring rubric)
"""

from .tutor_prompts import (
    DEFAULT_LEVEL,
    DEFAULT_TOPIC,
    FEEDBACK_SYSTEM_PROMPT,
    SKILLS,
    get_coach_preamble,
    get_feedback_prompt,
)

__all__ = [
    "DEFAULT_LEVEL",
    "DEFAULT_TOPIC",
    "FEEDBACK_SYSTEM_PROMPT",
    "SKILLS",
    "get_coach_preamble",
    "get_feedback_prompt",
]
