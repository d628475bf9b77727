"""
Prompts for the SpeakUp speaking coach.

This module contains the prompts used for:
1. Conversational coach replies
2. Per-utterance scored feedback
"""

import json
from typing import List, Optional

DEFAULT_TOPIC = "free conversation"
DEFAULT_LEVEL = "Intermediate Low"

FEEDBACK_SYSTEM_PROMPT = (
    "You are a strict ESL speaking examiner that outputs JSON only."
)

SKILLS = ("pronunciation", "grammar", "fluency", "vocab", "comprehension", "confidence")


def get_coach_preamble(label: str, persona: str, topic: str, level: str) -> str:
    """
    System preamble for coach replies.

    Args:
        label: Instructor display label
        persona: Instructor persona description
        topic: Conversation topic chosen by the learner
        level: Target proficiency label

    Returns:
        The system message content
    """
    return f"""You are {label}. Persona: {persona}
You are a friendly, natural English speaking coach.
Keep replies under ~60 words. Be natural and conversational.
Ask one question at a time. When the learner makes a mistake, model the
correct form in your reply instead of lecturing.
Topic: {topic}. Target proficiency: ACTFL {level}."""


def _format_history(history_tail: Optional[List[dict]]) -> str:
    if not history_tail:
        return "(none)"
    lines = []
    for item in history_tail:
        role = item.get("role", "user")
        lines.append(f"{role}: {item.get('content', '')}")
    return "\n".join(lines)


def get_feedback_prompt(
    transcript: str,
    level: str = DEFAULT_LEVEL,
    topic: str = DEFAULT_TOPIC,
    user: str = "learner",
    last_assistant: str = "",
    history_tail: Optional[List[dict]] = None,
) -> str:
    """
    Build the rubric prompt for scoring one learner utterance.

    Only the learner transcript is analyzed; the assistant turn and recent
    history are context.
    """
    last = json.dumps(last_assistant) if last_assistant else "(none)"
    skills = ", ".join(f'"{s}"' for s in SKILLS)

    return f"""Learner name: {user}
Level: {level}
Topic: {topic}
Recent conversation (context only):
{_format_history(history_tail)}
Assistant last turn (context only): {last}

Transcript to analyze (verbatim, index from 0):
{transcript}

Return STRICT JSON only with these keys: {skills}, "evidence", "overall_tip", "meta".
- Each skill is {{"score": 0-10, "tip": string}}.
- "pronunciation" also has "sounds": string[].
- "grammar" also has "corrections": [{{"mistake", "better", "rule", "explanation",
  "start", "end", "span", "severity": "minor"|"moderate"|"major"}}].
- "vocab" also has "suggestions": [{{"word", "definition", "example"}}].
- "evidence" quotes up to 5 short snippets from the transcript.
- "meta" is {{"char_count": number}}.

Rules:
- Analyze ONLY the learner transcript, not the assistant.
- List every grammatical error with a precise rewrite, a short rule name and
  a brief explanation suited to {level}; use null indices if unsure.
- Keep tips short, actionable and level-appropriate.
- Never include markdown or commentary; return JSON only."""
