"""
Feedback Service for per-utterance scoring.

This service asks the LLM to score one learner utterance and provides:
- A 0-10 score and tip per skill (or "-" when unscored)
- Grammar corrections with rule names and severity
- Vocabulary suggestions and evidence quotes
- An overall tip

Provider responses are loosely shaped, so everything goes through
``normalize_feedback`` which always produces the full canonical object.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from loguru import logger

from speakup.config import settings
from speakup.prompts import (
    DEFAULT_LEVEL,
    DEFAULT_TOPIC,
    FEEDBACK_SYSTEM_PROMPT,
    get_feedback_prompt,
)
from speakup.services.errors import ServiceError
from speakup.services.llm_service import LLMService

UNSCORED = "-"
SEVERITIES = ("minor", "moderate", "major")
FEEDBACK_VERSION = "1.2"
MAX_SUGGESTIONS = 10


@dataclass
class Correction:
    """A single grammar mistake found in the utterance."""

    mistake: str
    better: str
    rule: str = ""
    explanation: str = ""
    start: Optional[int] = None
    end: Optional[int] = None
    span: str = ""
    severity: str = "moderate"

    def to_dict(self) -> dict:
        return {
            "mistake": self.mistake,
            "better": self.better,
            "rule": self.rule,
            "explanation": self.explanation,
            "start": self.start,
            "end": self.end,
            "span": self.span,
            "severity": self.severity,
        }


@dataclass
class SkillScore:
    score: Optional[int] = None  # None means unscored
    tip: str = ""

    def to_dict(self) -> dict:
        return {"score": UNSCORED if self.score is None else self.score, "tip": self.tip}


@dataclass
class Feedback:
    """Complete feedback for one utterance."""

    pronunciation: SkillScore = field(default_factory=SkillScore)
    sounds: List[str] = field(default_factory=list)
    grammar: SkillScore = field(default_factory=SkillScore)
    corrections: List[Correction] = field(default_factory=list)
    fluency: SkillScore = field(default_factory=SkillScore)
    vocab: SkillScore = field(default_factory=SkillScore)
    suggestions: List[str] = field(default_factory=list)
    comprehension: SkillScore = field(default_factory=SkillScore)
    confidence: SkillScore = field(default_factory=SkillScore)
    evidence: List[str] = field(default_factory=list)
    overall_tip: str = ""
    char_count: int = 0

    def to_dict(self) -> dict:
        """Convert feedback to dictionary for JSON serialization."""
        return {
            "pronunciation": {**self.pronunciation.to_dict(), "sounds": list(self.sounds)},
            "grammar": {
                **self.grammar.to_dict(),
                "corrections": [c.to_dict() for c in self.corrections],
            },
            "fluency": self.fluency.to_dict(),
            "vocab": {**self.vocab.to_dict(), "suggestions": list(self.suggestions)},
            "comprehension": self.comprehension.to_dict(),
            "confidence": self.confidence.to_dict(),
            "evidence": list(self.evidence),
            "overall_tip": self.overall_tip,
            "meta": {"version": FEEDBACK_VERSION, "char_count": self.char_count},
        }


@dataclass
class FeedbackContext:
    level: str = DEFAULT_LEVEL
    topic: str = DEFAULT_TOPIC
    user: str = "learner"
    last_assistant: str = ""
    history_tail: List[dict] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: Any) -> "FeedbackContext":
        raw = raw if isinstance(raw, dict) else {}
        tail = raw.get("history") or raw.get("history_tail") or []
        return cls(
            level=str(raw.get("level") or DEFAULT_LEVEL),
            topic=str(raw.get("topic") or DEFAULT_TOPIC),
            user=str(raw.get("user") or "learner"),
            last_assistant=str(raw.get("lastAssistant") or raw.get("last_assistant") or ""),
            history_tail=[h for h in tail if isinstance(h, dict)] if isinstance(tail, list) else [],
        )


# ----------------------------------------------------------------------
# Normalization
# ----------------------------------------------------------------------
def _section(raw: dict, key: str) -> dict:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def coerce_score(value: Any) -> Optional[int]:
    """Round and clamp to 0-10; anything non-numeric is unscored."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return max(0, min(10, int(round(number))))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def to_string_list(value: Any) -> List[str]:
    """Coerce a list or a newline-separated string into clean strings."""
    if isinstance(value, list):
        items = [_text(v) for v in value]
    elif isinstance(value, str):
        items = [line.strip() for line in re.split(r"\n+", value)]
    else:
        return []
    return [item for item in items if item]


def _first(mapping: dict, *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def suggestion_to_string(suggestion: Any) -> str:
    """Flatten any vocabulary suggestion shape into one line."""
    if not suggestion:
        return ""
    if isinstance(suggestion, str):
        return suggestion.strip()
    if not isinstance(suggestion, dict):
        return ""

    word = _text(_first(suggestion, "word", "term", "phrase", "text", "vocab", "entry"))
    definition = _text(_first(suggestion, "definition", "gloss", "meaning", "note", "tip", "expl"))
    example = _text(_first(suggestion, "example", "eg", "usage", "sentence"))

    line = word
    if definition:
        line = f"{line} — {definition}" if line else f"— {definition}"
    if example:
        line = f"{line} (e.g., {example})"
    line = line.strip()
    return line or json.dumps(suggestion, ensure_ascii=False)


def _index(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return int(value)


def _correction(raw: Any) -> Optional[Correction]:
    item = raw if isinstance(raw, dict) else {}
    severity = item.get("severity")
    correction = Correction(
        mistake=_text(_first(item, "mistake", "from", "original")),
        better=_text(_first(item, "better", "to", "fix")),
        rule=_text(_first(item, "rule", "label")),
        explanation=_text(_first(item, "explanation", "why")),
        start=_index(item.get("start")),
        end=_index(item.get("end")),
        span=_text(item.get("span")),
        severity=severity if severity in SEVERITIES else "moderate",
    )
    if not (correction.mistake or correction.better or correction.rule or correction.explanation):
        return None
    return correction


def _skill(raw: dict, key: str) -> SkillScore:
    section = _section(raw, key)
    return SkillScore(score=coerce_score(section.get("score")), tip=_text(section.get("tip")))


def normalize_feedback(raw: Any) -> Feedback:
    """
    Turn any provider response into a complete Feedback object.

    Never raises: missing sections get unscored defaults and empty lists.
    """
    if not isinstance(raw, dict):
        raw = {}

    grammar = _section(raw, "grammar")
    raw_corrections = grammar.get("corrections")
    corrections = [
        c for c in (_correction(item) for item in (raw_corrections if isinstance(raw_corrections, list) else []))
        if c is not None
    ]

    vocab = _section(raw, "vocab")
    raw_suggestions = vocab.get("suggestions")
    suggestions = [
        s for s in (suggestion_to_string(item).strip() for item in (raw_suggestions if isinstance(raw_suggestions, list) else []))
        if s
    ][:MAX_SUGGESTIONS]

    meta = _section(raw, "meta")
    try:
        char_count = int(meta.get("char_count") or 0)
    except (TypeError, ValueError):
        char_count = 0

    return Feedback(
        pronunciation=_skill(raw, "pronunciation"),
        sounds=to_string_list(_section(raw, "pronunciation").get("sounds")),
        grammar=_skill(raw, "grammar"),
        corrections=corrections,
        fluency=_skill(raw, "fluency"),
        vocab=_skill(raw, "vocab"),
        suggestions=suggestions,
        comprehension=_skill(raw, "comprehension"),
        confidence=_skill(raw, "confidence"),
        evidence=to_string_list(raw.get("evidence")),
        overall_tip=_text(_first(raw, "overall_tip", "overall", "tip")),
        char_count=char_count,
    )


def clamp_text(text: str, max_chars: int = 1200) -> str:
    """Trim long transcripts, preferring a sentence boundary."""
    if not text:
        return ""
    text = str(text).strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    boundary = max(cut.rfind("."), cut.rfind("!"), cut.rfind("?"))
    return (cut[: boundary + 1] if boundary > 200 else cut) + " …"


def clean_transcript(text: str, max_chars: int) -> str:
    collapsed = re.sub(r"\s+", " ", text or "").strip()
    return clamp_text(collapsed, max_chars)


def parse_json_object(text: str) -> Optional[dict]:
    """Extract the first JSON object from provider text; None if there is none."""
    text = (text or "").strip()
    if not text:
        return None

    candidates = [text]
    code_block = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if code_block:
        candidates.append(code_block.group(1))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


class FeedbackService:
    """
    Service that scores a single learner utterance.

    Provider selection follows ``settings.feedback_provider``.
    """

    def __init__(self, llm: Optional[LLMService] = None, max_chars: Optional[int] = None):
        self._llm = llm
        self.max_chars = max_chars or settings.feedback_max_chars

    def _get_llm(self) -> LLMService:
        """Lazy-build the LLM client for the configured provider."""
        if self._llm is None:
            if settings.feedback_uses_openai:
                self._llm = LLMService(
                    api_key=settings.openai_api_key,
                    base_url="https://api.openai.com/v1",
                    model=settings.feedback_model_openai,
                )
            else:
                self._llm = LLMService(model=settings.feedback_model_groq)
        return self._llm

    async def generate(self, transcript: str, context: Optional[FeedbackContext] = None) -> Feedback:
        """
        Score ``transcript``.

        Raises:
            ServiceError: When the provider call fails. A response that is
                not valid JSON still yields a normalized fallback.
        """
        context = context or FeedbackContext()
        clean = clean_transcript(transcript, self.max_chars)
        if not clean:
            raise ServiceError("Missing transcript", code="empty_transcript")

        prompt = get_feedback_prompt(
            clean,
            level=context.level,
            topic=context.topic,
            user=context.user,
            last_assistant=context.last_assistant,
            history_tail=context.history_tail,
        )

        raw = await self._get_llm().generate(
            [
                {"role": "system", "content": FEEDBACK_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,
            json_mode=True,
        )

        parsed = parse_json_object(raw)
        if parsed is None:
            logger.warning("Feedback provider returned non-JSON output; using fallback")
            logger.debug(f"Raw feedback response: {raw!r}")
            return self._fallback_feedback(clean)

        meta = parsed.get("meta")
        parsed["meta"] = {**(meta if isinstance(meta, dict) else {}), "char_count": len(clean)}
        return normalize_feedback(parsed)

    async def close(self) -> None:
        if self._llm is not None:
            await self._llm.close()

    def _fallback_feedback(self, clean: str) -> Feedback:
        return normalize_feedback(
            {
                "grammar": {"score": UNSCORED, "tip": "Couldn't parse feedback. Try rephrasing."},
                "overall_tip": "Say it again in one or two clear sentences.",
                "evidence": [clean[:80]],
                "meta": {"char_count": len(clean)},
            }
        )


# Global service instance (singleton pattern)
_feedback_service: Optional[FeedbackService] = None


def get_feedback_service() -> FeedbackService:
    """Get or create the global feedback service instance."""
    global _feedback_service
    if _feedback_service is None:
        _feedback_service = FeedbackService()
    return _feedback_service
