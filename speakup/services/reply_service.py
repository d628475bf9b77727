"""
Reply Service: one coach turn.

Composes the LLM reply with the instructor's synthesized voice. TTS
problems never fail a turn; the text comes back without audio instead.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from loguru import logger

from speakup.prompts import DEFAULT_LEVEL, DEFAULT_TOPIC, get_coach_preamble
from speakup.services.errors import ServiceError
from speakup.services.llm_service import LLMService, Message, coerce_messages, get_llm_service
from speakup.services.tts_service import TTSService, get_tts_service
from speakup.services.voice_catalog import (
    DEFAULT_INSTRUCTOR,
    VoiceCatalog,
    get_instructor,
    get_voice_catalog,
)


@dataclass
class Reply:
    text: str
    audio: Optional[str] = None  # base64
    persona: str = ""

    def to_dict(self) -> dict:
        return {"text": self.text, "audio": self.audio, "persona": self.persona}


class ReplyService:
    def __init__(
        self,
        llm: Optional[LLMService] = None,
        tts: Optional[TTSService] = None,
        catalog: Optional[VoiceCatalog] = None,
    ):
        self._llm = llm
        self._tts = tts
        self._catalog = catalog

    @property
    def llm(self) -> LLMService:
        return self._llm or get_llm_service()

    @property
    def tts(self) -> TTSService:
        return self._tts or get_tts_service()

    @property
    def catalog(self) -> VoiceCatalog:
        return self._catalog or get_voice_catalog()

    async def reply(
        self,
        history: Iterable,
        topic: str = DEFAULT_TOPIC,
        level: str = DEFAULT_LEVEL,
        voice_id: Optional[str] = None,
    ) -> Reply:
        """
        Generate the coach's next message for ``history``.

        Raises:
            ServiceError: When the LLM call fails
        """
        messages: List[Message] = coerce_messages(history)
        requested = voice_id or DEFAULT_INSTRUCTOR.id
        instructor = get_instructor(requested)

        preamble = get_coach_preamble(
            instructor.label,
            instructor.persona,
            topic or DEFAULT_TOPIC,
            level or DEFAULT_LEVEL,
        )
        payload = [{"role": "system", "content": preamble}]
        payload.extend(m.to_dict() for m in messages if m.role != "system")

        text = await self.llm.generate(payload)
        if not text:
            raise ServiceError("The coach returned an empty reply", code="empty_reply")

        audio = None
        try:
            resolved = await self.catalog.resolve(requested) or DEFAULT_INSTRUCTOR.id
            audio = await self.tts.synthesize(text, instructor.voice_config(resolved))
        except ServiceError as e:
            logger.warning(f"TTS failed (text returned without audio): {e}")

        return Reply(text=text, audio=audio, persona=instructor.persona)


_reply_service: Optional[ReplyService] = None


def get_reply_service() -> ReplyService:
    global _reply_service
    if _reply_service is None:
        _reply_service = ReplyService()
    return _reply_service
