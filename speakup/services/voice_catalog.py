"""
Instructor voice catalog.

Each instructor pairs a TTS voice with a persona used in the coach's system
preamble. Voices are probed against the TTS service before being offered,
and a regional substitute is used when a voice is unavailable.
"""

import time
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

from loguru import logger

from speakup.config import settings
from speakup.services.errors import ServiceError
from speakup.services.tts_service import TTSService, VoiceConfig, get_tts_service


@dataclass(frozen=True)
class Instructor:
    id: str
    label: str
    persona: str
    rate: str = "1.0"
    pitch: str = "0%"

    def voice_config(self, voice_id: Optional[str] = None) -> VoiceConfig:
        voice_id = voice_id or self.id
        return VoiceConfig(
            voice_id=voice_id,
            rate=self.rate,
            pitch=self.pitch,
            language="-".join(voice_id.split("-")[:2]),
        )

    @property
    def first_name(self) -> str:
        try:
            return self.id.split("-")[2].replace("Neural", "")
        except IndexError:
            return "your coach"

    def to_dict(self) -> dict:
        return asdict(self)


INSTRUCTORS: List[Instructor] = [
    Instructor(
        id="en-US-AriaNeural",
        label="Aria (US, F) - Friendly coach",
        persona="Warm, encouraging American English. Short, positive nudges.",
    ),
    Instructor(
        id="en-US-GuyNeural",
        label="Guy (US, M) - Confident mentor",
        persona="Confident, supportive; motivates action with clarity.",
    ),
    Instructor(
        id="en-GB-SoniaNeural",
        label="Sonia (UK, F) - Calm & clear",
        persona="Measured pace; clarity first; stress patterns.",
        rate="0.98",
    ),
    Instructor(
        id="en-AU-OliviaNeural",
        label="Olivia (AU, F) - Warm & modern",
        persona="Warm tone; modern register; supportive cues.",
    ),
    Instructor(
        id="en-AU-NatashaNeural",
        label="Natasha (AU, F) - Natural Aussie",
        persona="Authentic Aussie phrasing; relaxed but clear.",
    ),
    Instructor(
        id="en-CA-ClaraNeural",
        label="Clara (CA, F) - Supportive",
        persona="Gentle correction by example; neutral Canadian tone.",
    ),
]

# Regional substitutes for voices that may be unavailable
VOICE_SUBSTITUTES: Dict[str, str] = {
    "en-AU-OliviaNeural": "en-AU-NatashaNeural",
}

DEFAULT_INSTRUCTOR = INSTRUCTORS[0]


def get_instructor(voice_id: Optional[str]) -> Instructor:
    """Catalog entry for ``voice_id``, or the default instructor."""
    for instructor in INSTRUCTORS:
        if instructor.id == voice_id:
            return instructor
    return DEFAULT_INSTRUCTOR


class VoiceCatalog:
    """Availability-checked instructor list with a time-based cache."""

    PROBE_TEXT = "Hi!"
    REVALIDATE_S = 6 * 60 * 60

    def __init__(self, tts: Optional[TTSService] = None, allow: Optional[List[str]] = None):
        self._tts = tts
        self.allow = list(allow) if allow is not None else settings.voice_allow_list
        self._usable: Dict[str, bool] = {}
        self._cache: Optional[List[Instructor]] = None
        self._cached_at = 0.0

    @property
    def tts(self) -> TTSService:
        if self._tts is None:
            self._tts = get_tts_service()
        return self._tts

    def invalidate(self) -> None:
        self._usable.clear()
        self._cache = None
        self._cached_at = 0.0

    async def is_usable(self, voice_id: str) -> bool:
        if voice_id in self._usable:
            return self._usable[voice_id]
        try:
            await self.tts.synthesize(self.PROBE_TEXT, get_instructor(voice_id).voice_config(voice_id))
            usable = True
        except ServiceError as e:
            logger.debug(f"Voice {voice_id} unavailable: {e}")
            usable = False
        self._usable[voice_id] = usable
        return usable

    async def resolve(self, voice_id: Optional[str]) -> Optional[str]:
        """Return a usable voice id for ``voice_id`` (or its substitute)."""
        voice_id = voice_id or DEFAULT_INSTRUCTOR.id
        if await self.is_usable(voice_id):
            return voice_id
        substitute = VOICE_SUBSTITUTES.get(voice_id)
        if substitute and await self.is_usable(substitute):
            return substitute
        return None

    async def available(self) -> List[Instructor]:
        now = time.monotonic()
        if self._cache is not None and now - self._cached_at < self.REVALIDATE_S:
            return self._cache

        out: List[Instructor] = []
        seen = set()
        for instructor in INSTRUCTORS:
            resolved = await self.resolve(instructor.id)
            if not resolved or resolved in seen:
                continue
            seen.add(resolved)
            out.append(get_instructor(resolved))

        if not out:
            logger.warning("No instructor voice passed the availability probe; using defaults")
            out = [INSTRUCTORS[0], INSTRUCTORS[1]]

        if self.allow:
            allowed = [v for v in out if v.id in self.allow]
            if allowed:
                out = allowed

        self._cache = out
        self._cached_at = now
        return out

    async def preview(self, voice_id: Optional[str]) -> str:
        """Synthesize a short greeting in ``voice_id``; returns base64 audio."""
        resolved = await self.resolve(voice_id) or DEFAULT_INSTRUCTOR.id
        instructor = get_instructor(resolved)
        return await self.tts.synthesize(
            f"Hi! This is {instructor.first_name}.",
            instructor.voice_config(resolved),
        )


# Global catalog instance (singleton pattern)
_voice_catalog: Optional[VoiceCatalog] = None


def get_voice_catalog() -> VoiceCatalog:
    global _voice_catalog
    if _voice_catalog is None:
        _voice_catalog = VoiceCatalog()
    return _voice_catalog
