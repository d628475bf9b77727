"""
TTS (Text-to-Speech) Service using the Azure Speech REST API.

Coach replies are written for chat, so the text is flattened from
markdown and a few colloquial spellings are expanded before the SSML is
built. Audio is returned base64-encoded so it can travel inside JSON.
"""

import base64
import re
from dataclasses import dataclass
from typing import Optional
from xml.sax.saxutils import escape

import httpx
from loguru import logger

from speakup.config import settings
from speakup.services.errors import ServiceError


@dataclass
class VoiceConfig:
    """Configuration for voice synthesis."""

    voice_id: str = "en-US-AriaNeural"
    rate: str = "1.0"
    pitch: str = "0%"
    language: str = "en-US"


_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_EMPHASIS = (
    re.compile(r"\*\*([^*]+)\*\*"),
    re.compile(r"__([^_]+)__"),
    re.compile(r"\*([^*]+)\*"),
    re.compile(r"_([^_]+)_"),
)
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_BULLET = re.compile(r"^\s{0,3}[-*+]\s+", re.MULTILINE)
_QUOTE = re.compile(r"^\s{0,3}>\s?", re.MULTILINE)


def markdown_to_plain(text: str) -> str:
    """Strip markdown markup so the synthesizer doesn't read symbols aloud."""
    if not text:
        return ""
    text = _CODE_BLOCK.sub("", text)
    text = _INLINE_CODE.sub(r"\1", text)
    for pattern in _EMPHASIS:
        text = pattern.sub(r"\1", text)
    text = _IMAGE.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = re.sub(r"[_*]{2,}", " ", text)
    text = _HEADING.sub("", text)
    text = _BULLET.sub("", text)
    text = _QUOTE.sub("", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


_SHORT_FORMS = (
    (re.compile(r"(?<!\w)'em\b", re.IGNORECASE), "them"),
    (re.compile(r"(?<!\w)'til\b", re.IGNORECASE), "until"),
    (re.compile(r"(?<!\w)'cause\b", re.IGNORECASE), "because"),
    (re.compile(r"(?<!\w)'kay\b", re.IGNORECASE), "okay"),
    (re.compile(r"\bya\b", re.IGNORECASE), "you"),
)


def normalize_colloquial(text: str) -> str:
    """Expand dropped-g and clipped forms that sound odd when synthesized."""
    text = (text or "").replace("’", "'")
    text = re.sub(r"\b([A-Za-z]{2,})in'(?!\w)", r"\1ing", text)
    for pattern, replacement in _SHORT_FORMS:
        text = pattern.sub(replacement, text)
    return text


def prepare_text(text: str) -> str:
    return normalize_colloquial(markdown_to_plain(text))


def _prosody_rate(rate: str) -> str:
    """Azure accepts relative percentages; catalog rates are multipliers."""
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return "0%"
    return f"{round((value - 1.0) * 100):+d}%"


_XML_QUOTES = {"\"": "&quot;", "'": "&apos;"}


def build_ssml(text: str, voice: VoiceConfig) -> str:
    body = escape(text, _XML_QUOTES)
    return (
        f'<speak version="1.0" xml:lang="{voice.language}">'
        f'<voice name="{escape(voice.voice_id)}">'
        f'<prosody rate="{_prosody_rate(voice.rate)}" pitch="{escape(voice.pitch)}">'
        f"{body}"
        f"</prosody></voice></speak>"
    )


class TTSService:
    """Text-to-speech service backed by Azure Speech."""

    def __init__(
        self,
        key: Optional[str] = None,
        region: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the TTS service."""
        self.key = key if key is not None else settings.azure_speech_key
        self.region = region if region is not None else settings.azure_speech_region
        self.output_format = settings.tts_output_format
        self.timeout = settings.tts_timeout_s
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.key and self.region)

    @property
    def endpoint(self) -> str:
        return f"https://{self.region}.tts.speech.microsoft.com/cognitiveservices/v1"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def synthesize(self, text: str, voice: Optional[VoiceConfig] = None) -> str:
        """
        Synthesize ``text`` and return base64-encoded audio.

        Raises:
            ServiceError: When Azure is not configured or synthesis fails
        """
        if not self.is_configured:
            raise ServiceError("Azure Speech is not configured", code="missing_api_key")

        plain = prepare_text(text)
        if not plain:
            raise ServiceError("Nothing to synthesize", code="empty_text")

        voice = voice or VoiceConfig()
        ssml = build_ssml(plain, voice)

        try:
            response = await self._get_client().post(
                self.endpoint,
                headers={
                    "Ocp-Apim-Subscription-Key": self.key,
                    "Content-Type": "application/ssml+xml",
                    "X-Microsoft-OutputFormat": self.output_format,
                    "User-Agent": "speakup",
                },
                content=ssml.encode("utf-8"),
            )
        except httpx.HTTPError as e:
            logger.error(f"TTS request failed: {e}")
            raise ServiceError(f"TTS request failed: {e}", code="network_error") from e

        if response.status_code >= 400:
            logger.error(f"TTS provider returned {response.status_code} for voice {voice.voice_id}")
            raise ServiceError(
                f"TTS failed for {voice.voice_id} (HTTP {response.status_code})",
                code="provider_error",
            )

        if not response.content:
            raise ServiceError("TTS returned no audio", code="empty_audio")

        return base64.b64encode(response.content).decode("ascii")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global service instance (singleton pattern)
_tts_service: Optional[TTSService] = None


def get_tts_service() -> TTSService:
    """Get or create the global TTS service instance."""
    global _tts_service
    if _tts_service is None:
        _tts_service = TTSService()
    return _tts_service
