"""
LLM Service for the SpeakUp coach.

Talks to any OpenAI-compatible chat-completions endpoint (Groq by default,
OpenAI for feedback when configured) over httpx. Also holds the running
conversation history shared by the turn pipeline.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import httpx
from loguru import logger

from speakup.config import settings
from speakup.services.errors import ServiceError


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "system", "user" or "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ConversationHistory:
    """Append-only, role-tagged conversation log."""

    messages: List[Message] = field(default_factory=list)

    def add_user_message(self, content: str) -> None:
        """Add a user message to the conversation."""
        self.messages.append(Message(role="user", content=content))

    def add_assistant_message(self, content: str) -> None:
        """Add an assistant message to the conversation."""
        self.messages.append(Message(role="assistant", content=content))

    def last_assistant(self) -> str:
        for msg in reversed(self.messages):
            if msg.role == "assistant":
                return msg.content
        return ""

    def tail(self, count: int) -> List[Message]:
        if count <= 0:
            return []
        return list(self.messages[-count:])

    def __len__(self) -> int:
        return len(self.messages)


def coerce_messages(raw: Iterable) -> List[Message]:
    """Build messages from loosely-typed request payloads, skipping junk."""
    out: List[Message] = []
    for item in raw or []:
        if isinstance(item, Message):
            out.append(item)
            continue
        if not isinstance(item, dict):
            continue
        role = str(item.get("role") or "").strip()
        content = item.get("content")
        if role not in ("user", "assistant", "system") or not isinstance(content, str):
            continue
        out.append(Message(role=role, content=content))
    return out


class LLMService:
    """
    Chat-completions client.

    A single httpx.AsyncClient is created lazily and reused for every call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the LLM service."""
        self.api_key = api_key if api_key is not None else settings.groq_api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.default_temperature = settings.llm_temperature
        self.timeout = settings.llm_timeout_s
        self._client = client
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._lock:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self.timeout)
            return self._client

    async def generate(
        self,
        messages: List[dict],
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Run one chat completion and return the assistant text.

        Args:
            messages: OpenAI-style role/content dicts
            temperature: Sampling temperature (defaults to settings)
            model: Override the configured model
            json_mode: Ask the provider for a JSON object response

        Raises:
            ServiceError: When the key is missing or the provider fails
        """
        if not self.api_key:
            raise ServiceError("LLM API key is not configured", code="missing_api_key")

        body = {
            "model": model or self.model,
            "temperature": self.default_temperature if temperature is None else temperature,
            "messages": messages,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
            )
        except httpx.HTTPError as e:
            logger.error(f"LLM request failed: {e}")
            raise ServiceError(f"LLM request failed: {e}", code="network_error") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            if isinstance(error, dict):
                message = error.get("message") or "LLM provider error"
                code = error.get("type") or error.get("code") or "provider_error"
            else:
                message = f"LLM provider error (HTTP {response.status_code})"
                code = "provider_error"
            logger.error(f"LLM provider returned {response.status_code}: {message}")
            raise ServiceError(message, code=str(code))

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = ""
        return (content or "").strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Global service instance (singleton pattern)
_llm_service: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """Get or create the global LLM service instance."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
