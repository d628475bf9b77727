import base64
import json

import httpx
import pytest

from speakup.services.errors import ServiceError
from speakup.services.llm_service import ConversationHistory, LLMService, coerce_messages
from speakup.services.reply_service import ReplyService
from speakup.services.tts_service import (
    TTSService,
    VoiceConfig,
    build_ssml,
    markdown_to_plain,
    normalize_colloquial,
)
from speakup.services.voice_catalog import DEFAULT_INSTRUCTOR, VoiceCatalog, get_instructor


class StubLLM:
    def __init__(self, text="Nice! What did you buy?", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate(self, messages, **kwargs):
        self.calls.append(messages)
        if self.error:
            raise ServiceError(self.error)
        return self.text


class StubTTS:
    def __init__(self, broken=()):
        self.broken = set(broken)
        self.calls = []

    async def synthesize(self, text, voice=None):
        self.calls.append((text, voice))
        if voice is not None and voice.voice_id in self.broken:
            raise ServiceError(f"TTS failed for {voice.voice_id}")
        return base64.b64encode(f"{voice.voice_id}:{text}".encode()).decode("ascii")


# ----------------------------------------------------------------------
# LLM
# ----------------------------------------------------------------------
def test_history_tail_and_last_assistant():
    history = ConversationHistory()
    history.add_user_message("hi")
    history.add_assistant_message("hello!")
    history.add_user_message("how are you")

    assert history.last_assistant() == "hello!"
    assert [m.content for m in history.tail(2)] == ["hello!", "how are you"]
    assert history.tail(0) == []
    assert len(history) == 3


def test_coerce_messages_skips_junk():
    messages = coerce_messages(
        [{"role": "user", "content": "hi"}, {"role": "robot", "content": "x"}, {"role": "user"}, "text", None]
    )
    assert [(m.role, m.content) for m in messages] == [("user", "hi")]


async def test_llm_generate_posts_chat_completion():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url, request.headers["authorization"], json.loads(request.content)))
        return httpx.Response(200, json={"choices": [{"message": {"content": "  Sure thing.  "}}]})

    llm = LLMService(
        api_key="secret",
        base_url="https://llm.test/v1/",
        model="chat-model",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    text = await llm.generate([{"role": "user", "content": "hi"}], temperature=0.5)

    assert text == "Sure thing."
    url, auth, body = seen[0]
    assert str(url) == "https://llm.test/v1/chat/completions"
    assert auth == "Bearer secret"
    assert body == {"model": "chat-model", "temperature": 0.5, "messages": [{"role": "user", "content": "hi"}]}


async def test_llm_without_key_fails_fast():
    llm = LLMService(api_key="", base_url="https://llm.test/v1", model="m")
    with pytest.raises(ServiceError) as exc:
        await llm.generate([])
    assert exc.value.code == "missing_api_key"


async def test_llm_network_error_becomes_service_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    llm = LLMService(
        api_key="k",
        base_url="https://llm.test/v1",
        model="m",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(ServiceError) as exc:
        await llm.generate([{"role": "user", "content": "hi"}])
    assert exc.value.code == "network_error"


# ----------------------------------------------------------------------
# TTS
# ----------------------------------------------------------------------
def test_markdown_is_flattened_for_speech():
    text = "## Tips\n- Use **went**, not *goed*.\n- See [the guide](https://x.test)\n```code```"
    assert markdown_to_plain(text) == "Tips\nUse went, not goed.\nSee the guide"


def test_colloquial_forms_are_expanded():
    assert normalize_colloquial("I'm goin' to ask 'em ’cause ya know") == "I'm going to ask them because you know"


def test_ssml_escapes_text_and_converts_rate():
    ssml = build_ssml('Tom & "Jerry" <3', VoiceConfig(voice_id="en-GB-SoniaNeural", rate="0.98", language="en-GB"))
    assert 'xml:lang="en-GB"' in ssml
    assert '<voice name="en-GB-SoniaNeural">' in ssml
    assert 'rate="-2%"' in ssml
    assert "Tom &amp; &quot;Jerry&quot; &lt;3" in ssml


async def test_tts_synthesize_returns_base64_audio():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"ID3-mp3")

    tts = TTSService(key="k", region="eastus", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    audio = await tts.synthesize("**Hello** there")

    assert base64.b64decode(audio) == b"ID3-mp3"
    request = seen[0]
    assert request.url.host == "eastus.tts.speech.microsoft.com"
    assert request.headers["ocp-apim-subscription-key"] == "k"
    assert b">Hello there<" in request.content


async def test_tts_errors():
    unconfigured = TTSService(key="", region="")
    with pytest.raises(ServiceError):
        await unconfigured.synthesize("hi")

    failing = TTSService(
        key="k",
        region="eastus",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(400))),
    )
    with pytest.raises(ServiceError) as exc:
        await failing.synthesize("hi")
    assert exc.value.code == "provider_error"


# ----------------------------------------------------------------------
# Voice catalog
# ----------------------------------------------------------------------
def test_unknown_voice_falls_back_to_default_instructor():
    assert get_instructor("xx-XX-NobodyNeural") is DEFAULT_INSTRUCTOR
    assert get_instructor("en-GB-SoniaNeural").first_name == "Sonia"


async def test_resolve_uses_regional_substitute():
    catalog = VoiceCatalog(tts=StubTTS(broken={"en-AU-OliviaNeural"}), allow=[])
    assert await catalog.resolve("en-AU-OliviaNeural") == "en-AU-NatashaNeural"
    assert await catalog.resolve("en-US-GuyNeural") == "en-US-GuyNeural"


async def test_available_dedupes_and_applies_allow_list():
    catalog = VoiceCatalog(tts=StubTTS(broken={"en-AU-OliviaNeural"}), allow=[])
    ids = [v.id for v in await catalog.available()]
    assert ids.count("en-AU-NatashaNeural") == 1
    assert "en-AU-OliviaNeural" not in ids

    allowed = VoiceCatalog(tts=StubTTS(), allow=["en-GB-SoniaNeural"])
    assert [v.id for v in await allowed.available()] == ["en-GB-SoniaNeural"]


async def test_preview_greets_with_first_name():
    tts = StubTTS()
    catalog = VoiceCatalog(tts=tts, allow=[])
    audio = await catalog.preview("en-US-GuyNeural")

    assert base64.b64decode(audio).decode() == "en-US-GuyNeural:Hi! This is Guy."


# ----------------------------------------------------------------------
# Reply
# ----------------------------------------------------------------------
async def test_reply_builds_preamble_and_synthesizes():
    llm, tts = StubLLM(), StubTTS()
    service = ReplyService(llm=llm, tts=tts, catalog=VoiceCatalog(tts=tts, allow=[]))

    reply = await service.reply(
        [{"role": "user", "content": "I goed shopping"}],
        topic="shopping",
        level="Novice High",
        voice_id="en-GB-SoniaNeural",
    )

    system, user = llm.calls[0]
    assert system["role"] == "system"
    assert "Sonia" in system["content"]
    assert "Topic: shopping" in system["content"]
    assert user == {"role": "user", "content": "I goed shopping"}
    assert reply.text == "Nice! What did you buy?"
    assert base64.b64decode(reply.audio).decode() == "en-GB-SoniaNeural:Nice! What did you buy?"
    assert reply.persona == get_instructor("en-GB-SoniaNeural").persona


async def test_reply_without_audio_when_tts_fails():
    tts = StubTTS(broken={"en-US-AriaNeural"})
    service = ReplyService(llm=StubLLM(), tts=tts, catalog=VoiceCatalog(tts=tts, allow=[]))

    reply = await service.reply([{"role": "user", "content": "hello"}])

    assert reply.text == "Nice! What did you buy?"
    assert reply.audio is None


async def test_reply_failure_propagates_message():
    service = ReplyService(llm=StubLLM(error="Groq is down"), tts=StubTTS(), catalog=VoiceCatalog(tts=StubTTS(), allow=[]))
    with pytest.raises(ServiceError, match="Groq is down"):
        await service.reply([{"role": "user", "content": "hello"}])


async def test_empty_reply_is_an_error():
    service = ReplyService(llm=StubLLM(text=""), tts=StubTTS(), catalog=VoiceCatalog(tts=StubTTS(), allow=[]))
    with pytest.raises(ServiceError):
        await service.reply([{"role": "user", "content": "hello"}])
