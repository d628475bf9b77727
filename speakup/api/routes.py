"""
HTTP API for the SpeakUp coach.

Plain request/response endpoints around the vendor-backed services. The
turn pipeline itself lives behind the WebSocket endpoint.
"""

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from speakup.prompts import DEFAULT_LEVEL, DEFAULT_TOPIC
from speakup.services.errors import ServiceError
from speakup.services.feedback_service import FeedbackContext, FeedbackService, get_feedback_service
from speakup.services.reply_service import ReplyService, get_reply_service
from speakup.services.voice_catalog import (
    DEFAULT_INSTRUCTOR,
    INSTRUCTORS,
    VoiceCatalog,
    get_voice_catalog,
)

router = APIRouter()


class ChatRequest(BaseModel):
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    topic: str = DEFAULT_TOPIC
    level: str = DEFAULT_LEVEL
    user: str = "friend"
    voiceId: Optional[str] = None


class FeedbackRequest(BaseModel):
    transcript: str
    context: Optional[Dict[str, Any]] = None


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.get("/ping", tags=["monitoring"])
async def ping():
    return {"ok": True, "t": int(time.time() * 1000)}


@router.get("/api/voices", tags=["voices"])
async def list_voices(catalog: VoiceCatalog = Depends(get_voice_catalog)):
    """Instructor voices that passed the availability probe."""
    try:
        voices = await catalog.available()
    except Exception as e:
        logger.error(f"Voice list error: {e}")
        return {
            "voices": [v.to_dict() for v in INSTRUCTORS[:2]],
            "fallback": True,
            "error": str(e),
        }
    return {"voices": [v.to_dict() for v in voices]}


@router.post("/api/voices/refresh", tags=["voices"])
async def refresh_voices(catalog: VoiceCatalog = Depends(get_voice_catalog)):
    catalog.invalidate()
    voices = await catalog.available()
    return {"ok": True, "size": len(voices)}


@router.get("/api/tts-test", tags=["voices"])
async def tts_test(
    voice: str = DEFAULT_INSTRUCTOR.id,
    catalog: VoiceCatalog = Depends(get_voice_catalog),
):
    """Short audition phrase in the requested voice."""
    try:
        audio = await catalog.preview(voice)
    except ServiceError as e:
        logger.error(f"TTS test failed for {voice}: {e}")
        return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})
    return {"ok": True, "audio": audio}


@router.post("/api/chat", tags=["conversation"])
async def chat(
    request: ChatRequest,
    reply_service: ReplyService = Depends(get_reply_service),
):
    """One coach reply for the posted history."""
    try:
        reply = await reply_service.reply(
            request.messages,
            topic=request.topic,
            level=request.level,
            voice_id=request.voiceId,
        )
    except ServiceError as e:
        logger.error(f"Chat failed: {e}")
        return error_response(500, str(e) or "Chat failed")
    return reply.to_dict()


@router.post("/api/feedback", tags=["conversation"])
async def feedback(
    request: FeedbackRequest,
    feedback_service: FeedbackService = Depends(get_feedback_service),
):
    """Scored feedback for one learner transcript."""
    if not request.transcript.strip():
        return error_response(400, "Missing transcript (string).")

    context = FeedbackContext.from_payload(request.context)
    try:
        result = await feedback_service.generate(request.transcript, context)
    except ServiceError as e:
        logger.error(f"Feedback failed: {e}")
        return error_response(
            500,
            f"Feedback error: {e}",
            hint="Try a shorter sentence. If this persists, switch FEEDBACK_PROVIDER in .env.",
        )
    return result.to_dict()
