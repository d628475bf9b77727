"""
SpeakUp Backend - Main Application Entry Point

This is the main FastAPI application that serves the SpeakUp speaking
coach. It provides:
- WebSocket endpoint running the turn-capture pipeline per connection
- HTTP endpoints for chat replies, feedback and voice auditions
- Health check endpoints
- Vendor client lifecycle (closing HTTP clients on shutdown)

Vendors:
- Replies: OpenAI-compatible chat completions (Groq by default)
- Feedback: Groq or OpenAI, JSON mode
- TTS: Azure Speech REST API
"""

import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from speakup import __version__
from speakup.api import http_router, websocket_router
from speakup.config import settings
from speakup.services.feedback_service import get_feedback_service
from speakup.services.llm_service import get_llm_service
from speakup.services.tts_service import get_tts_service


def vendor_status() -> dict:
    """Which vendor credentials are configured (values are never exposed)."""
    return {
        "llm": bool(settings.groq_api_key),
        "feedback": bool(
            settings.openai_api_key if settings.feedback_uses_openai else settings.groq_api_key
        ),
        "tts": bool(settings.azure_speech_key and settings.azure_speech_region),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    - Startup: report configuration and missing vendor credentials
    - Shutdown: close the shared HTTP clients
    """
    logger.info("=" * 60)
    logger.info("SpeakUp Backend Starting...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug Mode: {settings.debug}")
    logger.info(f"Capture mode: {settings.capture_mode}")
    logger.info("=" * 60)

    for name, configured in vendor_status().items():
        if configured:
            logger.info(f"✓ {name} credentials configured")
        else:
            logger.warning(f"⚠ {name} credentials missing - requests will fail")

    logger.info(
        f"WebSocket endpoint: ws://{settings.host}:{settings.port}/ws/conversation"
    )
    logger.info(f"Health check: http://{settings.host}:{settings.port}/health")

    yield  # Application runs here

    logger.info("SpeakUp Backend Shutting Down...")
    try:
        await get_tts_service().close()
        await get_llm_service().close()
        await get_feedback_service().close()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
    logger.info("SpeakUp Backend Stopped")


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    logger.debug(f"Rejected {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="SpeakUp Backend",
        description="Speaking coach with real-time capture, replies and scored feedback",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include routers
    app.include_router(http_router)
    app.include_router(websocket_router, tags=["conversation"])

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint - returns basic API information."""
        return {
            "name": "SpeakUp Backend",
            "version": __version__,
            "endpoints": {
                "websocket": "/ws/conversation",
                "chat": "/api/chat",
                "feedback": "/api/feedback",
                "voices": "/api/voices",
                "health": "/health",
                "docs": "/docs" if settings.debug else "disabled",
            },
        }

    @app.get("/health", tags=["monitoring"])
    async def health():
        """
        Basic health check endpoint.
        Returns 200 if the server is running.
        """
        return {"status": "healthy", "vendors": vendor_status()}

    return app


def configure_logging():
    """Configure loguru logging based on settings."""
    # Remove default handler
    logger.remove()

    log_format = settings.log_format

    logger.add(
        sys.stderr,
        format=log_format,
        level=settings.log_level,
        colorize=True,
    )

    # Add file handler for production
    if settings.is_production:
        logger.add(
            "logs/speakup-{time:YYYY-MM-DD}.log",
            rotation="1 day",
            retention="7 days",
            level="INFO",
            format=log_format,
        )


# Create the app instance
app = create_app()


def run():
    configure_logging()

    logger.info("")
    logger.info("=" * 60)
    logger.info("  SpeakUp Backend")
    logger.info("  Speaking coach with real-time feedback")
    logger.info("=" * 60)
    logger.info(f"  Server: http://{settings.host}:{settings.port}")
    logger.info(f"  Environment: {settings.environment}")
    logger.info(f"  Reply model: {settings.llm_model}")
    logger.info(f"  Feedback provider: {settings.feedback_provider}")
    logger.info("=" * 60)

    uvicorn.run(
        "speakup.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
