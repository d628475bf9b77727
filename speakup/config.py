"""
Configuration module for the SpeakUp coaching backend.
Uses pydantic-settings for environment variable management.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ===========================================
    # Server Configuration
    # ===========================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # ===========================================
    # Reply (LLM) Configuration
    # ===========================================
    groq_api_key: Optional[str] = Field(default=None, description="Groq API key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    llm_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="OpenAI-compatible base URL used for conversational replies",
    )
    llm_model: str = Field(
        default="llama-3.1-8b-instant", description="Chat model for coach replies"
    )
    llm_temperature: float = Field(
        default=0.7, description="Sampling temperature for coach replies"
    )
    llm_timeout_s: float = Field(
        default=30.0, description="Timeout for LLM requests in seconds"
    )

    # ===========================================
    # Feedback Configuration
    # ===========================================
    feedback_provider: str = Field(
        default="groq", description="Feedback provider (groq or openai)"
    )
    feedback_model_groq: str = Field(
        default="llama-3.1-70b-versatile", description="Groq model used for feedback"
    )
    feedback_model_openai: str = Field(
        default="gpt-4o-mini", description="OpenAI model used for feedback"
    )
    feedback_max_chars: int = Field(
        default=1500, description="Transcript length sent to the feedback rubric"
    )
    feedback_history_tail: int = Field(
        default=6, description="Number of recent history entries sent as feedback context"
    )

    # ===========================================
    # TTS (Text-to-Speech) Configuration
    # ===========================================
    azure_speech_key: Optional[str] = Field(
        default=None, description="Azure Speech subscription key"
    )
    azure_speech_region: Optional[str] = Field(
        default=None, description="Azure Speech region (e.g. eastus)"
    )
    tts_output_format: str = Field(
        default="audio-24khz-48kbitrate-mono-mp3",
        description="Azure Speech output format",
    )
    tts_timeout_s: float = Field(
        default=20.0, description="Timeout for TTS requests in seconds"
    )
    voice_allow: str = Field(
        default="",
        description="Comma-separated allow-list of instructor voice ids (empty = all)",
    )

    # ===========================================
    # Capture Pipeline Configuration
    # ===========================================
    capture_mode: str = Field(
        default="auto", description="Default capture mode (auto or push_to_finish)"
    )
    capture_silence_ms: int = Field(
        default=1800, description="Silence window before an auto-flush"
    )
    capture_max_utterance_ms: int = Field(
        default=180_000, description="Absolute cap on a single utterance"
    )
    # Browsers end continuous recognition at roughly 60s
    capture_session_renewal_ms: int = Field(
        default=50_000, description="Recognizer session renewal interval"
    )
    capture_stop_fallback_ms: int = Field(
        default=400, description="Hard-kill window after a requested stop"
    )
    capture_restart_backoff_ms: int = Field(
        default=250, description="Delay before restarting a provider-ended session"
    )
    playback_resume_delay_ms: int = Field(
        default=300, description="Delay before resuming capture after playback"
    )

    # ===========================================
    # Echo Filter Configuration
    # ===========================================
    echo_min_chars: int = Field(
        default=6, description="Candidates shorter than this are never treated as echo"
    )
    echo_overlap_ratio: float = Field(
        default=0.7, description="Word overlap ratio at which a candidate is echo"
    )

    # ===========================================
    # CORS Configuration
    # ===========================================
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # ===========================================
    # Logging
    # ===========================================
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        description="Loguru log format",
    )

    # ===========================================
    # Computed Properties
    # ===========================================
    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string to list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def voice_allow_list(self) -> List[str]:
        """Parse the voice allow-list from comma-separated string to list."""
        return [v.strip() for v in self.voice_allow.split(",") if v.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def feedback_uses_openai(self) -> bool:
        return self.feedback_provider.lower() == "openai"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Global settings instance for convenience
settings = get_settings()
