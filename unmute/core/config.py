"""Application configuration."""
import os
import tempfile
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI (speech synthesis, recognition and summarization)
    openai_api_key: Optional[str] = None
    tts_model: str = "tts-1"
    stt_model: str = "whisper-1"
    summary_model: str = "gpt-4o"
    format_model: str = "gpt-4o-mini"

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # Database
    database_url: str

    # Public URL Twilio uses to reach us (falls back to the request host)
    base_url: Optional[str] = None

    # Ephemeral audio
    audio_dir: str = os.path.join(tempfile.gettempdir(), "unmute-audio")
    audio_ttl_seconds: float = 60.0
    audio_unserved_ttl_seconds: float = 600.0

    # Call sessions
    session_retention_seconds: float = 600.0
    session_sweep_interval_seconds: float = 60.0

    # Auth
    session_cookie_max_age: int = 86400

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)


settings = Settings()
