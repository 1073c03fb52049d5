"""Speech-to-text service."""
import logging
from typing import Optional

from openai import AsyncOpenAI

from unmute.core.config import settings
from unmute.services.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class SpeechToTextService:
    """Service for converting speech to text."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        if client is None and settings.openai_configured:
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client
        self.model = model or settings.stt_model

    @property
    def available(self) -> bool:
        return self.client is not None

    async def transcribe_audio(
        self,
        audio_data: bytes,
        format: str = "wav",
        language: Optional[str] = "en",
    ) -> str:
        """
        Transcribe audio to text using OpenAI Whisper.

        Args:
            audio_data: Audio file bytes (a complete WAV/MP3 file, not raw PCM)
            format: Audio container (wav, mp3, ...)
            language: Spoken language hint

        Returns:
            Transcribed text, stripped of surrounding whitespace
        """
        if not self.available:
            raise ConfigurationError("OpenAI is not configured. Please provide OPENAI_API_KEY.")

        mime = "audio/mpeg" if format == "mp3" else f"audio/{format}"
        kwargs = {"language": language} if language else {}
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"audio.{format}", audio_data, mime),
                **kwargs,
            )
        except Exception as e:
            raise UpstreamError("Transcription failed", str(e)) from e
        return (transcript.text or "").strip()
