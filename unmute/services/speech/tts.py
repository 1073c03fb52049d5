"""Text-to-speech service."""
import logging
import random
from typing import Optional

from openai import AsyncOpenAI

from unmute.core.config import settings
from unmute.services.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

VOICE_MODELS = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
DEFAULT_VOICE = "alloy"
DEFAULT_SPEED = 1.0


def random_voice() -> str:
    """Pick a voice for sessions that did not choose one."""
    return random.choice(VOICE_MODELS)


class TextToSpeechService:
    """Service for converting text to speech."""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        if client is None and settings.openai_configured:
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client
        self.model = model or settings.tts_model

    @property
    def available(self) -> bool:
        return self.client is not None

    async def synthesize_speech(
        self,
        text: str,
        voice: str = DEFAULT_VOICE,
        speed: float = DEFAULT_SPEED,
        response_format: str = "mp3",
    ) -> bytes:
        """
        Synthesize speech from text using OpenAI TTS.

        Args:
            text: Text to convert to speech
            voice: Voice to use (alloy, echo, fable, onyx, nova, shimmer)
            speed: Playback speed multiplier
            response_format: Audio container, mp3 or wav

        Returns:
            Audio bytes in the requested format
        """
        if not self.available:
            raise ConfigurationError("OpenAI is not configured. Please provide OPENAI_API_KEY.")

        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice or DEFAULT_VOICE,
                input=text,
                speed=speed or DEFAULT_SPEED,
                response_format=response_format,
            )
            return response.content
        except Exception as e:
            logger.error(f"[TTS] Synthesis failed - voice: {voice}, Error: {type(e).__name__}: {e}")
            raise UpstreamError("TTS synthesis failed", str(e)) from e
