"""LLM completion service: call summaries and text clean-up."""
import logging
from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from unmute.core.config import settings
from unmute.services.enhance import EnhanceResult, enhance_or_passthrough
from unmute.services.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = (
    "You are a helpful assistant that summarizes phone call transcripts. Create a brief, "
    "concise summary of the key points from this call transcript. Format your response as "
    "a paragraph, focusing on the most important information exchanged."
)

MESSAGE_FORMAT_PROMPT = (
    "You are an assistant that formats text with proper punctuation, capitalization, and "
    "corrects common spelling errors. Your only job is to fix formatting and spelling while "
    "preserving the meaning exactly. Return only the formatted text without any explanation."
)

TRANSCRIPTION_FORMAT_PROMPT = (
    "You are a transcription formatter. Format the raw transcription into clear, readable "
    "text. Fix punctuation, capitalization, and add paragraph breaks where appropriate. "
    "Don't add any information not in the original text."
)


def format_transcript_for_summary(entries: Sequence) -> str:
    """Render transcript entries as role-tagged lines in arrival order."""
    return "\n".join(
        f"{'User' if entry.is_user else 'Caller'}: {entry.text}" for entry in entries
    )


class CompletionService:
    """Service wrapping OpenAI chat completions."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        if client is None and settings.openai_configured:
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Run a chat completion and return the first choice's text."""
        if not self.available:
            raise ConfigurationError("OpenAI is not configured. Please provide OPENAI_API_KEY.")

        kwargs = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await self.client.chat.completions.create(
                model=model or settings.format_model,
                messages=messages,
                **kwargs,
            )
        except Exception as e:
            raise UpstreamError("Completion failed", str(e)) from e

        content = response.choices[0].message.content
        return (content or "").strip()

    async def summarize_transcript(self, entries: Sequence) -> Optional[str]:
        """Summarize a call transcript. Returns None for an empty transcript."""
        if not entries:
            return None
        return await self.complete(
            [
                {"role": "system", "content": SUMMARY_PROMPT},
                {"role": "user", "content": format_transcript_for_summary(entries)},
            ],
            model=settings.summary_model,
            max_tokens=250,
        )

    async def _format_message(self, text: str) -> str:
        return await self.complete(
            [
                {"role": "system", "content": MESSAGE_FORMAT_PROMPT},
                {"role": "user", "content": text},
            ],
            temperature=0.3,
            max_tokens=256,
        )

    async def _format_transcription(self, text: str) -> str:
        return await self.complete(
            [
                {"role": "system", "content": TRANSCRIPTION_FORMAT_PROMPT},
                {"role": "user", "content": f'Format this raw transcription: "{text}"'},
            ],
            temperature=0.3,
        )

    async def format_message(self, text: str) -> EnhanceResult:
        """Fix casing, punctuation and spelling of a typed message, best effort."""
        enhancer = self._format_message if self.available else None
        return await enhance_or_passthrough(text, enhancer, label="format message")

    async def format_transcription(self, text: str) -> EnhanceResult:
        """Make a raw live transcription readable, best effort."""
        enhancer = self._format_transcription if self.available else None
        return await enhance_or_passthrough(text, enhancer, label="format transcription")
