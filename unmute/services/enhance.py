"""Best-effort text enhancement results.

Formatting and re-synthesis steps must never block the primary transcript
path, so they return either the enhanced value or the input they were
given, tagged with why the fallback happened.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Enhanced:
    text: str

    @property
    def is_fallback(self) -> bool:
        return False


@dataclass(frozen=True)
class Fallback:
    text: str
    reason: str

    @property
    def is_fallback(self) -> bool:
        return True


EnhanceResult = Union[Enhanced, Fallback]


async def enhance_or_passthrough(
    text: str,
    enhancer: Optional[Callable[[str], Awaitable[Optional[str]]]],
    label: str = "enhance",
) -> EnhanceResult:
    """Run ``enhancer`` on ``text``; fall back to ``text`` on any failure."""
    if enhancer is None:
        return Fallback(text, "enhancer unavailable")
    try:
        result = await enhancer(text)
    except Exception as e:
        logger.warning(f"[{label.upper()}] Falling back to original text: {type(e).__name__}: {e}")
        return Fallback(text, f"{type(e).__name__}: {e}")

    result = (result or "").strip()
    if not result:
        return Fallback(text, "empty result")
    return Enhanced(result)
