"""FastAPI dependencies."""
from typing import Optional

from starlette.requests import HTTPConnection

from unmute.core.config import settings
from unmute.db.database import AsyncSessionLocal
from unmute.services.audio.store import EphemeralAudioStore
from unmute.services.call_session.manager import CallSessionManager
from unmute.services.call_session.store import CallSessionStore
from unmute.services.language.completion import CompletionService
from unmute.services.realtime.broadcaster import EventBroadcaster
from unmute.services.speech.stt import SpeechToTextService
from unmute.services.speech.tts import TextToSpeechService
from unmute.services.telephony.client import TelephonyService

# Process-wide singletons, created on first use
_call_store: Optional[CallSessionStore] = None
_audio_store: Optional[EphemeralAudioStore] = None
_broadcaster: Optional[EventBroadcaster] = None
_session_manager: Optional[CallSessionManager] = None


def get_call_store() -> CallSessionStore:
    global _call_store
    if _call_store is None:
        _call_store = CallSessionStore(retention_seconds=settings.session_retention_seconds)
    return _call_store


def get_audio_store() -> EphemeralAudioStore:
    global _audio_store
    if _audio_store is None:
        _audio_store = EphemeralAudioStore(
            settings.audio_dir,
            ttl_seconds=settings.audio_ttl_seconds,
            unserved_ttl_seconds=settings.audio_unserved_ttl_seconds,
        )
    return _audio_store


def get_broadcaster() -> EventBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = EventBroadcaster()
    return _broadcaster


def get_session_manager() -> CallSessionManager:
    """Get call session manager."""
    global _session_manager
    if _session_manager is None:
        _session_manager = CallSessionManager(
            store=get_call_store(),
            telephony=TelephonyService(),
            tts_service=TextToSpeechService(),
            stt_service=SpeechToTextService(),
            completion_service=CompletionService(),
            audio_store=get_audio_store(),
            broadcaster=get_broadcaster(),
            session_factory=AsyncSessionLocal,
        )
    return _session_manager


def get_base_url(request: HTTPConnection) -> str:
    """
    Get the public base URL for constructing absolute URLs.

    Uses BASE_URL if set, otherwise builds an https URL from the request
    host (Twilio only fetches https media and webhooks). Plain http is kept
    for local hosts.
    """
    if settings.base_url:
        return settings.base_url.rstrip("/")

    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
    if scheme in ("ws", "wss"):
        scheme = "https" if scheme == "wss" else "http"
    if scheme == "http" and host.split(":")[0] not in ("localhost", "127.0.0.1", "testserver"):
        scheme = "https"
    return f"{scheme}://{host}"
