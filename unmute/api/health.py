"""Health check endpoint."""
import logging

from fastapi import APIRouter, Depends, Request

from unmute.core.config import settings
from unmute.core.dependencies import get_broadcaster, get_call_store
from unmute.services.call_session.store import CallSessionStore
from unmute.services.realtime.broadcaster import EventBroadcaster

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(
    request: Request,
    store: CallSessionStore = Depends(get_call_store),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "healthy",
        "twilio": settings.twilio_configured,
        "openai": settings.openai_configured,
        "activeCalls": len(store),
        "clients": broadcaster.client_count,
    }
