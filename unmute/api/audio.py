"""Ephemeral audio file endpoint.

Twilio fetches the audio played on calls here, and browsers fetch the
same files for playback.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse

from unmute.core.dependencies import get_audio_store
from unmute.services.audio.store import EphemeralAudioStore, is_valid_artifact_id

router = APIRouter()
logger = logging.getLogger(__name__)

AUDIO_HEADERS = {
    "Accept-Ranges": "bytes",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD",
    "Access-Control-Allow-Headers": "Range",
    "Cache-Control": "public, max-age=60",
}


@router.api_route("/temp-audio/{artifact_id}", methods=["GET", "HEAD"])
@router.api_route("/api/call/audio/{artifact_id}", methods=["GET", "HEAD"])
async def serve_audio(
    request: Request,
    artifact_id: str,
    forceMime: Optional[str] = Query(None),
    audio_store: EphemeralAudioStore = Depends(get_audio_store),
):
    """Serve a stored artifact with byte-range support."""
    if not is_valid_artifact_id(artifact_id):
        logger.warning(f"[AUDIO] Invalid filename requested: {artifact_id}")
        raise HTTPException(status_code=400, detail={"message": "Invalid filename"})

    artifact = audio_store.lookup(artifact_id)
    if artifact is None or not artifact.path.exists():
        logger.debug(f"[AUDIO] Audio file not found: {artifact_id}")
        raise HTTPException(status_code=404, detail={"message": "Audio file not found"})

    if request.method == "GET":
        audio_store.mark_served(artifact_id)

    logger.debug(
        f"[AUDIO] Serving {artifact_id} - Client: {request.client.host if request.client else 'unknown'}, "
        f"Range: {request.headers.get('range', 'none')}"
    )
    return FileResponse(
        artifact.path,
        media_type=forceMime or artifact.mime_type,
        headers=AUDIO_HEADERS,
    )
