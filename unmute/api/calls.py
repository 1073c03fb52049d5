"""Call control endpoints used by the browser."""
import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.api.auth import require_user
from unmute.api.errors import http_error
from unmute.api.schemas import (
    CallRequest,
    DtmfRequest,
    MuteRequest,
    SpeakRequest,
    StartCallRequest,
    VoicePreviewRequest,
)
from unmute.core.dependencies import get_base_url, get_session_manager
from unmute.db.database import get_db
from unmute.services.call_session.manager import CallSessionManager
from unmute.services.errors import UnmuteError
from unmute.services.persistence.calls import CallHistoryService

router = APIRouter()
logger = logging.getLogger(__name__)


def _check_owner(session_manager: CallSessionManager, call_sid: Optional[str], user_id: int) -> None:
    """Calls belonging to another user look like unknown calls."""
    session = session_manager.store.get(call_sid)
    if session is not None and session.user_id != user_id:
        raise HTTPException(status_code=404, detail={"message": "Call not found"})


@router.post("/api/call/start")
async def start_call(
    request: Request,
    body: StartCallRequest,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Place an outbound call."""
    try:
        session = await session_manager.start_call(
            user_id=user_id,
            phone_number=body.phone_number,
            base_url=get_base_url(request),
            voice_model=body.voice_model,
            speech_speed=body.speech_speed,
        )
    except UnmuteError as e:
        logger.error(f"[CALL START] Failed to start call - To: {body.phone_number}, Error: {e.message}")
        raise http_error(e) from e

    return {"message": "Call initiated", "callSid": session.call_sid, "status": session.status.value}


@router.post("/api/call/end")
async def end_call(
    body: CallRequest,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    _check_owner(session_manager, body.call_sid, user_id)
    try:
        session = await session_manager.end_call(body.call_sid)
    except UnmuteError as e:
        logger.error(f"[CALL END] Failed to end call - CallSid: {body.call_sid}, Error: {e.message}")
        raise http_error(e) from e

    return {
        "message": "Call ended",
        "callSid": session.call_sid,
        "status": session.status.value,
        "summary": session.summary,
    }


@router.post("/api/call/mute")
async def mute_call(
    body: MuteRequest,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    _check_owner(session_manager, body.call_sid, user_id)
    try:
        session = await session_manager.set_muted(body.call_sid, body.mute)
    except UnmuteError as e:
        raise http_error(e) from e

    return {
        "message": "Call muted" if session.muted else "Call unmuted",
        "callSid": session.call_sid,
        "muted": session.muted,
    }


@router.post("/api/call/dtmf")
async def send_dtmf(
    body: DtmfRequest,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    _check_owner(session_manager, body.call_sid, user_id)
    try:
        await session_manager.send_dtmf(body.call_sid, body.digits)
    except UnmuteError as e:
        raise http_error(e) from e

    return {"message": "DTMF tones sent", "callSid": body.call_sid, "digits": body.digits}


@router.post("/api/call/speak")
async def speak(
    request: Request,
    body: SpeakRequest,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Speak typed text on the call.

    The text is formatted, synthesized and played to the far end; the
    reply is gathered through the transcribe webhook.
    """
    _check_owner(session_manager, body.call_sid, user_id)
    try:
        result = await session_manager.speak(
            body.call_sid,
            body.text,
            base_url=get_base_url(request),
            voice_model=body.voice_model,
            speech_speed=body.speech_speed,
            play_on_call_only=body.play_on_call_only,
        )
    except UnmuteError as e:
        logger.error(f"[SPEAK] Failed to play speech on call - CallSid: {body.call_sid}, Error: {e.message}")
        raise http_error(e) from e

    return {
        "message": "Speech played on call",
        "callSid": result.call_sid,
        "text": result.text,
        "audioUrl": result.audio_url,
    }


@router.post("/api/voice/preview")
async def preview_voice(
    request: Request,
    body: VoicePreviewRequest,
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Synthesize a sample of a voice."""
    try:
        audio_url = await session_manager.preview_voice(
            body.text,
            base_url=get_base_url(request),
            voice_model=body.voice_model,
            speech_speed=body.speech_speed,
            preferred_format=body.preferred_format,
        )
    except UnmuteError as e:
        raise http_error(e) from e

    logger.info(f"[VOICE PREVIEW] Generated preview audio URL: {audio_url}")
    return {"success": True, "audioUrl": audio_url}


@router.get("/api/call/recordings/{call_sid}/latest")
async def latest_recording(
    call_sid: str,
    user_id: int = Depends(require_user),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Proxy the newest Twilio recording of a call."""
    _check_owner(session_manager, call_sid, user_id)
    if not session_manager.telephony.available:
        raise HTTPException(status_code=500, detail={"message": "Twilio client is not configured"})

    try:
        recording = await session_manager.telephony.download_latest_recording(call_sid)
    except UnmuteError as e:
        raise http_error(e) from e

    if recording is None:
        raise HTTPException(status_code=404, detail={"message": "No recordings found for this call"})

    content, media_type = recording
    return Response(
        content=content,
        media_type=media_type,
        headers={"Accept-Ranges": "bytes", "Cache-Control": "no-cache"},
    )


@router.get("/api/call/recording/{call_sid}")
async def stored_recording(
    call_sid: str,
    user_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """The full-call WAV captured from the media stream."""
    record = await CallHistoryService(db).get_by_sid_for_user(call_sid, user_id)
    if record is None or not record.recording_data:
        raise HTTPException(status_code=404, detail={"message": "Recording not found"})

    try:
        content = base64.b64decode(record.recording_data)
    except (binascii.Error, ValueError):
        logger.error(f"[RECORDING] Stored recording is not valid base64 - CallSid: {call_sid}")
        raise HTTPException(status_code=500, detail={"message": "Stored recording is corrupt"})

    return Response(
        content=content,
        media_type="audio/wav",
        headers={"Content-Disposition": f'inline; filename="{call_sid}.wav"'},
    )
