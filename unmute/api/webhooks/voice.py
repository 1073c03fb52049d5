"""Twilio voice webhook endpoints."""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import PlainTextResponse, Response

from unmute.core.dependencies import get_base_url, get_session_manager
from unmute.services.call_session.manager import CallSessionManager
from unmute.services.errors import ConfigurationError
from unmute.services.telephony import twiml

router = APIRouter()
logger = logging.getLogger(__name__)


def twiml_response(document: str) -> Response:
    return Response(content=document, media_type="application/xml")


@router.post("/api/call/webhook")
async def handle_call_answered(
    request: Request,
    CallSid: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle the call being answered.

    Twilio fetches the call's initial instructions here: the disclosure
    greeting plus a media stream for live transcription.
    """
    logger.info(
        f"[CALL WEBHOOK] Received webhook for call - CallSid: {CallSid}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    try:
        document = await session_manager.handle_answered(CallSid, base_url=get_base_url(request))
    except ConfigurationError:
        return PlainTextResponse("Twilio or OpenAI is not configured", status_code=500)
    except Exception as e:
        logger.error(
            f"[CALL WEBHOOK] Error processing webhook - CallSid: {CallSid}, "
            f"Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
        document = twiml.greeting_fallback(f"{get_base_url(request)}/api/call/transcribe")

    return twiml_response(document)


@router.post("/api/call/status")
async def handle_call_status(
    request: Request,
    CallSid: str = Form(None),
    CallStatus: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Handle call status updates from Twilio."""
    logger.info(f"[CALL STATUS] Status update - CallSid: {CallSid}, Status: {CallStatus}")
    try:
        await session_manager.handle_status(CallSid, CallStatus)
    except Exception as e:
        logger.error(
            f"[CALL STATUS] Error handling status update - CallSid: {CallSid}, "
            f"Status: {CallStatus}, Error: {type(e).__name__}: {str(e)}",
            exc_info=True,
        )
    return PlainTextResponse("OK")


@router.post("/api/call/transcribe")
async def handle_gather(
    request: Request,
    CallSid: str = Form(None),
    SpeechResult: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """
    Handle gathered speech from Twilio.

    This endpoint is called after Twilio collects the far end's speech.
    """
    logger.info(
        f"[GATHER] Received speech input - CallSid: {CallSid}, "
        f"SpeechResult length: {len(SpeechResult) if SpeechResult else 0}"
    )
    if not SpeechResult:
        logger.debug(f"[GATHER] No speech result provided - CallSid: {CallSid}")

    document = await session_manager.handle_gather(CallSid, SpeechResult, base_url=get_base_url(request))
    return twiml_response(document)


@router.post("/api/call/recording")
async def handle_recording(
    request: Request,
    CallSid: str = Form(None),
    RecordingUrl: str = Form(None),
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Handle a finished recording segment."""
    logger.info(f"[RECORDING] Received recording - CallSid: {CallSid}, URL: {RecordingUrl}")
    document = await session_manager.handle_recording(CallSid, RecordingUrl, base_url=get_base_url(request))
    return twiml_response(document)
