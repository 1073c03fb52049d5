"""WebSocket endpoints: browser event feed and Twilio media streams."""
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from unmute.core.dependencies import get_base_url, get_broadcaster, get_session_manager
from unmute.services.call_session.manager import CallSessionManager
from unmute.services.call_session.media_stream import MediaStreamConnection
from unmute.services.realtime.broadcaster import EventBroadcaster

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def browser_events(
    websocket: WebSocket,
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    """Push call events to a browser. Incoming messages are ignored."""
    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)


@router.websocket("/api/media-stream")
async def media_stream(
    websocket: WebSocket,
    session_manager: CallSessionManager = Depends(get_session_manager),
):
    """Receive a Twilio media stream for live transcription."""
    await websocket.accept()
    connection = MediaStreamConnection(session_manager, get_base_url(websocket))
    logger.info("[MEDIA STREAM] Twilio media stream connected")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.warning(f"[MEDIA STREAM] Malformed frame - CallSid: {connection.call_sid}, Error: {e}")
                continue
            if not isinstance(message, dict):
                logger.warning(f"[MEDIA STREAM] Unexpected frame - CallSid: {connection.call_sid}")
                continue

            try:
                await connection.handle_message(message)
            except Exception as e:
                logger.error(
                    f"[MEDIA STREAM] Error handling {message.get('event')} frame - "
                    f"CallSid: {connection.call_sid}, Error: {type(e).__name__}: {e}",
                    exc_info=True,
                )
            if message.get("event") == "stop":
                await websocket.close()
                break
    except WebSocketDisconnect:
        logger.info(f"[MEDIA STREAM] Twilio media stream disconnected - CallSid: {connection.call_sid}")
    finally:
        connection.close()
