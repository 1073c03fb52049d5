"""Realtime fan-out of call events to browser clients."""
import asyncio
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Event names understood by the browser client
CALL_STATUS = "call-status"
TRANSCRIPTION = "transcription"
SPEECH_AUDIO = "speech-audio"
CALL_AUDIO = "call-audio"
CALL_STREAMING_AVAILABLE = "call-streaming-available"


class EventBroadcaster:
    """Publishes events to every connected client.

    There is no per-client filtering: clients compare the ``callSid`` in
    each payload with the call they are viewing.
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"[REALTIME] New client connected ({len(self._clients)} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info(f"[REALTIME] Client disconnected ({len(self._clients)} total)")

    async def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """Send ``{"event", "data"}`` to all clients, dropping dead sockets."""
        if not self._clients:
            logger.debug(f"[REALTIME] No clients for {event} - CallSid: {payload.get('callSid')}")
            return

        message = {"event": event, "data": payload}
        clients = list(self._clients)
        results = await asyncio.gather(
            *(client.send_json(message) for client in clients),
            return_exceptions=True,
        )
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.warning(f"[REALTIME] Dropping client after send failure: {type(result).__name__}")
                self._clients.discard(client)
