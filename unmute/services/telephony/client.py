"""Twilio telephony service."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

import httpx
from twilio.rest import Client as TwilioClient

from unmute.core.config import settings
from unmute.services.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com"

# Twilio call statuses that end a call
TERMINAL_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})
IN_PROGRESS = "in-progress"


@dataclass
class RecordingRef:
    """Reference to a Twilio recording resource."""

    sid: str
    uri: str
    date_created: Optional[datetime] = None

    def media_url(self, extension: str = "mp3") -> str:
        return f"{TWILIO_API_BASE}{self.uri.replace('.json', f'.{extension}')}"


class TelephonyService:
    """Service for placing and steering outbound calls through Twilio.

    The Twilio SDK is blocking, so every REST call runs in a worker thread.
    """

    def __init__(self, client: Optional[TwilioClient] = None):
        if client is None and settings.twilio_configured:
            client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    def _require_client(self) -> TwilioClient:
        if not self.available:
            raise ConfigurationError(
                "Twilio is not configured. Please provide TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN."
            )
        return self.client

    async def place_call(self, to: str, instructions_url: str, status_callback_url: str) -> str:
        """Place an outbound call and return its SID."""
        client = self._require_client()
        from_number = settings.twilio_phone_number
        if not from_number:
            raise ConfigurationError("Twilio is not configured. Please provide TWILIO_PHONE_NUMBER.")

        try:
            call = await asyncio.to_thread(
                client.calls.create,
                to=to,
                from_=from_number,
                url=instructions_url,
                method="POST",
                status_callback=status_callback_url,
                status_callback_event=["initiated", "ringing", "answered", "completed"],
                status_callback_method="POST",
            )
        except Exception as e:
            raise UpstreamError("Failed to initiate call", str(e)) from e
        return call.sid

    async def update_instructions(self, call_sid: str, twiml: str) -> None:
        """Replace the TwiML the call is currently executing."""
        client = self._require_client()
        try:
            await asyncio.to_thread(client.calls(call_sid).update, twiml=twiml)
        except Exception as e:
            raise UpstreamError("Failed to update call", str(e)) from e

    async def terminate(self, call_sid: str) -> None:
        client = self._require_client()
        try:
            await asyncio.to_thread(client.calls(call_sid).update, status="completed")
        except Exception as e:
            raise UpstreamError("Failed to end call", str(e)) from e

    async def set_muted(self, call_sid: str, muted: bool) -> None:
        """Ask Twilio to mute or unmute the call leg.

        The SDK's typed call update has no ``Muted`` field, so the request is
        posted to the Calls resource directly.
        """
        client = self._require_client()
        uri = f"{TWILIO_API_BASE}/2010-04-01/Accounts/{settings.twilio_account_sid}/Calls/{call_sid}.json"
        try:
            result = await asyncio.to_thread(
                client.request, "POST", uri, data={"Muted": "true" if muted else "false"}
            )
        except Exception as e:
            raise UpstreamError("Failed to mute/unmute call", str(e)) from e
        if result.status_code >= 400:
            raise UpstreamError("Failed to mute/unmute call", f"Twilio returned {result.status_code}: {result.text}")

    async def fetch_call_status(self, call_sid: str) -> str:
        """Return Twilio's live status for the call (e.g. ``in-progress``)."""
        client = self._require_client()
        try:
            call = await asyncio.to_thread(client.calls(call_sid).fetch)
        except Exception as e:
            raise UpstreamError("Failed to check call status", str(e)) from e
        return call.status

    async def list_recordings(self, call_sid: str) -> List[RecordingRef]:
        """List the call's recordings, newest first."""
        client = self._require_client()
        try:
            recordings = await asyncio.to_thread(client.recordings.list, call_sid=call_sid)
        except Exception as e:
            raise UpstreamError("Failed to access Twilio API", str(e)) from e

        refs = [
            RecordingRef(sid=rec.sid, uri=rec.uri, date_created=rec.date_created)
            for rec in recordings
        ]
        refs.sort(key=lambda ref: ref.date_created.timestamp() if ref.date_created else 0, reverse=True)
        return refs

    async def download_recording(self, url: str) -> bytes:
        """Download a recording media file using the account credentials."""
        self._require_client()
        try:
            async with httpx.AsyncClient(follow_redirects=True) as http:
                response = await http.get(
                    url, auth=(settings.twilio_account_sid, settings.twilio_auth_token)
                )
        except httpx.HTTPError as e:
            raise UpstreamError("Failed to download audio", str(e)) from e
        if response.status_code >= 400:
            raise UpstreamError("Failed to download audio", f"HTTP {response.status_code}")
        return response.content

    async def download_latest_recording(self, call_sid: str) -> Optional[Tuple[bytes, str]]:
        """Fetch the newest recording as MP3, falling back to WAV.

        Returns (audio bytes, mime type), or None when the call has no recordings.
        """
        recordings = await self.list_recordings(call_sid)
        if not recordings:
            return None

        latest = recordings[0]
        try:
            return await self.download_recording(latest.media_url("mp3")), "audio/mpeg"
        except UpstreamError as e:
            logger.warning(f"[TELEPHONY] MP3 download failed, trying WAV - CallSid: {call_sid}, Error: {e.error}")
        return await self.download_recording(latest.media_url("wav")), "audio/wav"
