"""Call session manager.

Orchestrates one outbound call from placement to finalization: it owns no
state itself (that lives in the CallSessionStore) but drives the Twilio,
OpenAI, audio-store and realtime adapters in response to API requests and
Twilio webhooks.
"""
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from unmute.services import errors
from unmute.services.audio.store import EphemeralAudioStore
from unmute.services.call_session.models import CallSession, CallStatus
from unmute.services.call_session.store import CallSessionStore
from unmute.services.language.completion import CompletionService
from unmute.services.persistence.calls import CallHistoryService
from unmute.services.realtime import broadcaster as events
from unmute.services.realtime.broadcaster import EventBroadcaster
from unmute.services.speech.stt import SpeechToTextService
from unmute.services.speech.tts import DEFAULT_SPEED, DEFAULT_VOICE, TextToSpeechService
from unmute.services.telephony import twiml
from unmute.services.telephony.client import IN_PROGRESS, TERMINAL_STATUSES, TelephonyService

logger = logging.getLogger(__name__)

# Twilio statuses that map onto our non-terminal states
_TWILIO_STATUS_MAP = {
    "queued": CallStatus.RINGING,
    "initiated": CallStatus.RINGING,
    "ringing": CallStatus.RINGING,
    "answered": CallStatus.CONNECTED,
    "in-progress": CallStatus.CONNECTED,
}

DTMF_PATTERN = re.compile(r"^[0-9*#wW]+$")

PREVIEW_FORMATS = {
    "wav": ("wav", "?forceMime=audio/wav"),
    "mp3": ("mp3", "?forceMime=audio/mpeg"),
}


def format_speech_result(text: str) -> str:
    """Light local clean-up of Twilio's speech recognition output."""
    formatted = (text or "").strip()
    if not formatted:
        return ""
    formatted = formatted[0].upper() + formatted[1:]
    if not formatted.endswith((".", "?", "!")):
        formatted += "."
    return formatted


@dataclass(frozen=True)
class CallUrls:
    """Public URLs Twilio and browsers use to reach this server."""

    base_url: str

    @property
    def _root(self) -> str:
        return self.base_url.rstrip("/")

    @property
    def webhook(self) -> str:
        return f"{self._root}/api/call/webhook"

    @property
    def status(self) -> str:
        return f"{self._root}/api/call/status"

    @property
    def transcribe(self) -> str:
        return f"{self._root}/api/call/transcribe"

    @property
    def recording_callback(self) -> str:
        return f"{self._root}/api/call/recording"

    @property
    def media_stream(self) -> str:
        root = self._root
        if root.startswith("https://"):
            root = "wss://" + root[len("https://"):]
        elif root.startswith("http://"):
            root = "ws://" + root[len("http://"):]
        return f"{root}/api/media-stream"

    def audio(self, artifact_id: str) -> str:
        return f"{self._root}/temp-audio/{artifact_id}"

    def preview_audio(self, artifact_id: str) -> str:
        return f"{self._root}/api/call/audio/{artifact_id}"

    def recording(self, call_sid: str) -> str:
        return f"{self._root}/api/call/recording/{call_sid}"

    def latest_recording(self, call_sid: str) -> str:
        return f"{self._root}/api/call/recordings/{call_sid}/latest"


@dataclass
class SpeakResult:
    call_sid: str
    text: str
    audio_url: str
    formatted: bool


class CallSessionManager:
    """Manages call sessions and orchestrates the call flow."""

    def __init__(
        self,
        store: CallSessionStore,
        telephony: TelephonyService,
        tts_service: TextToSpeechService,
        stt_service: SpeechToTextService,
        completion_service: CompletionService,
        audio_store: EphemeralAudioStore,
        broadcaster: EventBroadcaster,
        session_factory: Callable[[], AsyncSession],
    ):
        self.store = store
        self.telephony = telephony
        self.tts_service = tts_service
        self.stt_service = stt_service
        self.completion_service = completion_service
        self.audio_store = audio_store
        self.broadcaster = broadcaster
        self.session_factory = session_factory

    @asynccontextmanager
    async def history(self) -> AsyncIterator[CallHistoryService]:
        async with self.session_factory() as db:
            yield CallHistoryService(db)

    def _require_telephony(self) -> None:
        if not self.telephony.available:
            raise errors.ConfigurationError(
                "Twilio is not configured. Please provide TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN."
            )

    def _require_speech(self) -> None:
        if not self.tts_service.available:
            raise errors.ConfigurationError("OpenAI is not configured. Please provide OPENAI_API_KEY.")

    async def _store_audio(self, audio: bytes, prefix: str, extension: str = "mp3") -> str:
        """Save audio to the ephemeral store and return its artifact id."""
        try:
            artifact = await self.audio_store.save(audio, prefix=prefix, extension=extension)
        except OSError as e:
            raise errors.UpstreamError("Failed to store audio", str(e)) from e
        return artifact.artifact_id

    # Lifecycle

    async def start_call(
        self,
        user_id: int,
        phone_number: Optional[str],
        base_url: str,
        voice_model: Optional[str] = None,
        speech_speed: Optional[float] = None,
    ) -> CallSession:
        """Place an outbound call and register its session as ringing."""
        self._require_telephony()
        self._require_speech()
        if not phone_number:
            raise errors.InvalidRequestError("Phone number is required")

        urls = CallUrls(base_url)
        call_sid = await self.telephony.place_call(phone_number, urls.webhook, urls.status)

        session = self.store.add(
            CallSession(
                call_sid=call_sid,
                user_id=user_id,
                phone_number=phone_number,
                voice_model=voice_model or DEFAULT_VOICE,
                speech_speed=speech_speed or DEFAULT_SPEED,
            )
        )
        logger.info(f"[CALL START] Call initiated - CallSid: {call_sid}, To: {phone_number}")

        try:
            async with self.history() as history:
                await history.create_record(
                    user_id=user_id,
                    call_sid=call_sid,
                    phone_number=phone_number,
                    start_time=session.start_time,
                    voice_model=session.voice_model,
                    speech_speed=session.speech_speed,
                    status=session.status.value,
                )
        except Exception as e:
            logger.error(
                f"[CALL START] Error saving call to database - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )

        await self.broadcaster.publish(
            events.CALL_STATUS, {"callSid": call_sid, "status": session.status.value}
        )
        return session

    async def finalize(self, session: CallSession) -> bool:
        """Run the end-of-call side effects once. Returns False if already ended."""
        if not self.store.mark_ended(session):
            return False

        call_sid = session.call_sid
        entries = session.transcript
        summary = None
        if entries and self.completion_service.available:
            try:
                summary = await self.completion_service.summarize_transcript(entries)
                logger.info(f"[CALL END] Generated call summary - CallSid: {call_sid}")
            except Exception as e:
                logger.error(f"[CALL END] Error generating call summary - CallSid: {call_sid}, Error: {e}")
        session.summary = summary

        try:
            async with self.history() as history:
                await history.finalize(
                    call_sid,
                    end_time=session.end_time,
                    duration=session.duration,
                    transcript=[entry.to_record() for entry in entries],
                    summary=summary,
                )
        except Exception as e:
            logger.error(
                f"[CALL END] Error updating call in database - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )

        logger.info(
            f"[CALL END] Call ended - CallSid: {call_sid}, Duration: {session.duration}s, "
            f"Transcript entries: {len(entries)}"
        )
        await self.broadcaster.publish(
            events.CALL_STATUS,
            {"callSid": call_sid, "status": CallStatus.ENDED.value, "summary": summary},
        )
        return True

    async def end_call(self, call_sid: Optional[str]) -> CallSession:
        """End a call on the owner's request."""
        if not call_sid:
            raise errors.InvalidRequestError("Call SID is required")
        self._require_telephony()
        session = self.store.require(call_sid)

        if session.is_ended:
            return session

        await self.telephony.terminate(call_sid)
        await self.finalize(session)
        return session

    # Twilio webhooks

    async def handle_answered(self, call_sid: Optional[str], base_url: str) -> str:
        """Initial-instructions webhook: mark connected and play the disclosure."""
        self._require_telephony()
        self._require_speech()
        urls = CallUrls(base_url)

        session = self.store.get(call_sid)
        if session and session.advance(CallStatus.CONNECTED):
            await self._status_changed(session)

        voice = (session.voice_model if session else None) or DEFAULT_VOICE
        speed = (session.speech_speed if session else None) or DEFAULT_SPEED
        try:
            audio = await self.tts_service.synthesize_speech(twiml.DISCLOSURE_MESSAGE, voice=voice, speed=speed)
            artifact_id = await self._store_audio(audio, prefix="greeting")
        except Exception as e:
            logger.error(
                f"[CALL WEBHOOK] Error generating greeting - CallSid: {call_sid}, "
                f"Error: {type(e).__name__}: {e}"
            )
            return twiml.greeting_fallback(urls.transcribe)

        audio_url = urls.audio(artifact_id)
        logger.info(f"[CALL WEBHOOK] Initial greeting URL: {audio_url} - CallSid: {call_sid}")
        return twiml.greeting(audio_url, stream_url=urls.media_stream)

    async def handle_status(self, call_sid: Optional[str], call_status: Optional[str]) -> None:
        """Status-change webhook."""
        session = self.store.get(call_sid)
        if session is None:
            logger.debug(f"[CALL STATUS] Ignoring status for unknown call - CallSid: {call_sid}")
            return

        if call_status in TERMINAL_STATUSES:
            await self.finalize(session)
            return

        new_status = _TWILIO_STATUS_MAP.get(call_status or "")
        if new_status and session.advance(new_status):
            await self._status_changed(session)

    async def _status_changed(self, session: CallSession) -> None:
        try:
            async with self.history() as history:
                await history.update_status(session.call_sid, session.status.value)
        except Exception as e:
            logger.error(f"[CALL STATUS] Error updating status in database - CallSid: {session.call_sid}, Error: {e}")
        await self.broadcaster.publish(
            events.CALL_STATUS, {"callSid": session.call_sid, "status": session.status.value}
        )

    async def handle_gather(
        self, call_sid: Optional[str], speech_result: Optional[str], base_url: str
    ) -> str:
        """Speech-gathered webhook. Every path re-arms the gather."""
        urls = CallUrls(base_url)
        try:
            session = self.store.get(call_sid)
            text = format_speech_result(speech_result or "")
            if not text or session is None or session.is_ended:
                return twiml.continue_gathering(urls.transcribe)

            session.append_transcript(text, is_user=False)
            logger.info(f"[GATHER] Transcription: '{text}' - CallSid: {call_sid}")
            await self.broadcaster.publish(events.TRANSCRIPTION, {"callSid": call_sid, "text": text})

            # Echo the recognized text back as audio for the browser
            try:
                audio = await self.tts_service.synthesize_speech(
                    text,
                    voice=session.voice_model or DEFAULT_VOICE,
                    speed=session.speech_speed or DEFAULT_SPEED,
                )
                artifact_id = await self._store_audio(audio, prefix="speech")
                await self.broadcaster.publish(
                    events.SPEECH_AUDIO,
                    {"callSid": call_sid, "audioUrl": urls.audio(artifact_id), "text": text},
                )
            except Exception as e:
                logger.warning(f"[GATHER] Error generating speech - CallSid: {call_sid}, Error: {e}")
        except Exception as e:
            logger.error(f"[GATHER] Error handling speech - CallSid: {call_sid}, Error: {e}", exc_info=True)

        return twiml.continue_gathering(urls.transcribe)

    async def handle_recording(
        self, call_sid: Optional[str], recording_url: Optional[str], base_url: str
    ) -> str:
        """Recording-available webhook: transcribe the segment and keep recording."""
        urls = CallUrls(base_url)
        try:
            session = self.store.get(call_sid)
            if not recording_url or session is None:
                return twiml.keep_alive()

            await self.broadcaster.publish(
                events.CALL_AUDIO, {"callSid": call_sid, "audioUrl": urls.latest_recording(call_sid)}
            )

            if self.stt_service.available:
                try:
                    audio = await self.telephony.download_recording(recording_url)
                    text = await self.stt_service.transcribe_audio(audio, format="wav")
                    if text and not session.is_ended:
                        session.append_transcript(text, is_user=False)
                        await self.broadcaster.publish(
                            events.TRANSCRIPTION, {"callSid": call_sid, "text": text}
                        )
                except Exception as e:
                    logger.error(f"[RECORDING] Transcription error - CallSid: {call_sid}, Error: {e}")

            return twiml.record_next(urls.recording_callback)
        except Exception as e:
            logger.error(f"[RECORDING] Recording handling error - CallSid: {call_sid}, Error: {e}", exc_info=True)
            return twiml.keep_alive()

    # In-call controls

    async def set_muted(self, call_sid: Optional[str], mute: bool) -> CallSession:
        if not call_sid:
            raise errors.InvalidRequestError("Call SID is required")
        self._require_telephony()
        session = self.store.require(call_sid)

        await self.telephony.set_muted(call_sid, mute)
        session.muted = mute
        return session

    async def send_dtmf(self, call_sid: Optional[str], digits: Optional[str]) -> None:
        if not call_sid or not digits:
            raise errors.InvalidRequestError("Call SID and digits are required")
        if not DTMF_PATTERN.match(digits):
            raise errors.InvalidRequestError("Digits may only contain 0-9, *, # and w")
        self._require_telephony()
        self.store.require(call_sid)

        await self.telephony.update_instructions(call_sid, twiml.dtmf(digits))

    async def _require_in_progress(self, call_sid: str, message: str) -> None:
        live_status = await self.telephony.fetch_call_status(call_sid)
        if live_status != IN_PROGRESS:
            raise errors.CallNotInProgressError(message, live_status)

    async def speak(
        self,
        call_sid: Optional[str],
        text: Optional[str],
        base_url: str,
        voice_model: Optional[str] = None,
        speech_speed: Optional[float] = None,
        play_on_call_only: bool = True,
    ) -> SpeakResult:
        """Speak typed text on a live call.

        Requests for the same call run one at a time in submission order, so
        transcript entries keep that order whatever each request's latency.
        """
        if not call_sid or not text:
            raise errors.InvalidRequestError("Call SID and text are required")
        self._require_telephony()
        self._require_speech()
        session = self.store.require(call_sid)
        urls = CallUrls(base_url)

        async with self.store.lock(call_sid):
            if session.status != CallStatus.CONNECTED:
                raise errors.CallNotInProgressError("Call is not in-progress", session.status.value)
            await self._require_in_progress(call_sid, "Call is not in-progress")

            voice = voice_model or session.voice_model or DEFAULT_VOICE
            speed = speech_speed or session.speech_speed or DEFAULT_SPEED

            formatted = await self.completion_service.format_message(text)
            if not formatted.is_fallback:
                logger.info(f"[SPEAK] Formatted text for TTS: '{formatted.text}' - CallSid: {call_sid}")
            session.append_transcript(formatted.text, is_user=True)

            audio = await self.tts_service.synthesize_speech(formatted.text, voice=voice, speed=speed)
            audio_url = urls.audio(await self._store_audio(audio, prefix="speech"))

            await self.broadcaster.publish(
                events.SPEECH_AUDIO,
                {"callSid": call_sid, "audioUrl": audio_url, "text": formatted.text},
            )

            if session.is_ended:
                raise errors.CallNotInProgressError("Call is no longer in-progress", CallStatus.ENDED.value)
            await self._require_in_progress(call_sid, "Call is no longer in-progress")

            await self.telephony.update_instructions(
                call_sid, twiml.speak(audio_url, urls.transcribe, play_on_call=play_on_call_only)
            )
            logger.info(f"[SPEAK] Updated call with new TwiML - CallSid: {call_sid}, URL: {audio_url}")

        return SpeakResult(
            call_sid=call_sid,
            text=formatted.text,
            audio_url=audio_url,
            formatted=not formatted.is_fallback,
        )

    async def preview_voice(
        self,
        text: Optional[str],
        base_url: str,
        voice_model: Optional[str] = None,
        speech_speed: Optional[float] = None,
        preferred_format: Optional[str] = None,
    ) -> str:
        """Synthesize a sample and return a URL to it."""
        if not text:
            raise errors.InvalidRequestError("Text is required")
        self._require_speech()

        extension, force_mime = PREVIEW_FORMATS.get(preferred_format or "", ("mp3", ""))
        audio = await self.tts_service.synthesize_speech(
            text,
            voice=voice_model or DEFAULT_VOICE,
            speed=speech_speed or 0.9,
            response_format=extension,
        )
        artifact_id = await self._store_audio(audio, prefix="preview", extension=extension)
        return CallUrls(base_url).preview_audio(artifact_id) + force_mime
