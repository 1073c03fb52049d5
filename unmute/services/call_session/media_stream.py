"""Live media stream processing.

Twilio streams the far end's audio as JSON frames over a WebSocket. Chunks
are batched, wrapped as WAV and transcribed; each transcription is
formatted, pushed to browsers and re-synthesized in the session's voice.
"""
import base64
import binascii
import logging
from typing import Optional

from unmute.services.call_session.manager import CallSessionManager, CallUrls
from unmute.services.call_session.models import MediaStreamSession
from unmute.services.realtime import broadcaster as events
from unmute.services.speech.tts import random_voice
from unmute.services.speech.wav import chunks_to_wav, pcm16_to_wav

logger = logging.getLogger(__name__)

# Re-synthesized far-end speech plays slightly slower
STREAM_SPEECH_SPEED = 0.9


class MediaStreamConnection:
    """Handles the frames of one media stream WebSocket."""

    def __init__(self, manager: CallSessionManager, base_url: str):
        self.manager = manager
        self.urls = CallUrls(base_url)
        self.call_sid: Optional[str] = None

    @property
    def stream(self) -> Optional[MediaStreamSession]:
        return self.manager.store.get_stream(self.call_sid)

    async def handle_message(self, message: dict) -> None:
        event = message.get("event")
        if event == "start":
            await self.on_start(message.get("start") or {})
        elif event == "media":
            await self.on_media(message.get("media") or {})
        elif event == "stop":
            await self.on_stop()
        else:
            logger.debug(f"[MEDIA STREAM] Ignoring event: {event}")

    async def on_start(self, start: dict) -> None:
        self.call_sid = start.get("callSid")
        if not self.call_sid:
            logger.warning("[MEDIA STREAM] Start event without callSid")
            return

        session = self.manager.store.get(self.call_sid)
        voice = session.voice_model if session and session.voice_model else random_voice()
        if session and not session.voice_model:
            session.voice_model = voice

        self.manager.store.open_stream(
            MediaStreamSession(self.call_sid, start.get("streamSid"), voice)
        )
        logger.info(f"[MEDIA STREAM] Stream started - CallSid: {self.call_sid}, Voice: {voice}")
        await self.manager.broadcaster.publish(
            events.CALL_STREAMING_AVAILABLE, {"callSid": self.call_sid, "status": True}
        )

    async def on_media(self, media: dict) -> None:
        stream = self.stream
        if stream is None:
            return
        try:
            chunk = base64.b64decode(media.get("payload") or "")
        except (binascii.Error, TypeError, ValueError) as e:
            logger.warning(f"[MEDIA STREAM] Invalid payload - CallSid: {self.call_sid}, Error: {e}")
            return

        batch = stream.add_chunk(chunk)
        if batch is not None:
            await self.process_batch(stream, batch)

    async def process_batch(self, stream: MediaStreamSession, batch: bytes) -> None:
        """Transcribe, format, publish and re-synthesize one batch.

        A failing stage falls back to the previous stage's output. Results
        that arrive after the call ended are dropped.
        """
        manager = self.manager
        if not manager.stt_service.available:
            return

        try:
            text = await manager.stt_service.transcribe_audio(pcm16_to_wav(batch), format="wav")
        except Exception as e:
            logger.error(f"[MEDIA STREAM] Transcription failed - CallSid: {stream.call_sid}, Error: {e}")
            return
        if not text:
            return

        stream.remember(text)
        session = manager.store.get(stream.call_sid)
        if session is None:
            await manager.broadcaster.publish(
                events.TRANSCRIPTION, {"callSid": stream.call_sid, "text": text}
            )
            return
        if session.is_ended:
            logger.debug(f"[MEDIA STREAM] Discarding transcription for ended call - CallSid: {stream.call_sid}")
            return
        session.append_transcript(text, is_user=False)

        formatted = await manager.completion_service.format_transcription(text)
        if session.is_ended:
            return
        await manager.broadcaster.publish(
            events.TRANSCRIPTION, {"callSid": stream.call_sid, "text": formatted.text}
        )

        try:
            audio = await manager.tts_service.synthesize_speech(
                formatted.text, voice=stream.voice_model, speed=STREAM_SPEECH_SPEED
            )
            artifact = await manager.audio_store.save(audio, prefix="stream")
        except Exception as e:
            logger.warning(f"[MEDIA STREAM] Speech synthesis failed - CallSid: {stream.call_sid}, Error: {e}")
            return
        if session.is_ended:
            return

        await manager.broadcaster.publish(
            events.SPEECH_AUDIO,
            {
                "callSid": stream.call_sid,
                "audioUrl": self.urls.audio(artifact.artifact_id),
                "text": formatted.text,
            },
        )

    async def on_stop(self) -> None:
        stream = self.manager.store.close_stream(self.call_sid)
        if stream is None:
            return

        logger.info(
            f"[MEDIA STREAM] Stream stopped - CallSid: {stream.call_sid}, "
            f"Chunks: {len(stream.recording)}, Batches: {stream.batches_processed}"
        )
        if stream.recording:
            await self.save_recording(stream)

        await self.manager.broadcaster.publish(
            events.CALL_STREAMING_AVAILABLE, {"callSid": stream.call_sid, "status": False}
        )

    async def save_recording(self, stream: MediaStreamSession) -> None:
        """Persist the whole stream as a WAV on the call's history record."""
        recording = chunks_to_wav(stream.recording)
        try:
            async with self.manager.history() as history:
                await history.save_recording(
                    stream.call_sid,
                    recording_url=self.urls.recording(stream.call_sid),
                    recording_data=base64.b64encode(recording).decode("ascii"),
                )
        except Exception as e:
            logger.error(
                f"[MEDIA STREAM] Error saving recording - CallSid: {stream.call_sid}, "
                f"Error: {type(e).__name__}: {e}",
                exc_info=True,
            )

    def close(self) -> None:
        """Connection dropped without a stop event."""
        self.manager.store.close_stream(self.call_sid)
