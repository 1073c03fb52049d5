"""Call session models."""
import math
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallStatus(str, Enum):
    """Server-side call status. Twilio's richer vocabulary collapses onto these."""

    RINGING = "ringing"
    CONNECTED = "connected"
    ENDED = "ended"


_STATUS_ORDER = {CallStatus.RINGING: 0, CallStatus.CONNECTED: 1, CallStatus.ENDED: 2}


class TranscriptEntry(BaseModel):
    """One utterance. ``is_user`` marks text the local user typed."""

    model_config = ConfigDict(frozen=True)

    text: str
    is_user: bool
    timestamp: datetime = Field(default_factory=utc_now)

    def to_record(self) -> dict:
        """JSON shape stored in call history."""
        return {
            "text": self.text,
            "isUser": self.is_user,
            "timestamp": self.timestamp.isoformat(),
        }


class CallSession(BaseModel):
    """Mutable state for one live call."""

    call_sid: str
    user_id: int
    phone_number: str
    voice_model: Optional[str] = None
    speech_speed: float = 1.0
    status: CallStatus = CallStatus.RINGING
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    muted: bool = False
    summary: Optional[str] = None

    _transcript: List[TranscriptEntry] = PrivateAttr(default_factory=list)
    # Monotonic timestamp of the end, used for eviction
    _ended_at: Optional[float] = PrivateAttr(default=None)

    @property
    def transcript(self) -> List[TranscriptEntry]:
        """Snapshot of the transcript in arrival order."""
        return list(self._transcript)

    @property
    def is_ended(self) -> bool:
        return self.status == CallStatus.ENDED

    @property
    def ended_at(self) -> Optional[float]:
        return self._ended_at

    @property
    def duration(self) -> Optional[int]:
        """Whole seconds between start and end."""
        if self.end_time is None:
            return None
        return math.floor((self.end_time - self.start_time).total_seconds())

    def append_transcript(self, text: str, is_user: bool) -> TranscriptEntry:
        entry = TranscriptEntry(text=text, is_user=is_user)
        self._transcript.append(entry)
        return entry

    def advance(self, status: CallStatus) -> bool:
        """Move forward to ``status``. Returns False if that would go backwards.

        Use mark_ended() to end a call.
        """
        if status == CallStatus.ENDED:
            raise ValueError("use mark_ended() to end a call")
        if _STATUS_ORDER[status] <= _STATUS_ORDER[self.status]:
            return False
        self.status = status
        return True

    def mark_ended(self, now: Optional[datetime] = None, monotonic_now: Optional[float] = None) -> bool:
        """End the session once. Returns False if it had already ended."""
        if self.is_ended:
            return False
        end_time = now or utc_now()
        self.status = CallStatus.ENDED
        self.end_time = max(end_time, self.start_time)
        self._ended_at = monotonic_now
        return True

    def transcript_records(self) -> List[dict]:
        return [entry.to_record() for entry in self._transcript]


class MediaStreamSession:
    """Per-connection state of a live Twilio media stream."""

    # Chunks per transcription batch (~0.375s at 8kHz)
    BATCH_SIZE = 3
    # Rolling context kept for the far end's recent speech
    CONTEXT_LIMIT = 500

    def __init__(self, call_sid: str, stream_sid: Optional[str], voice_model: str):
        self.call_sid = call_sid
        self.stream_sid = stream_sid
        self.voice_model = voice_model
        self.pending: List[bytes] = []
        self.recording: List[bytes] = []
        self.context = ""
        self.batches_processed = 0

    def add_chunk(self, chunk: bytes) -> Optional[bytes]:
        """Buffer a chunk. Returns the joined batch once it is full."""
        self.recording.append(chunk)
        self.pending.append(chunk)
        if len(self.pending) < self.BATCH_SIZE:
            return None
        batch = b"".join(self.pending)
        self.pending = []
        self.batches_processed += 1
        return batch

    def remember(self, text: str) -> None:
        self.context = f"{self.context} {text}"[-self.CONTEXT_LIMIT:]
