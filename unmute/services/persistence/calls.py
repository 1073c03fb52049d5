"""Call history persistence service."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.db.models import CallHistory


class CallHistoryService:
    """Service for persisting call history records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_record(
        self,
        user_id: int,
        call_sid: str,
        phone_number: str,
        start_time: datetime,
        voice_model: Optional[str],
        speech_speed: float,
        status: str = "ringing",
    ) -> CallHistory:
        """Create a call record or return the existing one."""
        existing = await self.get_by_sid(call_sid)
        if existing:
            return existing

        record = CallHistory(
            user_id=user_id,
            call_sid=call_sid,
            phone_number=phone_number,
            start_time=start_time,
            status=status,
            voice_model=voice_model,
            speech_speed=str(speech_speed),
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def get_by_sid(self, call_sid: str) -> Optional[CallHistory]:
        """Get call record by Twilio call SID."""
        result = await self.db.execute(
            select(CallHistory).where(CallHistory.call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def update_status(self, call_sid: str, status: str) -> Optional[CallHistory]:
        record = await self.get_by_sid(call_sid)
        if record:
            record.status = status
            await self.db.commit()
            await self.db.refresh(record)
        return record

    async def finalize(
        self,
        call_sid: str,
        end_time: datetime,
        duration: int,
        transcript: Optional[list],
        summary: Optional[str],
    ) -> Optional[CallHistory]:
        """Record the end of a call."""
        record = await self.get_by_sid(call_sid)
        if record:
            record.status = "ended"
            record.end_time = end_time
            record.duration = duration
            record.transcript = transcript or None
            record.summary = summary
            await self.db.commit()
            await self.db.refresh(record)
        return record

    async def save_recording(
        self, call_sid: str, recording_url: str, recording_data: str
    ) -> Optional[CallHistory]:
        """Attach the full-call recording (base64 WAV) to a record."""
        record = await self.get_by_sid(call_sid)
        if record:
            record.recording_url = recording_url
            record.recording_data = recording_data
            await self.db.commit()
            await self.db.refresh(record)
        return record

    async def list_for_user(self, user_id: int) -> List[CallHistory]:
        """A user's calls, most recent first."""
        result = await self.db.execute(
            select(CallHistory)
            .where(CallHistory.user_id == user_id)
            .order_by(desc(CallHistory.start_time))
        )
        return list(result.scalars().all())

    async def get_for_user(self, record_id: int, user_id: int) -> Optional[CallHistory]:
        result = await self.db.execute(
            select(CallHistory).where(
                CallHistory.id == record_id, CallHistory.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_sid_for_user(self, call_sid: str, user_id: int) -> Optional[CallHistory]:
        result = await self.db.execute(
            select(CallHistory).where(
                CallHistory.call_sid == call_sid, CallHistory.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def delete_for_user(self, record_id: int, user_id: int) -> bool:
        """Delete a record owned by the user. Returns False if not found."""
        record = await self.get_for_user(record_id, user_id)
        if not record:
            return False
        await self.db.execute(
            delete(CallHistory).where(
                CallHistory.id == record_id, CallHistory.user_id == user_id
            )
        )
        await self.db.commit()
        return True
