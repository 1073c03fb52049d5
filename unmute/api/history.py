"""Call history endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.api.auth import require_user
from unmute.api.schemas import CallHistoryOut
from unmute.db.database import get_db
from unmute.services.persistence.calls import CallHistoryService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/call-history")
async def list_call_history(user_id: int = Depends(require_user), db: AsyncSession = Depends(get_db)):
    """The user's calls, most recent first."""
    records = await CallHistoryService(db).list_for_user(user_id)
    return {
        "calls": [
            CallHistoryOut.model_validate(record).model_dump(by_alias=True, mode="json")
            for record in records
        ]
    }


@router.delete("/api/call-history/{record_id}")
async def delete_call_history(
    record_id: int,
    user_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Delete one of the user's calls."""
    deleted = await CallHistoryService(db).delete_for_user(record_id, user_id)
    if not deleted:
        raise HTTPException(status_code=404, detail={"message": "Call not found"})

    logger.info(f"[CALL HISTORY] Deleted call record - Id: {record_id}, UserId: {user_id}")
    return {"message": "Call deleted successfully"}
