"""In-memory call session store."""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from unmute.services.call_session.models import CallSession, MediaStreamSession
from unmute.services.errors import CallNotFoundError

logger = logging.getLogger(__name__)


class CallSessionStore:
    """Owns live call sessions and media stream sessions for this process.

    All mutation happens on the event loop. Operations that must not
    interleave for one call (speaking on it) take ``lock(call_sid)``, an
    ``asyncio.Lock`` whose waiters are served in arrival order. Ended
    sessions are evicted ``retention_seconds`` after they end.
    """

    def __init__(
        self,
        retention_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = retention_seconds
        self.clock = clock
        self._sessions: Dict[str, CallSession] = {}
        self._streams: Dict[str, MediaStreamSession] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_sid: str) -> bool:
        return call_sid in self._sessions

    def add(self, session: CallSession) -> CallSession:
        if session.call_sid in self._sessions:
            raise ValueError(f"Session already exists for {session.call_sid}")
        self._sessions[session.call_sid] = session
        return session

    def get(self, call_sid: Optional[str]) -> Optional[CallSession]:
        if not call_sid:
            return None
        return self._sessions.get(call_sid)

    def require(self, call_sid: str) -> CallSession:
        session = self.get(call_sid)
        if session is None:
            raise CallNotFoundError("Call not found")
        return session

    def sessions(self) -> List[CallSession]:
        return list(self._sessions.values())

    def lock(self, call_sid: str) -> asyncio.Lock:
        return self._locks[call_sid]

    def mark_ended(self, session: CallSession) -> bool:
        """End a session once, stamping the eviction clock."""
        return session.mark_ended(monotonic_now=self.clock())

    def evict_expired(self) -> int:
        """Drop sessions that ended more than ``retention_seconds`` ago."""
        now = self.clock()
        expired = [
            sid
            for sid, session in self._sessions.items()
            if session.is_ended
            and session.ended_at is not None
            and now - session.ended_at >= self.retention_seconds
        ]
        for call_sid in expired:
            del self._sessions[call_sid]
            self._streams.pop(call_sid, None)
            lock = self._locks.get(call_sid)
            if lock is not None and not lock.locked():
                del self._locks[call_sid]
        if expired:
            logger.info(f"[SESSION STORE] Evicted {len(expired)} ended session(s)")
        return len(expired)

    # Media streams

    def open_stream(self, stream: MediaStreamSession) -> MediaStreamSession:
        self._streams[stream.call_sid] = stream
        return stream

    def get_stream(self, call_sid: Optional[str]) -> Optional[MediaStreamSession]:
        if not call_sid:
            return None
        return self._streams.get(call_sid)

    def close_stream(self, call_sid: Optional[str]) -> Optional[MediaStreamSession]:
        if not call_sid:
            return None
        return self._streams.pop(call_sid, None)

    def clear(self) -> None:
        self._sessions.clear()
        self._streams.clear()
        self._locks.clear()


async def run_eviction_loop(store: CallSessionStore, interval: float) -> None:
    """Background task evicting ended sessions until cancelled."""
    while True:
        await asyncio.sleep(interval)
        store.evict_expired()
