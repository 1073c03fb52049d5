"""Ephemeral audio artifact store.

Generated audio is written to a shared directory and served through one
parameterized endpoint. Each artifact expires a fixed delay after it is
first served; artifacts nobody fetches expire after a longer delay.
"""
import asyncio
import logging
import mimetypes
import os
import random
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

ARTIFACT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.]+$")

MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
}


def mime_type_for(filename: str) -> str:
    """Content type for an artifact, by extension."""
    ext = os.path.splitext(filename)[1].lower()
    return MIME_TYPES.get(ext) or mimetypes.guess_type(filename)[0] or "application/octet-stream"


def is_valid_artifact_id(artifact_id: str) -> bool:
    return bool(artifact_id) and ".." not in artifact_id and bool(ARTIFACT_ID_PATTERN.match(artifact_id))


def new_artifact_id(prefix: str, extension: str = "mp3") -> str:
    """Timestamp-plus-random filename, unique across concurrent calls."""
    timestamp = int(time.time() * 1000)
    return f"{prefix}_{timestamp}_{random.randint(0, 9999)}.{extension}"


@dataclass
class AudioArtifact:
    artifact_id: str
    path: Path
    mime_type: str
    created_at: float
    expires_at: float
    served_at: Optional[float] = None


class EphemeralAudioStore:
    """Keyed store of short-lived audio files."""

    def __init__(
        self,
        directory: str,
        ttl_seconds: float = 60.0,
        unserved_ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self.unserved_ttl_seconds = unserved_ttl_seconds
        self.clock = clock
        self._artifacts: Dict[str, AudioArtifact] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._artifacts)

    async def save(self, data: bytes, prefix: str = "speech", extension: str = "mp3") -> AudioArtifact:
        """Write audio to disk and register it. Raises OSError on write failure."""
        artifact_id = new_artifact_id(prefix, extension)
        path = self.directory / artifact_id

        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            logger.error(f"[AUDIO STORE] Failed to write {path}: {e}")
            raise

        now = self.clock()
        artifact = AudioArtifact(
            artifact_id=artifact_id,
            path=path,
            mime_type=mime_type_for(artifact_id),
            created_at=now,
            expires_at=now + self.unserved_ttl_seconds,
        )
        self._artifacts[artifact_id] = artifact
        self._schedule_removal(artifact_id, self.unserved_ttl_seconds)
        logger.debug(f"[AUDIO STORE] Saved {artifact_id} ({len(data)} bytes)")
        return artifact

    def lookup(self, artifact_id: str) -> Optional[AudioArtifact]:
        """Return a live artifact, or None when unknown or past its window."""
        artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            return None
        if self.clock() >= artifact.expires_at:
            self.remove(artifact_id)
            return None
        return artifact

    def mark_served(self, artifact_id: str) -> None:
        """Start the deletion window on the first serve of an artifact."""
        artifact = self._artifacts.get(artifact_id)
        if artifact is None or artifact.served_at is not None:
            return
        now = self.clock()
        artifact.served_at = now
        artifact.expires_at = now + self.ttl_seconds
        self._schedule_removal(artifact_id, self.ttl_seconds)

    def remove(self, artifact_id: str) -> None:
        """Forget an artifact and delete its file."""
        timer = self._timers.pop(artifact_id, None)
        if timer is not None:
            timer.cancel()

        artifact = self._artifacts.pop(artifact_id, None)
        if artifact is None:
            return
        try:
            artifact.path.unlink(missing_ok=True)
            logger.info(f"[AUDIO STORE] Removed temporary file: {artifact.path}")
        except OSError as e:
            logger.error(f"[AUDIO STORE] Failed to remove temporary file: {artifact.path} - {e}")

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [aid for aid, art in self._artifacts.items() if now >= art.expires_at]
        for artifact_id in expired:
            self.remove(artifact_id)
        return len(expired)

    def clear(self) -> None:
        for artifact_id in list(self._artifacts):
            self.remove(artifact_id)

    def _schedule_removal(self, artifact_id: str, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: expiry is still enforced lazily by lookup()
            return

        previous = self._timers.pop(artifact_id, None)
        if previous is not None:
            previous.cancel()
        self._timers[artifact_id] = loop.call_later(delay, self._expire, artifact_id)

    def _expire(self, artifact_id: str) -> None:
        self._timers.pop(artifact_id, None)
        artifact = self._artifacts.get(artifact_id)
        if artifact is not None and self.clock() >= artifact.expires_at:
            self.remove(artifact_id)
