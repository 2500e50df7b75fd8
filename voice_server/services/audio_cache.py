"""Short-lived cache of synthesized audio for client streaming."""
import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioCacheEntry:
    audio_id: str
    data: bytes
    content_type: str
    expires_at: float


class AudioCache:
    """
    Time-boxed audio payloads keyed by a random id.

    Entries expire ``ttl`` seconds after they are stored whether or not they
    were fetched. Reads check expiry; ``purge`` drops everything expired.
    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, AudioCacheEntry] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, content_type: str = "audio/wav") -> str:
        audio_id = uuid.uuid4().hex
        entry = AudioCacheEntry(
            audio_id=audio_id,
            data=data,
            content_type=content_type,
            expires_at=self.clock() + self.ttl,
        )
        with self._lock:
            self._entries[audio_id] = entry
        return audio_id

    def get(self, audio_id: str) -> Optional[AudioCacheEntry]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(audio_id)
            if entry is None:
                return None
            if now >= entry.expires_at:
                del self._entries[audio_id]
                return None
            return entry

    def purge(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"[AUDIO CACHE] Purged {len(expired)} expired entries")
        return len(expired)

    async def run_purger(self, interval: Optional[float] = None) -> None:
        interval = interval or self.ttl
        while True:
            await asyncio.sleep(interval)
            self.purge()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
