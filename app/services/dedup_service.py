"""In-process suppression of re-delivered gateway events."""

import threading
import time
from typing import Optional

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("dedup")

PURGE_INTERVAL_SECONDS = 30.0


class EventDeduplicator:
    """Remembers gateway event ids for a short TTL.

    Not persisted: a restart forgets recent ids.
    """

    def __init__(self, ttl_seconds: float = 60.0, purge_interval_seconds: float = PURGE_INTERVAL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_purge = 0.0

    def check_and_record(self, event_id: Optional[str], now: Optional[float] = None) -> bool:
        """Return True if `event_id` was already seen within the TTL.

        New ids are recorded. A missing id is always treated as new.
        """
        if not event_id:
            return False
        now = time.monotonic() if now is None else now
        with self._lock:
            if now - self._last_purge >= self.purge_interval_seconds:
                self._purge_locked(now)
            received_at = self._seen.get(event_id)
            if received_at is not None and now - received_at < self.ttl_seconds:
                return True
            self._seen[event_id] = now
            return False

    def purge(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        with self._lock:
            return self._purge_locked(now)

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, received_at in self._seen.items() if now - received_at >= self.ttl_seconds]
        for key in expired:
            del self._seen[key]
        self._last_purge = now
        if expired:
            logger.debug(f"Purged {len(expired)} dedup entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


event_deduplicator = EventDeduplicator(ttl_seconds=settings.dedup_ttl_seconds)
