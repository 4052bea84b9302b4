# SAP B1 Query MCP Server
# File: cache.py
# Version: v3

"""In-process Service Layer session cache.

Design goals:
- One entry per ConnectionIdentity, fixed 30 minute lifetime.
- Lazy eviction on get(); sweep() only bounds memory.
- Explicitly owned and injected (no module-level singleton).
- Diagnostics-friendly (hits/misses/size/expirations).
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import ConnectionIdentity

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 30 * 60
SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class SessionEntry:
    token: str
    created_at: float
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    puts: int = 0
    invalidations: int = 0
    expirations: int = 0


class SessionCache:
    """Thread-safe mapping ConnectionIdentity -> SessionEntry.

    The password is not part of the key, so a rotated password keeps being
    served the old session until it expires. Callers that rotate credentials
    should call invalidate_all().
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._store: Dict[ConnectionIdentity, SessionEntry] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def get(self, identity: ConnectionIdentity) -> Optional[str]:
        """Return the cached token if still fresh, else evict and return None."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(identity)
            if entry is None:
                self._stats.misses += 1
                return None

            if now >= entry.expires_at:
                self._store.pop(identity, None)
                self._stats.misses += 1
                self._stats.expirations += 1
                logger.info("Session expired for %s", identity)
                return None

            self._stats.hits += 1

        logger.debug(
            "Reusing cached session for %s, expires in %d minutes",
            identity,
            int((entry.expires_at - now) // 60),
        )
        return entry.token

    def put(self, identity: ConnectionIdentity, token: str) -> SessionEntry:
        now = self._clock()
        entry = SessionEntry(token=token, created_at=now, expires_at=now + SESSION_TTL_SECONDS)
        with self._lock:
            self._store[identity] = entry
            self._stats.puts += 1
        logger.info("Cached session for %s, expires in 30 minutes", identity)
        return entry

    def invalidate(self, identity: ConnectionIdentity) -> None:
        with self._lock:
            removed = self._store.pop(identity, None)
            if removed is not None:
                self._stats.invalidations += 1
        if removed is not None:
            logger.info("Removed session for %s", identity)

    def invalidate_all(self) -> int:
        """Drop every cached session (e.g. after a credential rotation)."""
        with self._lock:
            count = len(self._store)
            self._store.clear()
            self._stats.invalidations += count
        return count

    def sweep(self) -> int:
        """Remove expired entries and return count removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if now >= e.expires_at]
            for k in expired:
                self._store.pop(k, None)
            self._stats.expirations += len(expired)

        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))
        return len(expired)

    async def sweep_forever(
        self,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        stop_event: Optional[asyncio.Event] = None,
    ) -> None:
        """Background hygiene loop; runs until stop_event is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                self.sweep()

    def entry(self, identity: ConnectionIdentity) -> Optional[SessionEntry]:
        with self._lock:
            return self._store.get(identity)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._store)
        return {
            "ttl_seconds": SESSION_TTL_SECONDS,
            "size": size,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "puts": self._stats.puts,
            "invalidations": self._stats.invalidations,
            "expirations": self._stats.expirations,
        }
