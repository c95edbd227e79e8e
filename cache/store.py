"""
cache/store.py -- In-process identity cache for the login pipeline.

Short-circuits repeated credential-store lookups for the same email. Entries
hold the hash-free IdentitySnapshot plus a keyed digest of the secret that
produced it, so a cache hit still requires the same password.

Eviction:
  - TTL is checked on every lookup. A stale entry is a miss but stays in
    place until it is overwritten, evicted for capacity, or purged.
  - Capacity is bounded. When full, stale entries go first, then the least
    recently used entry.
  - purge_expired() drops every stale entry; the API lifespan runs it
    periodically.

Thread safety: one threading.Lock guards the OrderedDict. Lookups and
stores from concurrent requests serialize on it; the last store() for a key
wins.

Usage:
    cache = IdentityCache(ttl=300, max_entries=1024)
    cache.store("a@b.com", snapshot, secret_digest=digest)
    snapshot = cache.lookup("a@b.com", secret_digest=digest)   # snapshot or None
    cache.purge_expired()
"""

from __future__ import annotations

import hmac
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from auth.models import IdentitySnapshot

_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds
_DEFAULT_MAX_ENTRIES = 1024


@dataclass
class CacheEntry:
    key: str
    snapshot: IdentitySnapshot
    inserted_at: float
    secret_digest: str = ""


class IdentityCache:
    def __init__(
        self,
        ttl: float = _DEFAULT_TTL,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def lookup(self, key: str, secret_digest: Optional[str] = None) -> Optional[IdentitySnapshot]:
        """Return the cached snapshot for key if fresh (and the digest matches)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not self._is_fresh(entry, now):
                return None
            if secret_digest is not None and not hmac.compare_digest(entry.secret_digest, secret_digest):
                return None
            self._entries.move_to_end(key)
            return entry.snapshot

    def store(self, key: str, snapshot: IdentitySnapshot, secret_digest: str = "") -> None:
        """Insert or replace the entry for key, stamped with the current time."""
        now = self._clock()
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = CacheEntry(key=key, snapshot=snapshot, inserted_at=now, secret_digest=secret_digest)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of entries removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    # Caller holds the lock.
    def _evict(self, now: float) -> None:
        stale = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for k in stale:
            del self._entries[k]
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at < self.ttl
