"""
In-memory TTL cache for computed effective permissions.

Single process only: there is no cross-instance coherence. Entries are kept
in insertion order; eviction drops the oldest ones first.
"""
import json
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

from tenant_rbac.features.permissions.schemas import CacheStatistics
from tenant_rbac.utils import get_logger


log = get_logger(__name__)

# Fraction of max_entries dropped when the cache is full
EVICTION_FRACTION = 0.1
# Rough per-entry bookkeeping overhead used by the memory estimate
ENTRY_OVERHEAD_BYTES = 64


class CacheKey(NamedTuple):
    kind: str
    user_id: str
    company_id: Optional[str] = None

    def __str__(self) -> str:
        base = f"permissions:{self.kind}:{self.user_id}"
        return f"{base}:{self.company_id}" if self.company_id else base


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    hit_count: int = 0


class PermissionCache:
    """
    TTL cache with bounded size.

    All reads and mutations are serialized under one lock; a reader never
    sees a half-inserted or half-evicted entry. When `enabled` is False every
    `get` misses and `put` stores nothing, so callers always recompute.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int = 10000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._misses = 0
        self._lock = threading.RLock()

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return the cached value, or None on a miss. Expired entries are dropped."""
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            return entry.value

    def put(self, key: CacheKey, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if not self.enabled:
            return
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            # Re-inserting moves the key to the young end
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict_oldest()
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)

    def invalidate_users(self, user_ids: Iterable[str]) -> List[CacheKey]:
        """Remove every entry (any kind, any company) belonging to the given users."""
        targets = set(user_ids)
        return self.invalidate_where(lambda key, _value: key.user_id in targets)

    def invalidate_where(self, predicate: Callable[[CacheKey, Any], bool]) -> List[CacheKey]:
        with self._lock:
            doomed = [key for key, entry in self._entries.items() if predicate(key, entry.value)]
            for key in doomed:
                del self._entries[key]
        return doomed

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def statistics(self) -> CacheStatistics:
        """Snapshot of cache health. Expired entries are purged first."""
        self.purge_expired()
        with self._lock:
            now = self._clock()
            total_entries = len(self._entries)
            active_entries = sum(1 for entry in self._entries.values() if now < entry.expires_at)
            total_hits = sum(entry.hit_count for entry in self._entries.values())
            memory = self._estimate_memory_usage()
            misses = self._misses

        lookups = total_hits + misses
        return CacheStatistics(
            total_entries=total_entries,
            active_entries=active_entries,
            expired_entries=total_entries - active_entries,
            total_hits=total_hits,
            total_misses=misses,
            hit_ratio=total_hits / lookups if lookups else 0.0,
            memory_usage_bytes=memory,
            average_entry_size=memory / total_entries if total_entries else 0.0,
            calculated_at=datetime.now(timezone.utc),
        )

    def _evict_oldest(self) -> None:
        count = max(1, int(self.max_entries * EVICTION_FRACTION))
        for key in list(self._entries)[:count]:
            del self._entries[key]
        log.debug(f"Permission cache full - evicted {count} oldest entries")

    def _estimate_memory_usage(self) -> int:
        total = 0
        for key, entry in self._entries.items():
            total += len(str(key)) * 2
            total += ENTRY_OVERHEAD_BYTES
            total += len(_serialize(entry.value)) * 2
        return total


def _serialize(value: Any) -> str:
    if hasattr(value, "model_dump_json"):
        return value.model_dump_json()
    return json.dumps(value, default=str)
