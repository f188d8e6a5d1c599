"""In-process TTL cache for catalog responses."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
REFERENCE_TTL_SECONDS = 60 * 60


@dataclass(slots=True)
class CacheEntry:
    """A cached value together with its storage and expiry timestamps."""

    key: str
    value: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class FetchCache:
    """Key/value store whose entries expire lazily on read.

    The cache never sweeps in the background: an expired entry is removed the
    next time it is looked up. ``get``/``set`` never await, so within one
    event-loop turn they are atomic; a ``get`` followed by a ``set`` across an
    ``await`` is not.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("Cache TTL must be positive")
        self._entries: dict[str, CacheEntry] = {}
        self._default_ttl = float(default_ttl)
        self._clock = clock

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        entry = self._lookup(key)
        return entry is not None

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on a miss or expiry."""

        entry = self._lookup(key)
        if entry is None:
            return default
        return entry.value

    def entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key`` if there is one."""

        return self._lookup(key)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key``, replacing any previous entry."""

        resolved_ttl = self._default_ttl if ttl is None else float(ttl)
        if resolved_ttl <= 0:
            raise ValueError("Cache TTL must be positive")
        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            stored_at=now,
            expires_at=now + resolved_ttl,
        )

    def invalidate(self, pattern: str | None = None) -> int:
        """Drop every key containing ``pattern``, or everything without one."""

        if pattern is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
            removed = len(doomed)
        if removed:
            logger.debug("Invalidated %s cache entries (pattern=%r)", removed, pattern)
        return removed

    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry
