"""Short-lived memo of suggestion reports keyed by resident and trait signature."""

from __future__ import annotations

import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Optional


DEFAULT_TTL_SECONDS = 300.0


@dataclass
class _CacheEntry:
    expires_at: float
    data: Any


class SuggestionCache:
    """TTL cache for the read-only suggestions path; never consulted on commit."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = RLock()

    @staticmethod
    def _key(resident_id: int, signature: str) -> str:
        return f"{resident_id}|{signature}"

    def get(self, resident_id: int, signature: str) -> Optional[Any]:
        key = self._key(resident_id, signature)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.data

    def put(
        self,
        resident_id: int,
        signature: str,
        data: Any,
        ttl_seconds: Optional[float] = None,
    ) -> None:
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[self._key(resident_id, signature)] = _CacheEntry(
                expires_at=self._clock() + ttl,
                data=data,
            )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
