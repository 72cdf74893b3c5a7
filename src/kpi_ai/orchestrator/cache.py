"""TTL result cache shared by all orchestrated calls."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from time import monotonic
from typing import Any

from kpi_ai.types import CacheEntry

logger = logging.getLogger(__name__)


def make_cache_key(service_name: str, method: str, params: dict[str, Any]) -> str:
    """Stable key over the service, method and canonical JSON of the params."""
    payload = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()
    return f"{service_name}-{method}-{digest}"


class TTLCache:
    """Per-entry TTL cache with lazy eviction on read and an explicit sweep."""

    def __init__(self, ttl_ms: float, clock: Callable[[], float] = monotonic) -> None:
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, data: Any, ttl_ms: float | None = None) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl_ms=self.ttl_ms if ttl_ms is None else ttl_ms,
        )

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
