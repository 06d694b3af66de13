from __future__ import annotations

import logging
import time
from collections.abc import Sized
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Generic, TypeVar

from storefront.contexts.erp.domain.gateway import ErpGatewayError
from storefront.observability import observe_catalog_refresh, observe_catalog_stale_serve


_LOGGER = logging.getLogger("storefront")

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    fetched_at: float
    fetched_at_iso: str

    def age(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return (now - self.fetched_at) < ttl_seconds


@dataclass
class CacheResult(Generic[T]):
    data: T
    fresh: bool
    fetched_at_iso: str


class TtlCache:
    """Keyed cache that serves the last good value when a refresh fails.

    Expired entries are kept until a successful refresh replaces them.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        fallback_exceptions: tuple[type[BaseException], ...] = (ErpGatewayError,),
    ) -> None:
        self._clock = clock
        self._fallback_exceptions = fallback_exceptions
        self._lock = Lock()
        self._entries: dict[str, CacheEntry] = {}

    def get_or_refresh(self, key: str, ttl_seconds: float, fetch: Callable[[], T]) -> T:
        return self.lookup(key, ttl_seconds, fetch).data

    def lookup(self, key: str, ttl_seconds: float, fetch: Callable[[], T]) -> CacheResult[T]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock(), ttl_seconds):
            return CacheResult(data=entry.data, fresh=True, fetched_at_iso=entry.fetched_at_iso)

        try:
            data = fetch()
        except self._fallback_exceptions as exc:
            observe_catalog_refresh("failed")
            with self._lock:
                stale = self._entries.get(key)
            if stale is None:
                raise
            observe_catalog_stale_serve()
            _LOGGER.warning(
                "cache_serving_stale",
                extra={
                    "cache_key": key,
                    "age_seconds": round(stale.age(self._clock()), 2),
                    "error": str(exc),
                    "category": getattr(exc, "category", None),
                },
            )
            return CacheResult(data=stale.data, fresh=False, fetched_at_iso=stale.fetched_at_iso)

        stored = self.put(key, data)
        observe_catalog_refresh("success")
        return CacheResult(data=data, fresh=True, fetched_at_iso=stored.fetched_at_iso)

    def refresh(self, key: str, fetch: Callable[[], T]) -> T:
        data = fetch()
        self.put(key, data)
        observe_catalog_refresh("success")
        return data

    def put(self, key: str, data: Any) -> CacheEntry:
        entry = CacheEntry(
            data=data,
            fetched_at=self._clock(),
            fetched_at_iso=datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        )
        with self._lock:
            self._entries[key] = entry
        return entry

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def update(self, key: str, mutate: Callable[[Any], Any]) -> bool:
        """Apply ``mutate`` to a cached value in place; False when nothing is cached."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            result = mutate(entry.data)
            if result is not None:
                entry.data = result
            return True

    def status(self, key: str, ttl_seconds: float) -> dict:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return {"key": key, "cached": False, "size": 0, "last_updated": None, "expired": True}
            return {
                "key": key,
                "cached": True,
                "size": len(entry.data) if isinstance(entry.data, Sized) else 1,
                "last_updated": entry.fetched_at_iso,
                "age_seconds": round(entry.age(now), 2),
                "expired": not entry.is_fresh(now, ttl_seconds),
            }

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
        _LOGGER.info("cache_cleared", extra={"cache_key": key or "*"})
