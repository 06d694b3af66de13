from __future__ import annotations

import random
from threading import Lock
from typing import Callable


class BackoffTracker:
    """Per-endpoint exponential delay applied before the next call."""

    def __init__(
        self,
        *,
        base_seconds: float = 1.0,
        max_seconds: float = 60.0,
        jitter_ratio: float = 0.3,
        rng: Callable[[float, float], float] | None = None,
    ) -> None:
        self._lock = Lock()
        self._base_seconds = max(0.0, float(base_seconds))
        self._max_seconds = max(self._base_seconds, float(max_seconds))
        self._jitter_ratio = max(0.0, min(1.0, float(jitter_ratio)))
        self._uniform = rng or random.uniform
        self._delays: dict[str, float] = {}

    @property
    def max_seconds(self) -> float:
        return self._max_seconds

    def delay(self, endpoint: str) -> float:
        with self._lock:
            return float(self._delays.get(endpoint, 0.0))

    def jittered_delay(self, endpoint: str) -> float:
        current = self.delay(endpoint)
        if current <= 0:
            return 0.0
        jitter_window = current * self._jitter_ratio
        jitter = self._uniform(-jitter_window, jitter_window) if jitter_window > 0 else 0.0
        return max(0.0, current + jitter)

    def record_failure(self, endpoint: str) -> float:
        with self._lock:
            current = self._delays.get(endpoint, self._base_seconds)
            updated = min(self._max_seconds, max(current, self._base_seconds) * 2)
            self._delays[endpoint] = updated
            return updated

    def set_delay(self, endpoint: str, seconds: float) -> None:
        with self._lock:
            self._delays[endpoint] = min(self._max_seconds, max(0.0, float(seconds)))

    def record_success(self, endpoint: str) -> None:
        with self._lock:
            self._delays.pop(endpoint, None)

    def endpoints(self) -> list[str]:
        with self._lock:
            return sorted(self._delays)

    def snapshot(self) -> dict:
        with self._lock:
            return {endpoint: round(delay, 3) for endpoint, delay in sorted(self._delays.items())}

    def reset(self) -> None:
        with self._lock:
            self._delays.clear()
