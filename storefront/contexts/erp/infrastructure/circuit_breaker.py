from __future__ import annotations

import time
from threading import Lock
from typing import Callable


STATE_CLOSED = "closed"
STATE_OPEN = "open"
STATE_HALF_OPEN = "half_open"


class ErpCircuitBreaker:
    """Fast-fails every ERP call after ``failure_threshold`` consecutive failures.

    One breaker guards the whole remote system. ``Open`` lasts until
    ``timeout_seconds`` have passed since the last failure, then exactly one
    trial call is let through in ``HalfOpen``.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._failure_threshold = self._clamp_int(failure_threshold, 3, 1, 1000)
        self._timeout_seconds = self._clamp_float(timeout_seconds, 30.0, 0.0, 3600.0)

        self._state = STATE_CLOSED
        self._failure_count = 0
        self._last_failure_at = 0.0
        self._trial_in_flight = False

    @staticmethod
    def _clamp_float(value, default: float, minimum: float, maximum: float) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            parsed = default
        return max(minimum, min(maximum, parsed))

    @staticmethod
    def _clamp_int(value, default: int, minimum: int, maximum: int) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            parsed = default
        return max(minimum, min(maximum, parsed))

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def _remaining_open_seconds(self, now: float) -> float:
        return max(0.0, self._timeout_seconds - (now - self._last_failure_at))

    def before_call(self) -> tuple[bool, str, float]:
        """Return ``(allowed, state, retry_after_seconds)`` for the next call."""
        now = self._clock()
        with self._lock:
            if self._state == STATE_OPEN:
                if (now - self._last_failure_at) > self._timeout_seconds:
                    self._state = STATE_HALF_OPEN
                    self._trial_in_flight = False
                else:
                    return False, STATE_OPEN, self._remaining_open_seconds(now)

            if self._state == STATE_HALF_OPEN:
                if self._trial_in_flight:
                    return False, STATE_HALF_OPEN, self._timeout_seconds
                self._trial_in_flight = True
                return True, STATE_HALF_OPEN, 0.0

            return True, STATE_CLOSED, 0.0

    def record_success(self) -> None:
        with self._lock:
            self._state = STATE_CLOSED
            self._failure_count = 0
            self._trial_in_flight = False

    def record_failure(self) -> str:
        now = self._clock()
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = now
            if self._state == STATE_HALF_OPEN:
                self._state = STATE_OPEN
                self._trial_in_flight = False
            elif self._state == STATE_CLOSED and self._failure_count >= self._failure_threshold:
                self._state = STATE_OPEN
            return self._state

    def release_trial(self) -> None:
        """Free the HalfOpen trial slot when the trial ended without an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def snapshot(self) -> dict:
        now = self._clock()
        with self._lock:
            retry_after = self._remaining_open_seconds(now) if self._state == STATE_OPEN else 0.0
            return {
                "state": self._state,
                "failure_count": int(self._failure_count),
                "failure_threshold": int(self._failure_threshold),
                "timeout_seconds": self._timeout_seconds,
                "retry_after_seconds": round(retry_after, 2),
            }

    def reset(self) -> None:
        with self._lock:
            self._state = STATE_CLOSED
            self._failure_count = 0
            self._last_failure_at = 0.0
            self._trial_in_flight = False
