from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable

from storefront.contexts.erp.infrastructure.error_classifier import counts_toward_lockout


_LOGGER = logging.getLogger("storefront")


class ErpLockoutGuard:
    """Self-imposed hold on all ERP traffic before the remote locks the account.

    The remote bans the integration after a run of consecutive server-side
    errors within an hour. Only ``network`` and ``critical`` failures count
    here; the guard trips at ``max_errors`` (kept well below the remote limit)
    and holds every call for ``lock_seconds``.
    """

    def __init__(
        self,
        *,
        max_errors: int = 8,
        window_seconds: float = 3600.0,
        lock_seconds: float = 2700.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = Lock()
        self._clock = clock
        self._max_errors = max(1, int(max_errors))
        self._window_seconds = max(1.0, float(window_seconds))
        self._lock_seconds = max(1.0, float(lock_seconds))

        self._consecutive_errors = 0
        self._window_start: float | None = None
        self._locked = False
        self._lock_release_at = 0.0

    def _release_if_due(self, now: float) -> None:
        if self._locked and now >= self._lock_release_at:
            self._locked = False
            self._lock_release_at = 0.0
            self._consecutive_errors = 0
            self._window_start = None
            _LOGGER.info("erp_lockout_released")

    def check(self) -> tuple[bool, float]:
        """Return ``(locked, remaining_seconds)``, self-clearing an expired lock."""
        now = self._clock()
        with self._lock:
            self._release_if_due(now)
            if self._locked:
                return True, max(0.0, self._lock_release_at - now)
            return False, 0.0

    @property
    def locked(self) -> bool:
        locked, _remaining = self.check()
        return locked

    def record_failure(self, category: str) -> bool:
        """Count a classified failure; return True when this call trips the guard."""
        if not counts_toward_lockout(category):
            return False
        now = self._clock()
        with self._lock:
            self._release_if_due(now)
            if self._locked:
                return False
            if self._window_start is None or (now - self._window_start) > self._window_seconds:
                self._window_start = now
                self._consecutive_errors = 0
            self._consecutive_errors += 1
            if self._consecutive_errors < self._max_errors:
                return False
            self._locked = True
            self._lock_release_at = now + self._lock_seconds
            _LOGGER.error(
                "erp_lockout_engaged",
                extra={
                    "consecutive_errors": self._consecutive_errors,
                    "lock_seconds": self._lock_seconds,
                },
            )
            return True

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_errors = 0
            self._window_start = None

    def snapshot(self) -> dict:
        now = self._clock()
        with self._lock:
            self._release_if_due(now)
            return {
                "locked": self._locked,
                "consecutive_critical_errors": int(self._consecutive_errors),
                "max_errors": int(self._max_errors),
                "retry_after_seconds": round(max(0.0, self._lock_release_at - now), 2) if self._locked else 0.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._consecutive_errors = 0
            self._window_start = None
            self._locked = False
            self._lock_release_at = 0.0
