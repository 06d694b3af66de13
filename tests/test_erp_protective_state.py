import unittest

from storefront.contexts.erp.domain.gateway import (
    CATEGORY_AUTH,
    CATEGORY_CRITICAL,
    CATEGORY_NETWORK,
    CATEGORY_RATE_LIMIT,
    CATEGORY_VALIDATION,
)
from storefront.contexts.erp.infrastructure.backoff import BackoffTracker
from storefront.contexts.erp.infrastructure.circuit_breaker import (
    STATE_CLOSED,
    STATE_HALF_OPEN,
    STATE_OPEN,
    ErpCircuitBreaker,
)
from storefront.contexts.erp.infrastructure.lockout_guard import ErpLockoutGuard
from tests.helpers.fakes import ManualClock


class BackoffTrackerTest(unittest.TestCase):
    def test_delay_doubles_per_endpoint_and_caps(self) -> None:
        backoff = BackoffTracker(base_seconds=1.0, max_seconds=60.0, jitter_ratio=0.0)
        self.assertEqual(backoff.delay("/a"), 0.0)

        delays = [backoff.record_failure("/a") for _ in range(7)]
        self.assertEqual(delays, [2.0, 4.0, 8.0, 16.0, 32.0, 60.0, 60.0])
        self.assertEqual(backoff.delay("/b"), 0.0)
        self.assertEqual(backoff.endpoints(), ["/a"])

    def test_success_clears_only_that_endpoint(self) -> None:
        backoff = BackoffTracker(jitter_ratio=0.0)
        backoff.record_failure("/a")
        backoff.record_failure("/b")
        backoff.record_success("/a")
        self.assertEqual(backoff.delay("/a"), 0.0)
        self.assertEqual(backoff.delay("/b"), 2.0)
        self.assertEqual(backoff.snapshot(), {"/b": 2.0})

    def test_jitter_stays_within_ratio(self) -> None:
        backoff = BackoffTracker(base_seconds=1.0, jitter_ratio=0.3, rng=lambda low, high: high)
        backoff.set_delay("/a", 10.0)
        self.assertAlmostEqual(backoff.jittered_delay("/a"), 13.0)

        low = BackoffTracker(base_seconds=1.0, jitter_ratio=0.3, rng=lambda low, high: low)
        low.set_delay("/a", 10.0)
        self.assertAlmostEqual(low.jittered_delay("/a"), 7.0)
        self.assertEqual(low.jittered_delay("/unknown"), 0.0)

    def test_set_delay_respects_max(self) -> None:
        backoff = BackoffTracker(max_seconds=60.0)
        backoff.set_delay("login", 600.0)
        self.assertEqual(backoff.delay("login"), 60.0)


class CircuitBreakerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = ManualClock()
        self.breaker = ErpCircuitBreaker(failure_threshold=3, timeout_seconds=30, clock=self.clock)

    def _trip(self) -> None:
        for _ in range(3):
            self.breaker.record_failure()

    def test_opens_at_threshold_and_rejects_until_timeout(self) -> None:
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.assertEqual(self.breaker.state, STATE_CLOSED)
        self.assertEqual(self.breaker.record_failure(), STATE_OPEN)

        allowed, state, retry_after = self.breaker.before_call()
        self.assertFalse(allowed)
        self.assertEqual(state, STATE_OPEN)
        self.assertAlmostEqual(retry_after, 30.0)

        self.clock.advance(10)
        allowed, _state, retry_after = self.breaker.before_call()
        self.assertFalse(allowed)
        self.assertAlmostEqual(retry_after, 20.0)

    def test_exactly_one_half_open_trial(self) -> None:
        self._trip()
        self.clock.advance(31)

        first = self.breaker.before_call()
        second = self.breaker.before_call()
        self.assertEqual(first[:2], (True, STATE_HALF_OPEN))
        self.assertFalse(second[0])
        self.assertEqual(second[1], STATE_HALF_OPEN)

    def test_half_open_success_closes(self) -> None:
        self._trip()
        self.clock.advance(31)
        self.breaker.before_call()
        self.breaker.record_success()
        self.assertEqual(self.breaker.state, STATE_CLOSED)
        self.assertEqual(self.breaker.snapshot()["failure_count"], 0)
        self.assertTrue(self.breaker.before_call()[0])

    def test_half_open_failure_reopens(self) -> None:
        self._trip()
        self.clock.advance(31)
        self.breaker.before_call()
        self.assertEqual(self.breaker.record_failure(), STATE_OPEN)
        self.assertFalse(self.breaker.before_call()[0])

    def test_success_resets_consecutive_count(self) -> None:
        self.breaker.record_failure()
        self.breaker.record_failure()
        self.breaker.record_success()
        self.breaker.record_failure()
        self.assertEqual(self.breaker.state, STATE_CLOSED)


class LockoutGuardTest(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = ManualClock()
        self.guard = ErpLockoutGuard(max_errors=3, window_seconds=3600, lock_seconds=2700, clock=self.clock)

    def test_never_trips_on_non_counting_categories(self) -> None:
        for _ in range(50):
            for category in (CATEGORY_VALIDATION, CATEGORY_AUTH, CATEGORY_RATE_LIMIT):
                self.assertFalse(self.guard.record_failure(category))
        self.assertEqual(self.guard.check(), (False, 0.0))
        self.assertEqual(self.guard.snapshot()["consecutive_critical_errors"], 0)

    def test_trips_at_max_and_releases_after_duration(self) -> None:
        self.assertFalse(self.guard.record_failure(CATEGORY_CRITICAL))
        self.assertFalse(self.guard.record_failure(CATEGORY_NETWORK))
        self.assertTrue(self.guard.record_failure(CATEGORY_CRITICAL))

        locked, remaining = self.guard.check()
        self.assertTrue(locked)
        self.assertAlmostEqual(remaining, 2700.0)

        self.clock.advance(2699)
        self.assertTrue(self.guard.locked)

        self.clock.advance(1)
        self.assertEqual(self.guard.check(), (False, 0.0))
        self.assertEqual(self.guard.snapshot()["consecutive_critical_errors"], 0)

    def test_success_resets_the_run(self) -> None:
        self.guard.record_failure(CATEGORY_CRITICAL)
        self.guard.record_failure(CATEGORY_CRITICAL)
        self.guard.record_success()
        self.assertFalse(self.guard.record_failure(CATEGORY_CRITICAL))
        self.assertFalse(self.guard.locked)

    def test_window_expiry_restarts_count(self) -> None:
        self.guard.record_failure(CATEGORY_CRITICAL)
        self.guard.record_failure(CATEGORY_CRITICAL)
        self.clock.advance(3601)
        self.assertFalse(self.guard.record_failure(CATEGORY_CRITICAL))
        self.assertEqual(self.guard.snapshot()["consecutive_critical_errors"], 1)


if __name__ == "__main__":
    unittest.main()
