from __future__ import annotations

import logging
import math
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable

from storefront.contexts.erp.domain.contracts import ErpResponse, ErpSession
from storefront.contexts.erp.domain.gateway import (
    CATEGORY_AUTH,
    CATEGORY_CRITICAL,
    CATEGORY_RATE_LIMIT,
    ErpCircuitOpenError,
    ErpGatewayError,
    ErpLockoutError,
    error_for_category,
)
from storefront.contexts.erp.infrastructure.backoff import BackoffTracker
from storefront.contexts.erp.infrastructure.circuit_breaker import ErpCircuitBreaker
from storefront.contexts.erp.infrastructure.error_classifier import classify, classify_application_status
from storefront.contexts.erp.infrastructure.lockout_guard import ErpLockoutGuard
from storefront.contexts.erp.infrastructure.session_manager import ErpCredentials, ErpSessionManager
from storefront.contexts.erp.infrastructure.transport import ErpTransport, TransportResponse
from storefront.observability import (
    observe_erp_backoff_wait,
    observe_erp_call,
    observe_erp_failure,
)


_LOGGER = logging.getLogger("storefront")


@dataclass
class GatewayState:
    """The four protective state holders shared by every ERP call of one runtime."""

    backoff: BackoffTracker
    circuit: ErpCircuitBreaker
    lockout: ErpLockoutGuard
    session: ErpSessionManager

    @classmethod
    def create(
        cls,
        *,
        transport: ErpTransport,
        credentials: ErpCredentials,
        circuit_failure_threshold: int = 3,
        circuit_timeout_seconds: float = 30.0,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 60.0,
        backoff_jitter_ratio: float = 0.3,
        lockout_max_errors: int = 8,
        lockout_window_seconds: float = 3600.0,
        lockout_duration_seconds: float = 2700.0,
        session_lifetime_seconds: float = 1800.0,
        session_safety_margin_seconds: float = 300.0,
        login_min_interval_seconds: float = 30.0,
        login_rate_limit_delay_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Callable[[float, float], float] | None = None,
    ) -> "GatewayState":
        backoff = BackoffTracker(
            base_seconds=backoff_base_seconds,
            max_seconds=backoff_max_seconds,
            jitter_ratio=backoff_jitter_ratio,
            rng=rng,
        )
        return cls(
            backoff=backoff,
            circuit=ErpCircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout_seconds=circuit_timeout_seconds,
                clock=clock,
            ),
            lockout=ErpLockoutGuard(
                max_errors=lockout_max_errors,
                window_seconds=lockout_window_seconds,
                lock_seconds=lockout_duration_seconds,
                clock=clock,
            ),
            session=ErpSessionManager(
                transport=transport,
                credentials=credentials,
                backoff=backoff,
                lifetime_seconds=session_lifetime_seconds,
                safety_margin_seconds=session_safety_margin_seconds,
                min_login_interval_seconds=login_min_interval_seconds,
                login_rate_limit_delay_seconds=login_rate_limit_delay_seconds,
                clock=clock,
                sleep=sleep,
            ),
        )

    def snapshot(self) -> dict:
        backoff = self.backoff.snapshot()
        return {
            "circuit": self.circuit.snapshot(),
            "lockout": self.lockout.snapshot(),
            "backoff": {"endpoints": sorted(backoff), "delays_seconds": backoff},
            "session": self.session.snapshot(),
        }

    def reset(self) -> None:
        self.backoff.reset()
        self.circuit.reset()
        self.lockout.reset()
        self.session.reset()


def _wait_text(seconds: float) -> str:
    return f"{max(1, int(math.ceil(seconds)))} seconds"


class ErpRequestGateway:
    """Single chokepoint for every ERP call.

    Checks the lockout guard, the circuit breaker and the endpoint backoff
    before touching the network, then feeds the classified outcome back into
    all of them. Only successful responses are returned; every failure is
    raised as an ``ErpGatewayError`` subclass.
    """

    def __init__(
        self,
        state: GatewayState,
        *,
        transport: ErpTransport,
        credentials: ErpCredentials,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._state = state
        self._transport = transport
        self._credentials = credentials
        self._sleep = sleep

    @property
    def state(self) -> GatewayState:
        return self._state

    def execute(self, endpoint: str, body: dict[str, Any] | None = None, *, requires_auth: bool = True) -> ErpResponse:
        self._check_guards(endpoint)

        delay = self._state.backoff.jittered_delay(endpoint)
        if delay > 0:
            observe_erp_backoff_wait(delay)
            _LOGGER.info("erp_backoff_wait", extra={"endpoint": endpoint, "delay_seconds": round(delay, 2)})
            self._sleep(delay)

        try:
            return self._attempt(endpoint, dict(body or {}), requires_auth, retry_budget=1)
        except ErpGatewayError:
            raise
        except BaseException:
            self._state.circuit.release_trial()
            raise

    def _check_guards(self, endpoint: str) -> None:
        locked, remaining = self._state.lockout.check()
        if locked:
            observe_erp_call(endpoint, "lockout")
            raise ErpLockoutError(
                f"ERP calls are paused by the lockout guard; wait {_wait_text(remaining)}",
                code="lockout_active",
                retry_after_seconds=remaining,
            )

        allowed, circuit_state, retry_after = self._state.circuit.before_call()
        if not allowed:
            observe_erp_call(endpoint, "circuit_open")
            raise ErpCircuitOpenError(
                f"ERP circuit is {circuit_state}; wait {_wait_text(retry_after)}",
                code="circuit_open",
                retry_after_seconds=retry_after,
            )

    def _attempt(self, endpoint: str, body: dict[str, Any], requires_auth: bool, *, retry_budget: int) -> ErpResponse:
        session = None
        if requires_auth:
            try:
                session = self._state.session.get_valid_session()
            except ErpGatewayError as exc:
                self._record_failure(endpoint, exc.category, str(exc))
                raise

        url, payload, headers = self._build_request(endpoint, body, session)
        started = time.perf_counter()
        try:
            response = self._transport.post_json(url, payload, headers=headers)
        except Exception as exc:  # noqa: BLE001 - any transport failure has no usable status
            category = classify(None, exc)
            self._record_failure(endpoint, category, str(exc) or type(exc).__name__, started=started)
            raise error_for_category(category, f"ERP request to {endpoint} failed: {exc}") from exc

        category = None
        message = ""
        code = None
        parsed = None
        if response.status != 200:
            category = classify(response.status)
            message = f"ERP returned HTTP {response.status} for {endpoint}"
            code = str(response.status)
            if category != CATEGORY_RATE_LIMIT and requires_auth and not response.is_json and response.status < 500:
                category = CATEGORY_AUTH
        elif not response.is_json:
            category = CATEGORY_AUTH if requires_auth else CATEGORY_CRITICAL
            message = f"ERP returned a non-JSON body for {endpoint}"
        else:
            parsed, category, message, code = self._parse(endpoint, response)

        if category is None and parsed is not None:
            self._record_success(endpoint, started)
            return parsed

        if category == CATEGORY_AUTH and requires_auth and retry_budget > 0:
            _LOGGER.info("erp_session_retry", extra={"endpoint": endpoint, "reason": message})
            self._state.session.invalidate()
            return self._attempt(endpoint, body, requires_auth, retry_budget=retry_budget - 1)

        self._record_failure(endpoint, category, message, started=started, http_status=response.status)
        raise error_for_category(category, message, code=code, http_status=response.status)

    def _parse(
        self, endpoint: str, response: TransportResponse
    ) -> tuple[ErpResponse | None, str | None, str, str | None]:
        try:
            parsed = ErpResponse.from_payload(response.json())
        except ValueError:
            return None, CATEGORY_CRITICAL, f"ERP returned invalid JSON for {endpoint}", None
        if parsed.ok:
            return parsed, None, "", None
        category = classify_application_status(parsed.status, parsed.error_message)
        message = parsed.error_message or f"ERP reported status {parsed.status or 'unknown'} for {endpoint}"
        return parsed, category, message, parsed.status or None

    def _build_request(
        self, endpoint: str, body: dict[str, Any], session: ErpSession | None
    ) -> tuple[str, dict[str, Any], dict[str, str]]:
        if session is None:
            return f"{self._state.session.base_url()}{endpoint}", body, {}
        query = urllib.parse.urlencode({"SESSION_ID": session.token})
        url = f"{self._state.session.base_url(session.zone)}{endpoint}?{query}"
        payload = {
            "COM_CODE": self._credentials.company_code,
            "API_CERT_KEY": self._credentials.api_cert_key,
        }
        payload.update(body)
        headers = {"Cookie": session.auth_cookies} if session.auth_cookies else {}
        return url, payload, headers

    def _record_success(self, endpoint: str, started: float) -> None:
        self._state.circuit.record_success()
        self._state.backoff.record_success(endpoint)
        self._state.lockout.record_success()
        observe_erp_call(endpoint, "success", (time.perf_counter() - started) * 1000.0)

    def _record_failure(
        self,
        endpoint: str,
        category: str,
        message: str,
        *,
        started: float | None = None,
        http_status: int | None = None,
    ) -> None:
        delay = self._state.backoff.record_failure(endpoint)
        circuit_state = self._state.circuit.record_failure()
        tripped = self._state.lockout.record_failure(category)
        if category == CATEGORY_AUTH:
            self._state.session.invalidate()

        duration_ms = (time.perf_counter() - started) * 1000.0 if started is not None else None
        observe_erp_call(endpoint, "failure", duration_ms)
        observe_erp_failure(category)
        _LOGGER.warning(
            "erp_call_failed",
            extra={
                "endpoint": endpoint,
                "category": category,
                "http_status": http_status,
                "error": message,
                "delay_seconds": round(delay, 2),
                "circuit_state": circuit_state,
                "lockout_tripped": tripped,
            },
        )
