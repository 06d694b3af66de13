from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from storefront.contexts.erp.domain.contracts import ErpResponse, ErpSession
from storefront.contexts.erp.domain.gateway import (
    CATEGORY_AUTH,
    CATEGORY_CRITICAL,
    CATEGORY_RATE_LIMIT,
    ErpCriticalError,
    ErpGatewayError,
    error_for_category,
)
from storefront.contexts.erp.infrastructure.backoff import BackoffTracker
from storefront.contexts.erp.infrastructure.error_classifier import classify, classify_application_status
from storefront.contexts.erp.infrastructure.transport import ErpTransport, ErpTransportError, TransportResponse
from storefront.observability import observe_erp_login


_LOGGER = logging.getLogger("storefront")

LOGIN_ENDPOINT = "/OAPI/V2/OAPILogin"
LOGIN_BACKOFF_KEY = "login"


@dataclass(frozen=True)
class ErpCredentials:
    company_code: str
    user_id: str
    api_cert_key: str
    zone: str = ""
    zone_discovery: bool = True
    zone_url: str = "https://oapi.ecount.com/OAPI/V2/Zone"
    base_url_template: str = "https://oapi{zone}.ecount.com"
    language: str = "en-US"

    def base_url(self, zone: str) -> str:
        return self.base_url_template.format(zone=str(zone or "").strip().lower()).rstrip("/")


def _cookie_header(set_cookie_values: list[str]) -> str:
    pairs = []
    for raw in set_cookie_values:
        pair = str(raw or "").split(";", 1)[0].strip()
        if pair:
            pairs.append(pair)
    return "; ".join(pairs)


class ErpSessionManager:
    """Owns the ERP session; logins are single-flight and rate limited."""

    def __init__(
        self,
        *,
        transport: ErpTransport,
        credentials: ErpCredentials,
        backoff: BackoffTracker,
        lifetime_seconds: float = 1800.0,
        safety_margin_seconds: float = 300.0,
        min_login_interval_seconds: float = 30.0,
        login_rate_limit_delay_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._transport = transport
        self._credentials = credentials
        self._backoff = backoff
        self._lifetime_seconds = max(60.0, float(lifetime_seconds))
        self._safety_margin_seconds = min(max(0.0, float(safety_margin_seconds)), self._lifetime_seconds - 30.0)
        self._min_login_interval_seconds = max(0.0, float(min_login_interval_seconds))
        self._login_rate_limit_delay_seconds = max(0.0, float(login_rate_limit_delay_seconds))
        self._clock = clock
        self._sleep = sleep

        self._lock = Lock()
        self._session: ErpSession | None = None
        self._pending: Future | None = None
        self._last_login_attempt_at: float | None = None
        self._zone: str | None = None
        self._login_count = 0

    @property
    def login_count(self) -> int:
        with self._lock:
            return self._login_count

    def current_zone(self) -> str:
        with self._lock:
            if self._session is not None:
                return self._session.zone
            return self._zone or self._credentials.zone

    def base_url(self, zone: str | None = None) -> str:
        return self._credentials.base_url(zone or self.current_zone())

    def get_valid_session(self) -> ErpSession:
        with self._lock:
            session = self._session
            if session is not None and session.is_valid(self._clock()):
                return session
            pending = self._pending
            owner = pending is None
            if owner:
                pending = Future()
                self._pending = pending

        if not owner:
            return pending.result()

        try:
            session = self._login()
        except BaseException as exc:
            with self._lock:
                self._pending = None
            pending.set_exception(exc)
            raise

        with self._lock:
            self._session = session
            self._pending = None
        pending.set_result(session)
        return session

    def invalidate(self) -> None:
        with self._lock:
            had_session = self._session is not None
            self._session = None
        if had_session:
            _LOGGER.info("erp_session_invalidated")

    def _await_login_slot(self) -> None:
        with self._lock:
            last_attempt = self._last_login_attempt_at
        if last_attempt is not None:
            remaining = self._min_login_interval_seconds - (self._clock() - last_attempt)
            if remaining > 0:
                _LOGGER.info("erp_login_throttled", extra={"delay_seconds": round(remaining, 2)})
                self._sleep(remaining)
        delay = self._backoff.jittered_delay(LOGIN_BACKOFF_KEY)
        if delay > 0:
            _LOGGER.info("erp_login_backoff", extra={"delay_seconds": round(delay, 2)})
            self._sleep(delay)

    def _login(self) -> ErpSession:
        self._await_login_slot()
        with self._lock:
            self._last_login_attempt_at = self._clock()
            self._login_count += 1

        try:
            zone = self._resolve_zone()
            url = f"{self._credentials.base_url(zone)}{LOGIN_ENDPOINT}"
            payload = {
                "COM_CODE": self._credentials.company_code,
                "USER_ID": self._credentials.user_id,
                "API_CERT_KEY": self._credentials.api_cert_key,
                "LAN_TYPE": self._credentials.language,
                "ZONE": zone,
            }
            response = self._transport.post_json(url, payload)
            token = self._token_from(response)
        except ErpTransportError as exc:
            self._record_login_failure(classify(None, exc), str(exc))
            raise error_for_category(classify(None, exc), f"ERP login failed: {exc}") from exc
        except ErpGatewayError as exc:
            self._record_login_failure(exc.category, str(exc))
            raise

        self._backoff.record_success(LOGIN_BACKOFF_KEY)
        observe_erp_login("success")
        expires_at = self._clock() + self._lifetime_seconds - self._safety_margin_seconds
        session = ErpSession(
            token=token,
            expires_at=expires_at,
            zone=zone,
            auth_cookies=_cookie_header(response.cookies),
        )
        _LOGGER.info(
            "erp_login_succeeded",
            extra={"zone": zone, "session": session.masked_token(), "expires_in_seconds": round(expires_at - self._clock())},
        )
        return session

    def _token_from(self, response: TransportResponse) -> str:
        if response.status != 200:
            category = classify(response.status)
            raise error_for_category(
                category,
                f"ERP login failed with HTTP {response.status}",
                http_status=response.status,
            )
        if not response.is_json:
            raise ErpCriticalError("ERP login returned a non-JSON body", http_status=response.status)
        try:
            parsed = ErpResponse.from_payload(response.json())
        except ValueError as exc:
            raise ErpCriticalError("ERP login returned invalid JSON", http_status=response.status) from exc
        if not parsed.ok:
            category = classify_application_status(parsed.status, parsed.error_message)
            raise error_for_category(
                category,
                f"ERP login rejected: {parsed.error_message or parsed.status or 'unknown error'}",
                code=parsed.status,
            )
        data = parsed.data if isinstance(parsed.data, dict) else {}
        datas = data.get("Datas") if isinstance(data.get("Datas"), dict) else {}
        token = str(datas.get("SESSION_ID") or "").strip()
        if not token:
            raise error_for_category(CATEGORY_AUTH, "ERP login response carried no SESSION_ID")
        return token

    def _record_login_failure(self, category: str, message: str) -> None:
        if category == CATEGORY_RATE_LIMIT:
            self._backoff.set_delay(LOGIN_BACKOFF_KEY, self._login_rate_limit_delay_seconds)
        else:
            self._backoff.record_failure(LOGIN_BACKOFF_KEY)
        observe_erp_login(category)
        _LOGGER.warning(
            "erp_login_failed",
            extra={
                "category": category,
                "error": message,
                "delay_seconds": round(self._backoff.delay(LOGIN_BACKOFF_KEY), 2),
            },
        )

    def _resolve_zone(self) -> str:
        with self._lock:
            if self._zone:
                return self._zone
        configured = str(self._credentials.zone or "").strip()
        if configured and not self._credentials.zone_discovery:
            zone = configured
        else:
            discovered, failure = self._discover_zone()
            zone = discovered or configured
            if not zone and failure is not None:
                raise error_for_category(failure[0], f"ERP zone could not be resolved: {failure[1]}")
        if not zone:
            raise error_for_category(CATEGORY_CRITICAL, "ERP zone could not be resolved")
        with self._lock:
            self._zone = zone
        return zone

    def _discover_zone(self) -> tuple[str | None, tuple[str, str] | None]:
        """Return ``(zone, None)`` or ``(None, (category, reason))``."""
        try:
            response = self._transport.post_json(
                self._credentials.zone_url,
                {"COM_CODE": self._credentials.company_code},
            )
        except ErpTransportError as exc:
            return self._zone_discovery_failed(classify(None, exc), str(exc))
        if response.status != 200:
            return self._zone_discovery_failed(classify(response.status), f"HTTP {response.status}", response.status)
        try:
            parsed = ErpResponse.from_payload(response.json()) if response.is_json else None
        except ValueError:
            parsed = None
        if parsed is None:
            return self._zone_discovery_failed(CATEGORY_CRITICAL, "zone lookup returned no JSON body", response.status)
        if not parsed.ok:
            category = classify_application_status(parsed.status, parsed.error_message)
            return self._zone_discovery_failed(category, parsed.error_message or f"status {parsed.status}", response.status)
        data = parsed.data if isinstance(parsed.data, dict) else {}
        zone = str(data.get("Zone") or data.get("ZONE") or "").strip()
        if not zone:
            return self._zone_discovery_failed(CATEGORY_CRITICAL, "zone lookup returned no zone", response.status)
        _LOGGER.info("erp_zone_discovered", extra={"zone": zone})
        return zone, None

    def _zone_discovery_failed(
        self, category: str, reason: str, http_status: int | None = None
    ) -> tuple[None, tuple[str, str]]:
        _LOGGER.warning(
            "erp_zone_discovery_failed",
            extra={"category": category, "http_status": http_status, "error": reason},
        )
        return None, (category, reason)

    def snapshot(self) -> dict:
        now = self._clock()
        with self._lock:
            session = self._session
            return {
                "active": bool(session is not None and session.is_valid(now)),
                "zone": session.zone if session is not None else (self._zone or self._credentials.zone or None),
                "expires_in_seconds": round(max(0.0, session.expires_at - now), 2) if session is not None else None,
                "login_in_flight": self._pending is not None,
                "login_count": int(self._login_count),
            }

    def reset(self) -> None:
        with self._lock:
            self._session = None
            self._pending = None
            self._last_login_attempt_at = None
            self._zone = None
            self._login_count = 0
