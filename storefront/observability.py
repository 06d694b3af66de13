from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
_ERP_CALL_DURATION_BUCKETS_MS = (25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)
_ERP_BACKOFF_BUCKETS_SECONDS = (0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def background_request_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload or callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests_total = 0
        self._errors_total = 0
        self._by_route: Dict[str, Dict[str, float]] = {}

        self._http_request_total: Dict[tuple[str, str, str], int] = {}
        self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}

        self._erp_call_total: Dict[tuple[str, str], int] = {}
        self._erp_failure_total: Dict[str, int] = {}
        self._erp_call_duration_ms = self._new_histogram_state(_ERP_CALL_DURATION_BUCKETS_MS)
        self._erp_backoff_wait_seconds = self._new_histogram_state(_ERP_BACKOFF_BUCKETS_SECONDS)
        self._erp_login_total: Dict[str, int] = {}

        self._catalog_stale_serve_total = 0
        self._catalog_refresh_total: Dict[str, int] = {}

        self._reconciliation_cycle_total: Dict[str, int] = {}
        self._reconciliation_order_total: Dict[str, int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        observed = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += observed
        for limit in limits:
            if observed <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _increment(counter: dict, key, amount: int = 1) -> None:
        counter[key] = int(counter.get(key, 0)) + amount

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))

        key = f"{method_key} {route_key}"
        with self._lock:
            bucket = self._by_route.setdefault(
                key,
                {
                    "requests": 0.0,
                    "errors": 0.0,
                    "latency_sum_ms": 0.0,
                    "latency_max_ms": 0.0,
                },
            )
            bucket["requests"] += 1
            bucket["latency_sum_ms"] += max(0.0, float(duration_ms))
            bucket["latency_max_ms"] = max(bucket["latency_max_ms"], max(0.0, float(duration_ms)))
            self._requests_total += 1
            if int(status_code) >= 400:
                bucket["errors"] += 1
                self._errors_total += 1

            self._increment(self._http_request_total, (method_key, route_key, status_key))
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_erp_call(self, endpoint: str, outcome: str, duration_ms: float | None = None) -> None:
        key = (str(endpoint or "unknown"), str(outcome or "unknown"))
        with self._lock:
            self._increment(self._erp_call_total, key)
            if duration_ms is not None:
                self._observe_histogram(self._erp_call_duration_ms, duration_ms, _ERP_CALL_DURATION_BUCKETS_MS)

    def observe_erp_failure(self, category: str) -> None:
        with self._lock:
            self._increment(self._erp_failure_total, str(category or "unknown"))

    def observe_erp_backoff_wait(self, seconds: float) -> None:
        with self._lock:
            self._observe_histogram(self._erp_backoff_wait_seconds, seconds, _ERP_BACKOFF_BUCKETS_SECONDS)

    def observe_erp_login(self, result: str) -> None:
        with self._lock:
            self._increment(self._erp_login_total, str(result or "unknown"))

    def observe_catalog_stale_serve(self, count: int = 1) -> None:
        increment = max(0, int(count or 0))
        if increment <= 0:
            return
        with self._lock:
            self._catalog_stale_serve_total += increment

    def observe_catalog_refresh(self, result: str) -> None:
        with self._lock:
            self._increment(self._catalog_refresh_total, str(result or "unknown"))

    def observe_reconciliation_cycle(self, result: str) -> None:
        with self._lock:
            self._increment(self._reconciliation_cycle_total, str(result or "unknown"))

    def observe_reconciliation_order(self, outcome: str) -> None:
        with self._lock:
            self._increment(self._reconciliation_order_total, str(outcome or "unknown"))

    def snapshot(self) -> dict:
        with self._lock:
            route_stats = []
            for route, bucket in self._by_route.items():
                requests_count = int(bucket["requests"])
                avg_ms = 0.0
                if requests_count > 0:
                    avg_ms = float(bucket["latency_sum_ms"]) / requests_count
                route_stats.append(
                    {
                        "route": route,
                        "requests": requests_count,
                        "errors": int(bucket["errors"]),
                        "avg_latency_ms": round(avg_ms, 2),
                        "max_latency_ms": round(float(bucket["latency_max_ms"]), 2),
                    }
                )
            route_stats.sort(key=lambda item: item["requests"], reverse=True)
            return {
                "requests_total": int(self._requests_total),
                "errors_total": int(self._errors_total),
                "by_route": route_stats[:40],
                "erp": {
                    "calls_total": int(sum(self._erp_call_total.values())),
                    "failures_by_category": dict(sorted(self._erp_failure_total.items())),
                    "logins": dict(sorted(self._erp_login_total.items())),
                },
                "catalog": {
                    "stale_serve_total": int(self._catalog_stale_serve_total),
                    "refresh": dict(sorted(self._catalog_refresh_total.items())),
                },
                "reconciliation": {
                    "cycles": dict(sorted(self._reconciliation_cycle_total.items())),
                    "orders": dict(sorted(self._reconciliation_order_total.items())),
                },
            }

    @staticmethod
    def _histogram_copy(state: dict) -> dict:
        return {
            "count": int(state["count"]),
            "sum": float(state["sum"]),
            "buckets": {label: int(count) for label, count in state["buckets"].items()},
        }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            http_totals = [
                {"method": method, "route": route, "status": status, "value": int(value)}
                for (method, route, status), value in sorted(self._http_request_total.items())
            ]
            http_histograms = []
            for (method, route), histogram in sorted(self._http_request_duration_ms.items()):
                http_histograms.append({"method": method, "route": route} | self._histogram_copy(histogram))
            return {
                "http_request_total": http_totals,
                "http_request_duration_ms": http_histograms,
                "erp_call_total": [
                    {"endpoint": endpoint, "outcome": outcome, "value": int(value)}
                    for (endpoint, outcome), value in sorted(self._erp_call_total.items())
                ],
                "erp_failure_total": dict(sorted(self._erp_failure_total.items())),
                "erp_call_duration_ms": self._histogram_copy(self._erp_call_duration_ms),
                "erp_backoff_wait_seconds": self._histogram_copy(self._erp_backoff_wait_seconds),
                "erp_login_total": dict(sorted(self._erp_login_total.items())),
                "catalog_stale_serve_total": int(self._catalog_stale_serve_total),
                "catalog_refresh_total": dict(sorted(self._catalog_refresh_total.items())),
                "reconciliation_cycle_total": dict(sorted(self._reconciliation_cycle_total.items())),
                "reconciliation_order_total": dict(sorted(self._reconciliation_order_total.items())),
            }

    def reset(self) -> None:
        with self._lock:
            self._requests_total = 0
            self._errors_total = 0
            self._by_route.clear()
            self._http_request_total.clear()
            self._http_request_duration_ms.clear()
            self._erp_call_total.clear()
            self._erp_failure_total.clear()
            self._erp_call_duration_ms = self._new_histogram_state(_ERP_CALL_DURATION_BUCKETS_MS)
            self._erp_backoff_wait_seconds = self._new_histogram_state(_ERP_BACKOFF_BUCKETS_SECONDS)
            self._erp_login_total.clear()
            self._catalog_stale_serve_total = 0
            self._catalog_refresh_total.clear()
            self._reconciliation_cycle_total.clear()
            self._reconciliation_order_total.clear()


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_erp_call(endpoint: str, outcome: str, duration_ms: float | None = None) -> None:
    _METRICS.observe_erp_call(endpoint, outcome, duration_ms)


def observe_erp_failure(category: str) -> None:
    _METRICS.observe_erp_failure(category)


def observe_erp_backoff_wait(seconds: float) -> None:
    _METRICS.observe_erp_backoff_wait(seconds)


def observe_erp_login(result: str) -> None:
    _METRICS.observe_erp_login(result)


def observe_catalog_stale_serve(count: int = 1) -> None:
    _METRICS.observe_catalog_stale_serve(count)


def observe_catalog_refresh(result: str) -> None:
    _METRICS.observe_catalog_refresh(result)


def observe_reconciliation_cycle(result: str) -> None:
    _METRICS.observe_reconciliation_cycle(result)


def observe_reconciliation_order(outcome: str) -> None:
    _METRICS.observe_reconciliation_order(outcome)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def _prom_histogram(lines: list[str], name: str, hist: dict, labels: dict[str, object] | None = None) -> None:
    base_labels = dict(labels or {})
    for le_label, bucket_value in hist["buckets"].items():
        lines.append(_prom_line(f"{name}_bucket", int(bucket_value), labels=base_labels | {"le": le_label}))
    lines.append(_prom_line(f"{name}_sum", float(hist["sum"]), labels=base_labels or None))
    lines.append(_prom_line(f"{name}_count", int(hist["count"]), labels=base_labels or None))


def prometheus_metrics_text(*, gateway_state: dict | None = None) -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for sample in snapshot["http_request_total"]:
        lines.append(
            _prom_line(
                "http_request_total",
                int(sample["value"]),
                labels={"method": sample["method"], "route": sample["route"], "status": sample["status"]},
            )
        )

    lines.append("# HELP http_request_duration_ms HTTP request duration in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for hist in snapshot["http_request_duration_ms"]:
        _prom_histogram(lines, "http_request_duration_ms", hist, {"method": hist["method"], "route": hist["route"]})

    lines.append("# HELP erp_call_total ERP calls by endpoint and outcome.")
    lines.append("# TYPE erp_call_total counter")
    for sample in snapshot["erp_call_total"]:
        lines.append(
            _prom_line(
                "erp_call_total",
                int(sample["value"]),
                labels={"endpoint": sample["endpoint"], "outcome": sample["outcome"]},
            )
        )

    lines.append("# HELP erp_failure_total Classified ERP failures by category.")
    lines.append("# TYPE erp_failure_total counter")
    for category, value in snapshot["erp_failure_total"].items():
        lines.append(_prom_line("erp_failure_total", int(value), labels={"category": category}))

    lines.append("# HELP erp_call_duration_ms ERP call duration in milliseconds.")
    lines.append("# TYPE erp_call_duration_ms histogram")
    _prom_histogram(lines, "erp_call_duration_ms", snapshot["erp_call_duration_ms"])

    lines.append("# HELP erp_backoff_wait_seconds Backoff delay awaited before ERP calls.")
    lines.append("# TYPE erp_backoff_wait_seconds histogram")
    _prom_histogram(lines, "erp_backoff_wait_seconds", snapshot["erp_backoff_wait_seconds"])

    lines.append("# HELP erp_login_total ERP login attempts by result.")
    lines.append("# TYPE erp_login_total counter")
    for result, value in snapshot["erp_login_total"].items():
        lines.append(_prom_line("erp_login_total", int(value), labels={"result": result}))

    state = gateway_state if isinstance(gateway_state, dict) else {}
    circuit_state = str((state.get("circuit") or {}).get("state") or "closed").strip().lower() or "closed"
    lines.append("# HELP erp_circuit_state ERP circuit breaker state (1 active, 0 inactive).")
    lines.append("# TYPE erp_circuit_state gauge")
    for state_key in ("closed", "open", "half_open"):
        lines.append(_prom_line("erp_circuit_state", 1 if circuit_state == state_key else 0, labels={"state": state_key}))

    lockout = state.get("lockout") or {}
    lines.append("# HELP erp_lockout_active ERP lockout guard holding all traffic (1 locked).")
    lines.append("# TYPE erp_lockout_active gauge")
    lines.append(_prom_line("erp_lockout_active", 1 if lockout.get("locked") else 0))
    lines.append("# HELP erp_lockout_consecutive_errors Consecutive network/critical ERP errors in the window.")
    lines.append("# TYPE erp_lockout_consecutive_errors gauge")
    lines.append(_prom_line("erp_lockout_consecutive_errors", int(lockout.get("consecutive_critical_errors") or 0)))

    lines.append("# HELP catalog_stale_serve_total Catalog reads served from stale cache.")
    lines.append("# TYPE catalog_stale_serve_total counter")
    lines.append(_prom_line("catalog_stale_serve_total", int(snapshot["catalog_stale_serve_total"])))

    lines.append("# HELP catalog_refresh_total Catalog cache refreshes by result.")
    lines.append("# TYPE catalog_refresh_total counter")
    for result, value in snapshot["catalog_refresh_total"].items():
        lines.append(_prom_line("catalog_refresh_total", int(value), labels={"result": result}))

    lines.append("# HELP reconciliation_cycle_total Reconciliation cycles by result.")
    lines.append("# TYPE reconciliation_cycle_total counter")
    for result, value in snapshot["reconciliation_cycle_total"].items():
        lines.append(_prom_line("reconciliation_cycle_total", int(value), labels={"result": result}))

    lines.append("# HELP reconciliation_order_total Failed-order resubmissions by outcome.")
    lines.append("# TYPE reconciliation_order_total counter")
    for outcome, value in snapshot["reconciliation_order_total"].items():
        lines.append(_prom_line("reconciliation_order_total", int(value), labels={"outcome": outcome}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
