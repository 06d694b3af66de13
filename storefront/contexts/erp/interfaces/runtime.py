from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Mapping

from flask import Flask, current_app

from storefront.contexts.catalog.application.service import CatalogService
from storefront.contexts.catalog.product_mapping import ProductMappingResolver
from storefront.contexts.catalog.spreadsheet_source import CsvProductSource, ProductSource
from storefront.contexts.catalog.ttl_cache import TtlCache
from storefront.contexts.erp.application.order_submission import SalesOrderSubmitter
from storefront.contexts.erp.domain.contracts import safe_decimal
from storefront.contexts.erp.domain.gateway import ErpGateway
from storefront.contexts.erp.infrastructure.client import ErpRequestGateway, GatewayState
from storefront.contexts.erp.infrastructure.ecount_gateway import EcountErpGateway
from storefront.contexts.erp.infrastructure.session_manager import ErpCredentials
from storefront.contexts.erp.infrastructure.simulator.deterministic_erp import DeterministicErpTransport
from storefront.contexts.erp.infrastructure.transport import ErpTransport, UrllibTransport
from storefront.contexts.orders.application.order_sync_service import OrderSyncService
from storefront.contexts.orders.infrastructure.order_repository import OrderRepository


_LOGGER = logging.getLogger("storefront")

SUPPORTED_MODES = ("ecount", "simulator")


@dataclass
class ErpRuntime:
    mode: str
    state: GatewayState
    requests: ErpRequestGateway
    gateway: ErpGateway
    resolver: ProductMappingResolver
    catalog: CatalogService
    submitter: SalesOrderSubmitter
    orders: OrderSyncService

    def status(self) -> dict:
        payload = {"mode": self.mode}
        payload.update(self.state.snapshot())
        payload["catalog_cache"] = self.catalog.cache_status()
        payload["product_mapping"] = self.resolver.diagnostics()
        return payload


def _int_config(config: Mapping[str, Any], key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def _float_config(config: Mapping[str, Any], key: str, default: float, min_value: float, max_value: float) -> float:
    try:
        value = float(config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def _str_config(config: Mapping[str, Any], key: str, default: str = "") -> str:
    return str(config.get(key) or default).strip()


def _resolve_mode(config: Mapping[str, Any]) -> str:
    mode = _str_config(config, "ERP_MODE", "simulator").lower()
    if mode not in SUPPORTED_MODES:
        raise RuntimeError(f"Unsupported ERP_MODE: {mode}")
    return mode


def _credentials(config: Mapping[str, Any], mode: str) -> ErpCredentials:
    simulator = mode == "simulator"
    return ErpCredentials(
        company_code=_str_config(config, "ERP_COMPANY_CODE", "SIMULATOR" if simulator else ""),
        user_id=_str_config(config, "ERP_USER_ID", "simulator" if simulator else ""),
        api_cert_key=_str_config(config, "ERP_API_CERT_KEY", "simulator-key" if simulator else ""),
        zone=_str_config(config, "ERP_ZONE"),
        zone_discovery=bool(config.get("ERP_ZONE_DISCOVERY", True)),
        zone_url=_str_config(config, "ERP_ZONE_URL", "https://oapi.ecount.com/OAPI/V2/Zone"),
        base_url_template=_str_config(config, "ERP_BASE_URL_TEMPLATE", "https://oapi{zone}.ecount.com"),
    )


def _default_transport(config: Mapping[str, Any], mode: str) -> ErpTransport:
    if mode == "simulator":
        return DeterministicErpTransport(seed=_int_config(config, "ERP_SIMULATOR_SEED", 42, 0, 2**31 - 1))
    return UrllibTransport(
        timeout_seconds=_int_config(config, "ERP_TIMEOUT_SECONDS", 20, 1, 300),
        verify_ssl=bool(config.get("ERP_VERIFY_SSL", True)),
    )


def build_erp_runtime(
    config: Mapping[str, Any],
    *,
    transport: ErpTransport | None = None,
    product_source: ProductSource | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[float, float], float] | None = None,
) -> ErpRuntime:
    mode = _resolve_mode(config)
    credentials = _credentials(config, mode)
    transport = transport or _default_transport(config, mode)

    state = GatewayState.create(
        transport=transport,
        credentials=credentials,
        circuit_failure_threshold=_int_config(config, "ERP_CIRCUIT_FAILURE_THRESHOLD", 3, 1, 100),
        circuit_timeout_seconds=_float_config(config, "ERP_CIRCUIT_TIMEOUT_SECONDS", 30.0, 1.0, 3600.0),
        backoff_base_seconds=_float_config(config, "ERP_BACKOFF_BASE_SECONDS", 1.0, 0.0, 60.0),
        backoff_max_seconds=_float_config(config, "ERP_BACKOFF_MAX_SECONDS", 60.0, 1.0, 3600.0),
        backoff_jitter_ratio=_float_config(config, "ERP_BACKOFF_JITTER_RATIO", 0.3, 0.0, 1.0),
        lockout_max_errors=_int_config(config, "ERP_LOCKOUT_MAX_ERRORS", 8, 1, 1000),
        lockout_window_seconds=_float_config(config, "ERP_LOCKOUT_WINDOW_SECONDS", 3600.0, 60.0, 86_400.0),
        lockout_duration_seconds=_float_config(config, "ERP_LOCKOUT_DURATION_SECONDS", 2700.0, 1.0, 86_400.0),
        session_lifetime_seconds=_float_config(config, "ERP_SESSION_LIFETIME_SECONDS", 1800.0, 60.0, 86_400.0),
        session_safety_margin_seconds=_float_config(config, "ERP_SESSION_SAFETY_MARGIN_SECONDS", 300.0, 0.0, 3600.0),
        login_min_interval_seconds=_float_config(config, "ERP_LOGIN_MIN_INTERVAL_SECONDS", 30.0, 0.0, 3600.0),
        login_rate_limit_delay_seconds=_float_config(config, "ERP_LOGIN_RATE_LIMIT_DELAY_SECONDS", 60.0, 0.0, 3600.0),
        clock=clock,
        sleep=sleep,
        rng=rng,
    )
    requests = ErpRequestGateway(state, transport=transport, credentials=credentials, sleep=sleep)
    warehouse_code = _str_config(config, "ERP_WAREHOUSE_CODE")
    gateway = EcountErpGateway(requests, warehouse_code=warehouse_code)

    default_price = safe_decimal(config.get("PRODUCT_MAPPING_DEFAULT_PRICE"), Decimal("25000"))
    source = product_source or CsvProductSource(
        _str_config(config, "PRODUCT_MAPPING_PATH"),
        default_price=default_price,
    )
    resolver = ProductMappingResolver(source, default_price=default_price)
    catalog = CatalogService(
        gateway=gateway,
        resolver=resolver,
        cache=TtlCache(clock=clock),
        ttl_seconds=_int_config(config, "CATALOG_CACHE_TTL_SECONDS", 3600, 1, 86_400),
        low_stock_threshold=_int_config(config, "LOW_STOCK_THRESHOLD", 10, 0, 1_000_000),
        default_price=default_price,
    )
    submitter = SalesOrderSubmitter(
        gateway=gateway,
        resolver=resolver,
        invalidate_session=state.session.invalidate,
        customer_code=_str_config(config, "ERP_CUSTOMER_CODE"),
        customer_name=_str_config(config, "ERP_CUSTOMER_NAME", "Online Store Sales"),
        warehouse_code=warehouse_code,
    )
    return ErpRuntime(
        mode=mode,
        state=state,
        requests=requests,
        gateway=gateway,
        resolver=resolver,
        catalog=catalog,
        submitter=submitter,
        orders=OrderSyncService(repository=OrderRepository(), submitter=submitter),
    )


def init_erp_runtime(app: Flask, **kwargs: Any) -> ErpRuntime:
    runtime = build_erp_runtime(app.config, **kwargs)
    app.extensions["erp_runtime"] = runtime
    _LOGGER.info("erp_runtime_ready", extra={"mode": runtime.mode})
    return runtime


def get_erp_runtime(app: Flask | None = None) -> ErpRuntime:
    target = app or current_app
    runtime = target.extensions.get("erp_runtime")
    if runtime is None:
        raise RuntimeError("ERP runtime is not initialized for this app.")
    return runtime
