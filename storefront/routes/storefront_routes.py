from __future__ import annotations

from typing import List

from flask import Blueprint, current_app, jsonify, request

from storefront.contexts.erp.interfaces.runtime import ErpRuntime, get_erp_runtime
from storefront.contexts.erp.interfaces.scheduler import get_reconciliation_scheduler
from storefront.contexts.orders.domain import LocalOrderItem, parse_order_items
from storefront.contexts.orders.infrastructure.order_repository import OrderRepository
from storefront.db import get_db
from storefront.errors import NotFoundError, RateLimitedError
from storefront.ui_strings import error_message, success_message, warning_message


storefront_bp = Blueprint("storefront", __name__)

_ORDER_REPOSITORY = OrderRepository()


def _limit_arg(default: int = 100, maximum: int = 500) -> int:
    try:
        value = int(request.args.get("limit", default))
    except (TypeError, ValueError):
        value = default
    return max(1, min(value, maximum))


def _fill_from_mapping(runtime: ErpRuntime, items: List[LocalOrderItem]) -> List[LocalOrderItem]:
    if not runtime.resolver.ensure_loaded():
        return items
    for item in items:
        entry = runtime.resolver.resolve(item.product_code)
        if entry is None:
            continue
        if not item.name:
            item.name = entry.name
        if item.unit_price <= 0:
            item.unit_price = entry.price
    return items


@storefront_bp.route("/api/products", methods=["GET"])
def list_products():
    return jsonify(get_erp_runtime().catalog.get_catalog())


@storefront_bp.route("/api/products/<string:product_code>", methods=["GET"])
def get_product(product_code: str):
    runtime = get_erp_runtime()
    if request.args.get("live") in {"1", "true"}:
        return jsonify(runtime.catalog.get_single_item_inventory(product_code))
    product = runtime.catalog.get_product(product_code)
    if product is None:
        raise NotFoundError(code="product_not_found", message_key="product_not_found", details=product_code)
    return jsonify(product)


@storefront_bp.route("/api/orders", methods=["POST"])
def create_order():
    payload = request.get_json(silent=True) or {}
    runtime = get_erp_runtime()
    items = _fill_from_mapping(runtime, parse_order_items(payload.get("items")))
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}

    outcome = runtime.orders.place_order(
        get_db(),
        items,
        customer_name=str(customer.get("name") or payload.get("customer_name") or "").strip() or None,
        customer_email=str(customer.get("email") or payload.get("customer_email") or "").strip() or None,
    )
    body = outcome.to_dict()
    if outcome.synced:
        key = "erp_pending_document" if outcome.result and outcome.result.pending_document else "erp_synced"
        body["message"] = success_message(key)
    else:
        body["message"] = success_message("order_created")
        body["warning"] = warning_message("erp_sync_failed")
        body["error_message"] = error_message(outcome.error.message_key)
        body.update(outcome.error.payload)
    return jsonify(body), 201


@storefront_bp.route("/api/orders/<int:order_id>", methods=["GET"])
def get_order(order_id: int):
    order = _ORDER_REPOSITORY.get_order(get_db(), order_id)
    if order is None:
        raise NotFoundError(code="order_not_found", message_key="order_not_found", details=str(order_id))
    return jsonify(order.to_dict())


@storefront_bp.route("/api/orders/failed", methods=["GET"])
def list_failed_orders():
    orders = _ORDER_REPOSITORY.get_failed_orders(get_db(), limit=_limit_arg())
    return jsonify({"orders": [order.to_dict() for order in orders], "total": len(orders)})


@storefront_bp.route("/api/admin/erp/status", methods=["GET"])
def erp_status():
    return jsonify(get_erp_runtime().status())


@storefront_bp.route("/api/admin/erp/cache/clear", methods=["POST"])
def clear_catalog_cache():
    runtime = get_erp_runtime()
    runtime.catalog.clear_cache()
    return jsonify({"cleared": True, "catalog_cache": runtime.catalog.cache_status()})


@storefront_bp.route("/api/admin/erp/mapping/refresh", methods=["POST"])
def refresh_product_mapping():
    runtime = get_erp_runtime()
    loaded = runtime.catalog.refresh_mapping()
    return jsonify({"loaded": loaded, "product_mapping": runtime.catalog.mapping_diagnostics()}), (200 if loaded else 503)


@storefront_bp.route("/api/admin/erp/reconcile", methods=["POST"])
def reconcile_now():
    summary = get_reconciliation_scheduler(current_app).run_once()
    if summary.get("reason") == "rate_window":
        raise RateLimitedError(
            code="erp_rate_limited",
            message_key="erp_rate_limited",
            details="Reconciliation rate window has not elapsed",
            payload={"retry_after_seconds": summary.get("retry_after_seconds")},
        )
    return jsonify(summary)
