from __future__ import annotations

from typing import Dict


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "The operation could not be completed.",
        "action_invalid": "This action is not allowed right now.",
        "status_invalid": "The request data is invalid.",
        "order_invalid": "The order is incomplete or contains invalid items.",
        "order_not_found": "Order not found.",
        "product_not_found": "Product not found.",
        "unmapped_products": "Some products in the order are not available for ERP submission.",
        "product_mapping_unavailable": "The product catalog reference could not be loaded. Try again shortly.",
        "erp_temporarily_unavailable": "The ERP is temporarily unavailable. Try again later.",
        "erp_order_rejected": "The ERP rejected the order data.",
        "erp_partial_rejection": "The ERP rejected some order lines; the order was not accepted.",
        "erp_auth_failed": "The ERP session could not be established.",
        "erp_rate_limited": "The ERP is limiting requests. Try again in a few minutes.",
        "erp_circuit_open": "ERP calls are paused after repeated failures.",
        "erp_lockout_active": "ERP calls are paused to protect the integration account.",
        "catalog_unavailable": "The product catalog is temporarily unavailable.",
    },
    "success": {
        "erp_synced": "Order submitted to the ERP.",
        "erp_pending_document": "Order accepted by the ERP; the document number is pending.",
        "order_created": "Order created.",
    },
    "warning": {
        "erp_sync_failed": "Order created locally but failed to sync with the ERP.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    bucket = MESSAGES.get(category) or {}
    value = bucket.get(key)
    if value:
        return value
    return default if default is not None else key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)
