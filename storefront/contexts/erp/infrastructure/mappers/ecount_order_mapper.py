from __future__ import annotations

from typing import Any, List

from storefront.contexts.erp.domain.contracts import ErpResponse, ErpSalesOrderResultV1, ErpSalesOrderV1
from storefront.errors import PartialRemoteValidationError, ValidationError


PENDING_DOCUMENT_PREFIX = "PENDING-"


def _int_value(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return 0


def _is_false(value: Any) -> bool:
    if isinstance(value, bool):
        return not value
    return str(value or "").strip().lower() in {"false", "0", "n", "no"}


def validate_sales_order(sales_order: ErpSalesOrderV1) -> None:
    if not sales_order.lines:
        raise ValidationError(code="order_invalid", message_key="order_invalid", details="Order has no lines")
    for line in sales_order.lines:
        if int(line.quantity) <= 0 or line.unit_price < 0:
            raise ValidationError(
                code="order_invalid",
                message_key="order_invalid",
                details=f"Invalid quantity or price for {line.product_code}",
            )


def extract_document_id(data: dict[str, Any]) -> str | None:
    slip_nos = data.get("SlipNos")
    if isinstance(slip_nos, list):
        for slip_no in slip_nos:
            value = str(slip_no or "").strip()
            if value:
                return value
    elif slip_nos:
        value = str(slip_nos).strip()
        if value:
            return value
    for key in ("SlipNo", "DOC_NO"):
        value = str(data.get(key) or "").strip()
        if value:
            return value
    return None


def _line_errors(details: Any) -> List[str]:
    if not isinstance(details, list):
        return []
    messages: List[str] = []
    for index, detail in enumerate(details, start=1):
        if not isinstance(detail, dict) or not _is_false(detail.get("IsSuccess")):
            continue
        message = str(detail.get("TotalError") or "").strip()
        if not message:
            errors = detail.get("Errors")
            if isinstance(errors, list):
                message = "; ".join(
                    str(item.get("Message") or "").strip()
                    for item in errors
                    if isinstance(item, dict) and str(item.get("Message") or "").strip()
                )
        messages.append(f"line {index}: {message or 'rejected'}")
    return messages


def map_sales_order_response(response: ErpResponse, sales_order: ErpSalesOrderV1) -> ErpSalesOrderResultV1:
    data = response.data if isinstance(response.data, dict) else {}
    success_count = _int_value(data.get("SuccessCnt"))
    fail_count = _int_value(data.get("FailCnt"))
    line_errors = _line_errors(data.get("ResultDetails"))
    if fail_count > 0 or line_errors:
        raise PartialRemoteValidationError(line_errors, success_count=success_count, fail_count=fail_count)

    document_id = extract_document_id(data)
    pending = document_id is None
    return ErpSalesOrderResultV1(
        order_number=sales_order.order_number,
        remote_doc_id=document_id or f"{PENDING_DOCUMENT_PREFIX}{sales_order.order_number}",
        remote_date=sales_order.io_date,
        success_count=success_count,
        fail_count=fail_count,
        pending_document=pending,
    )
