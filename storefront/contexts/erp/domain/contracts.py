from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


def _iso_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def erp_date(value: datetime | None = None) -> str:
    moment = value or datetime.now(timezone.utc)
    return moment.strftime("%Y%m%d")


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def safe_decimal(value: object | None, default: Decimal = Decimal("0")) -> Decimal:
    if value is None or value == "":
        return default
    try:
        parsed = Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return default
    if not parsed.is_finite():
        return default
    return parsed


def _decimal_text(value: Decimal) -> str:
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal("1")))
    return format(normalized, "f")


@dataclass
class ErpSession:
    token: str
    expires_at: float
    zone: str
    auth_cookies: str = ""

    def is_valid(self, now: float) -> bool:
        return bool(self.token) and now < self.expires_at

    def masked_token(self) -> str:
        return f"{self.token[:8]}..." if self.token else ""


@dataclass
class ErpResponse:
    status: str
    data: Any = None
    error_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "200"

    def datas(self) -> list[dict]:
        data = self.data if isinstance(self.data, dict) else {}
        rows = data.get("Datas") if isinstance(data, dict) else None
        if isinstance(rows, list):
            return [row for row in rows if isinstance(row, dict)]
        return []

    @staticmethod
    def from_payload(payload: Any) -> "ErpResponse":
        data = dict(payload or {}) if isinstance(payload, dict) else {}
        error = data.get("Error")
        message = None
        if isinstance(error, dict):
            message = _safe_str(error.get("Message"))
        elif error:
            message = _safe_str(error)
        return ErpResponse(
            status=str(data.get("Status") or "").strip(),
            data=data.get("Data"),
            error_message=message,
            raw=data,
        )


@dataclass
class ErpInventoryRecord:
    product_code: str
    quantity: Decimal = Decimal("0")
    warehouse_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_code": self.product_code,
            "quantity": float(self.quantity),
            "warehouse_code": self.warehouse_code,
        }

    @staticmethod
    def from_remote(row: dict[str, Any]) -> "ErpInventoryRecord":
        return ErpInventoryRecord(
            product_code=str(row.get("PROD_CD") or "").strip(),
            quantity=safe_decimal(row.get("BAL_QTY")),
            warehouse_code=_safe_str(row.get("WH_CD")),
        )


@dataclass
class OutgoingOrderLine:
    product_code: str
    resolved_code: str
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def supply_amount(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_code": self.product_code,
            "resolved_code": self.resolved_code,
            "name": self.name,
            "quantity": int(self.quantity),
            "unit_price": _decimal_text(self.unit_price),
        }


@dataclass
class ErpSalesOrderV1:
    order_number: str
    io_date: str
    customer_code: str
    customer_name: str
    warehouse_code: str
    lines: list[OutgoingOrderLine] = field(default_factory=list)
    upload_serial: str = "1"

    def to_remote_payload(self) -> dict[str, Any]:
        bulk_rows = []
        for line in self.lines:
            bulk_rows.append(
                {
                    "BulkDatas": {
                        "IO_DATE": self.io_date,
                        "UPLOAD_SER_NO": self.upload_serial,
                        "CUST": self.customer_code,
                        "CUST_DES": self.customer_name,
                        "WH_CD": self.warehouse_code,
                        "DOC_NO": self.order_number,
                        "U_MEMO1": f"Web Order: {self.order_number}",
                        "PROD_CD": line.product_code,
                        "PROD_DES": line.name,
                        "QTY": str(int(line.quantity)),
                        "PRICE": _decimal_text(line.unit_price),
                        "SUPPLY_AMT": _decimal_text(line.supply_amount),
                        "REMARKS": f"Online Store - Order: {self.order_number}",
                    }
                }
            )
        return {"SaleOrderList": bulk_rows}


@dataclass
class ErpSalesOrderResultV1:
    order_number: str
    remote_doc_id: str
    remote_date: str
    success_count: int = 0
    fail_count: int = 0
    pending_document: bool = False
    occurred_at: str = field(default_factory=_iso_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "remote_doc_id": self.remote_doc_id,
            "remote_date": self.remote_date,
            "success_count": int(self.success_count),
            "fail_count": int(self.fail_count),
            "pending_document": bool(self.pending_document),
            "occurred_at": self.occurred_at,
        }
