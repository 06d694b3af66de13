from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List

from storefront.contexts.erp.domain.contracts import safe_decimal
from storefront.errors import ValidationError


SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"


def generate_order_number(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"ORD-{moment.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def _invalid(details: str) -> ValidationError:
    return ValidationError(code="order_invalid", message_key="order_invalid", details=details)


@dataclass
class LocalOrderItem:
    product_code: str
    quantity: int
    name: str = ""
    unit_price: Decimal = Decimal("0")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_code": self.product_code,
            "name": self.name,
            "quantity": int(self.quantity),
            "unit_price": str(self.unit_price),
        }

    @staticmethod
    def from_payload(raw: Any) -> "LocalOrderItem":
        if not isinstance(raw, dict):
            raise _invalid("Order item must be an object")
        code = str(raw.get("product_code") or raw.get("productId") or "").strip()
        if not code:
            raise _invalid("Order item without product_code")
        try:
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError) as exc:
            raise _invalid(f"Invalid quantity for {code}") from exc
        if quantity <= 0:
            raise _invalid(f"Invalid quantity for {code}")
        price = safe_decimal(raw.get("unit_price", raw.get("price")))
        if price < 0:
            raise _invalid(f"Invalid price for {code}")
        return LocalOrderItem(
            product_code=code,
            quantity=quantity,
            name=str(raw.get("name") or "").strip(),
            unit_price=price,
        )

    @staticmethod
    def from_record(row: dict) -> "LocalOrderItem":
        return LocalOrderItem(
            product_code=str(row.get("product_code") or ""),
            quantity=int(row.get("quantity") or 0),
            name=str(row.get("name") or ""),
            unit_price=safe_decimal(row.get("unit_price")),
        )


@dataclass
class LocalOrder:
    order_number: str
    items: List[LocalOrderItem] = field(default_factory=list)
    id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    erp_sync_status: str = SYNC_PENDING
    erp_doc_number: str | None = None
    erp_io_date: str | None = None
    erp_sync_error: str | None = None
    erp_sync_attempts: int = 0
    created_at: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "items": [item.to_dict() for item in self.items],
            "total_amount": str(self.total_amount),
            "erp_sync_status": self.erp_sync_status,
            "erp_doc_number": self.erp_doc_number,
            "erp_io_date": self.erp_io_date,
            "erp_sync_error": self.erp_sync_error,
            "erp_sync_attempts": int(self.erp_sync_attempts),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_record(row: dict, item_rows: Iterable[dict]) -> "LocalOrder":
        created_at = row.get("created_at")
        return LocalOrder(
            id=int(row["id"]),
            order_number=str(row.get("order_number") or ""),
            items=[LocalOrderItem.from_record(item) for item in item_rows],
            customer_name=row.get("customer_name"),
            customer_email=row.get("customer_email"),
            erp_sync_status=str(row.get("erp_sync_status") or SYNC_PENDING),
            erp_doc_number=row.get("erp_doc_number"),
            erp_io_date=row.get("erp_io_date"),
            erp_sync_error=row.get("erp_sync_error"),
            erp_sync_attempts=int(row.get("erp_sync_attempts") or 0),
            created_at=str(created_at) if created_at is not None else None,
        )


def parse_order_items(raw_items: Any) -> List[LocalOrderItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise _invalid("Order must contain at least one item")
    return [LocalOrderItem.from_payload(raw) for raw in raw_items]
