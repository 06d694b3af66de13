from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List

from storefront.contexts.orders.domain import (
    SYNC_FAILED,
    SYNC_PENDING,
    SYNC_SYNCED,
    LocalOrder,
    LocalOrderItem,
    generate_order_number,
)


_VALID_SYNC_STATUSES = {SYNC_PENDING, SYNC_SYNCED, SYNC_FAILED}
_MAX_ERROR_LENGTH = 1000


class OrderRepository:
    def create_order(
        self,
        db,
        items: Iterable[LocalOrderItem],
        *,
        customer_name: str | None = None,
        customer_email: str | None = None,
        order_number: str | None = None,
    ) -> LocalOrder:
        lines = list(items)
        number = order_number or generate_order_number()
        total = sum((item.line_total for item in lines), Decimal("0"))
        cursor = db.execute(
            """
            INSERT INTO orders (order_number, customer_name, customer_email, total_amount, erp_sync_status)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (number, customer_name, customer_email, str(total), SYNC_PENDING),
        )
        row = cursor.fetchone()
        order_id = int(row["id"] if isinstance(row, dict) else row[0])
        for item in lines:
            db.execute(
                """
                INSERT INTO order_items (order_id, product_code, name, quantity, unit_price)
                VALUES (?, ?, ?, ?, ?)
                """,
                (order_id, item.product_code, item.name, int(item.quantity), str(item.unit_price)),
            )
        db.commit()
        order = self.get_order(db, order_id)
        if order is None:
            raise RuntimeError(f"Order {order_id} vanished after insert")
        return order

    def get_order(self, db, order_id: int) -> LocalOrder | None:
        row = db.execute("SELECT * FROM orders WHERE id = ? LIMIT 1", (int(order_id),)).fetchone()
        if row is None:
            return None
        return LocalOrder.from_record(dict(row), self._items_for(db, int(order_id)))

    def get_failed_orders(self, db, *, limit: int = 100) -> List[LocalOrder]:
        rows = db.execute(
            """
            SELECT *
            FROM orders
            WHERE erp_sync_status = ?
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (SYNC_FAILED, int(limit)),
        ).fetchall()
        return [LocalOrder.from_record(dict(row), self._items_for(db, int(row["id"]))) for row in rows]

    def list_orders(self, db, *, limit: int = 100) -> List[LocalOrder]:
        rows = db.execute(
            """
            SELECT *
            FROM orders
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
        return [LocalOrder.from_record(dict(row), self._items_for(db, int(row["id"]))) for row in rows]

    def update_order_sync_status(
        self,
        db,
        order_id: int,
        status: str,
        *,
        doc_no: str | None = None,
        io_date: str | None = None,
        error: str | None = None,
    ) -> None:
        if status not in _VALID_SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}")
        error_text = (str(error)[:_MAX_ERROR_LENGTH] if error else None) if status == SYNC_FAILED else None
        db.execute(
            """
            UPDATE orders
            SET erp_sync_status = ?,
                erp_doc_number = COALESCE(?, erp_doc_number),
                erp_io_date = COALESCE(?, erp_io_date),
                erp_sync_error = ?,
                erp_sync_attempts = erp_sync_attempts + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (status, doc_no, io_date, error_text, int(order_id)),
        )
        db.commit()

    @staticmethod
    def _items_for(db, order_id: int) -> List[dict]:
        rows = db.execute(
            """
            SELECT product_code, name, quantity, unit_price
            FROM order_items
            WHERE order_id = ?
            ORDER BY id ASC
            """,
            (order_id,),
        ).fetchall()
        return [dict(row) for row in rows]
