from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from storefront.contexts.erp.application.order_submission import SalesOrderSubmitter
from storefront.contexts.erp.domain.contracts import ErpSalesOrderResultV1
from storefront.contexts.orders.domain import SYNC_FAILED, SYNC_SYNCED, LocalOrder, LocalOrderItem
from storefront.contexts.orders.infrastructure.order_repository import OrderRepository
from storefront.errors import AppError


_LOGGER = logging.getLogger("storefront")

_BATCH_STOPPING_CODES = {"erp_lockout_active", "erp_circuit_open"}


@dataclass
class OrderSyncOutcome:
    order: LocalOrder
    synced: bool
    result: ErpSalesOrderResultV1 | None = None
    error: AppError | None = None

    @property
    def stops_batch(self) -> bool:
        return self.error is not None and self.error.code in _BATCH_STOPPING_CODES

    def to_dict(self) -> dict:
        payload = {"order": self.order.to_dict(), "synced": self.synced}
        if self.result is not None:
            payload["erp"] = self.result.to_dict()
        if self.error is not None:
            payload["error"] = self.error.code
            payload["error_details"] = self.error.details
        return payload


class OrderSyncService:
    """Keeps the local order store in step with ERP submissions."""

    def __init__(self, *, repository: OrderRepository, submitter: SalesOrderSubmitter) -> None:
        self._repository = repository
        self._submitter = submitter

    def place_order(
        self,
        db,
        items: Iterable[LocalOrderItem],
        *,
        customer_name: str | None = None,
        customer_email: str | None = None,
    ) -> OrderSyncOutcome:
        order = self._repository.create_order(
            db,
            items,
            customer_name=customer_name,
            customer_email=customer_email,
        )
        _LOGGER.info("order_created", extra={"order_number": order.order_number, "order_id": order.id})
        return self.sync(db, order)

    def sync(self, db, order: LocalOrder) -> OrderSyncOutcome:
        if order.id is None:
            raise ValueError("Order must be persisted before it is synced")
        try:
            result = self._submitter.submit(order)
        except AppError as exc:
            self._repository.update_order_sync_status(
                db,
                order.id,
                SYNC_FAILED,
                error=exc.details or exc.code,
            )
            return OrderSyncOutcome(order=self._reload(db, order), synced=False, error=exc)

        self._repository.update_order_sync_status(
            db,
            order.id,
            SYNC_SYNCED,
            doc_no=result.remote_doc_id,
            io_date=result.remote_date,
        )
        return OrderSyncOutcome(order=self._reload(db, order), synced=True, result=result)

    def failed_orders(self, db, *, limit: int = 100) -> list[LocalOrder]:
        return self._repository.get_failed_orders(db, limit=limit)

    def _reload(self, db, order: LocalOrder) -> LocalOrder:
        return self._repository.get_order(db, int(order.id)) or order
