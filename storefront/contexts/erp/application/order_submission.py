from __future__ import annotations

import logging
from typing import Callable, List

from storefront.contexts.catalog.product_mapping import ProductMappingResolver
from storefront.contexts.erp.domain.contracts import (
    ErpSalesOrderResultV1,
    ErpSalesOrderV1,
    OutgoingOrderLine,
    erp_date,
)
from storefront.contexts.erp.domain.gateway import ErpAuthError, ErpGateway, ErpGatewayError
from storefront.contexts.orders.domain import LocalOrder
from storefront.errors import OrderSubmissionError, ProductMappingUnavailableError, UnmappedProductError


_LOGGER = logging.getLogger("storefront")


class SalesOrderSubmitter:
    """Turns a local order into an ERP sales order, all lines or nothing."""

    def __init__(
        self,
        *,
        gateway: ErpGateway,
        resolver: ProductMappingResolver,
        invalidate_session: Callable[[], None],
        customer_code: str,
        customer_name: str,
        warehouse_code: str,
        io_date: Callable[[], str] = erp_date,
    ) -> None:
        self._gateway = gateway
        self._resolver = resolver
        self._invalidate_session = invalidate_session
        self._customer_code = customer_code
        self._customer_name = customer_name
        self._warehouse_code = warehouse_code
        self._io_date = io_date

    def build_sales_order(self, order: LocalOrder) -> ErpSalesOrderV1:
        if not self._resolver.ensure_loaded():
            raise ProductMappingUnavailableError(details="Product spreadsheet could not be loaded")

        lines: List[OutgoingOrderLine] = []
        unmapped: List[str] = []
        for item in order.items:
            entry = self._resolver.resolve(item.product_code)
            if entry is None:
                if item.product_code not in unmapped:
                    unmapped.append(item.product_code)
                continue
            lines.append(
                OutgoingOrderLine(
                    product_code=item.product_code,
                    resolved_code=entry.normalized_code,
                    name=entry.name,
                    quantity=int(item.quantity),
                    unit_price=item.unit_price if item.unit_price > 0 else entry.price,
                )
            )
        if unmapped:
            _LOGGER.warning(
                "order_submission_unmapped_products",
                extra={"order_number": order.order_number, "unmapped_codes": unmapped},
            )
            raise UnmappedProductError(unmapped)

        return ErpSalesOrderV1(
            order_number=order.order_number,
            io_date=self._io_date(),
            customer_code=self._customer_code,
            customer_name=self._customer_name,
            warehouse_code=self._warehouse_code,
            lines=lines,
        )

    def submit(self, order: LocalOrder) -> ErpSalesOrderResultV1:
        sales_order = self.build_sales_order(order)
        try:
            try:
                result = self._gateway.save_sales_order(sales_order)
            except ErpAuthError as exc:
                _LOGGER.info(
                    "order_submission_auth_retry",
                    extra={"order_number": order.order_number, "error": str(exc)},
                )
                self._invalidate_session()
                result = self._gateway.save_sales_order(sales_order)
        except ErpGatewayError as exc:
            _LOGGER.warning(
                "order_submission_failed",
                extra={"order_number": order.order_number, "category": exc.category, "error": str(exc)},
            )
            raise OrderSubmissionError.from_gateway_error(exc) from exc

        _LOGGER.info(
            "order_submission_succeeded",
            extra={
                "order_number": order.order_number,
                "remote_doc_id": result.remote_doc_id,
                "pending_document": result.pending_document,
                "lines": len(sales_order.lines),
            },
        )
        return result
