from __future__ import annotations

import logging
from typing import Callable, List

from storefront.contexts.erp.domain.contracts import (
    ErpInventoryRecord,
    ErpSalesOrderResultV1,
    ErpSalesOrderV1,
    erp_date,
)
from storefront.contexts.erp.domain.gateway import ErpGateway
from storefront.contexts.erp.infrastructure.client import ErpRequestGateway
from storefront.contexts.erp.infrastructure.mappers.ecount_order_mapper import (
    map_sales_order_response,
    validate_sales_order,
)


_LOGGER = logging.getLogger("storefront")

INVENTORY_LIST_ENDPOINT = "/OAPI/V2/InventoryBalance/GetListInventoryBalanceStatus"
INVENTORY_ITEM_ENDPOINT = "/OAPI/V2/InventoryBalance/GetInventoryBalanceStatus"
ITEM_LIST_ENDPOINT = "/OAPI/V2/Item/GetItemList"
SALES_ORDER_ENDPOINT = "/OAPI/V2/SaleOrder/SaveSaleOrder"

ITEM_LIST_PAGE_SIZE = 1000


class EcountErpGateway(ErpGateway):
    def __init__(
        self,
        requests: ErpRequestGateway,
        *,
        warehouse_code: str,
        base_date: Callable[[], str] = erp_date,
    ) -> None:
        self._requests = requests
        self._warehouse_code = str(warehouse_code or "").strip()
        self._base_date = base_date

    def fetch_inventory_snapshot(self) -> List[ErpInventoryRecord]:
        response = self._requests.execute(
            INVENTORY_LIST_ENDPOINT,
            {"BASE_DATE": self._base_date(), "WH_CD": self._warehouse_code, "PROD_CD": ""},
        )
        records = [ErpInventoryRecord.from_remote(row) for row in response.datas()]
        records = [record for record in records if record.product_code]
        _LOGGER.info("erp_inventory_snapshot_fetched", extra={"records": len(records)})
        return records

    def fetch_item_inventory(self, product_code: str) -> ErpInventoryRecord | None:
        code = str(product_code or "").strip()
        response = self._requests.execute(
            INVENTORY_ITEM_ENDPOINT,
            {"BASE_DATE": self._base_date(), "WH_CD": self._warehouse_code, "PROD_CD": code},
        )
        rows = response.datas()
        if not rows:
            return None
        record = ErpInventoryRecord.from_remote(rows[0])
        if not record.product_code:
            record.product_code = code
        return record

    def fetch_item_list(self) -> List[dict]:
        response = self._requests.execute(
            ITEM_LIST_ENDPOINT,
            {
                "Page": "1",
                "PageSize": str(ITEM_LIST_PAGE_SIZE),
                "IsIncludeDel": "false",
                "WH_CD": self._warehouse_code,
            },
        )
        items = response.datas()
        _LOGGER.info("erp_item_list_fetched", extra={"items": len(items)})
        return items

    def save_sales_order(self, sales_order: ErpSalesOrderV1) -> ErpSalesOrderResultV1:
        validate_sales_order(sales_order)
        response = self._requests.execute(SALES_ORDER_ENDPOINT, sales_order.to_remote_payload())
        return map_sales_order_response(response, sales_order)
