from __future__ import annotations

import logging
from decimal import Decimal
from typing import List

from storefront.contexts.catalog.product_mapping import ProductMappingResolver, category_from_name, normalize_code
from storefront.contexts.catalog.ttl_cache import TtlCache
from storefront.contexts.erp.domain.contracts import ErpInventoryRecord
from storefront.contexts.erp.domain.gateway import ErpGateway


_LOGGER = logging.getLogger("storefront")

INVENTORY_CACHE_KEY = "inventory-snapshot"


class CatalogService:
    def __init__(
        self,
        *,
        gateway: ErpGateway,
        resolver: ProductMappingResolver,
        cache: TtlCache,
        ttl_seconds: float = 3600.0,
        low_stock_threshold: int = 10,
        default_price: Decimal = Decimal("25000"),
    ) -> None:
        self._gateway = gateway
        self._resolver = resolver
        self._cache = cache
        self._ttl_seconds = max(1.0, float(ttl_seconds))
        self._low_stock_threshold = max(0, int(low_stock_threshold))
        self._default_price = default_price

    def _present(self, records: List[ErpInventoryRecord], *, real_time: bool) -> List[dict]:
        self._resolver.ensure_loaded()
        base = [record.to_dict() for record in records]
        products = []
        for item in self._resolver.apply_names(base):
            quantity = int(item.get("quantity") or 0)
            code = item["product_code"]
            name = item.get("name") or f"Product {code}"
            products.append(
                {
                    "product_code": code,
                    "name": name,
                    "price": item.get("price") or str(self._default_price),
                    "unit": item.get("unit") or "Standard",
                    "category": item.get("category") or category_from_name(name),
                    "available_quantity": quantity,
                    "is_low_stock": quantity < self._low_stock_threshold,
                    "has_real_time_data": real_time,
                    "mapped": bool(item.get("mapped")),
                }
            )
        return products

    def get_catalog(self) -> dict:
        result = self._cache.lookup(INVENTORY_CACHE_KEY, self._ttl_seconds, self._gateway.fetch_inventory_snapshot)
        products = self._present(list(result.data), real_time=result.fresh)
        return {
            "products": products,
            "total": len(products),
            "has_real_time_data": result.fresh,
            "last_updated": result.fetched_at_iso,
        }

    def get_product(self, product_code: str) -> dict | None:
        wanted = normalize_code(product_code)
        for product in self.get_catalog()["products"]:
            if normalize_code(product["product_code"]) == wanted:
                return product
        return None

    def get_single_item_inventory(self, product_code: str) -> dict:
        code = str(product_code or "").strip()
        record = self._gateway.fetch_item_inventory(code) or ErpInventoryRecord(product_code=code)

        def _replace(records: list) -> list:
            wanted = normalize_code(code)
            kept = [existing for existing in records if normalize_code(existing.product_code) != wanted]
            kept.append(record)
            return kept

        if self._cache.update(INVENTORY_CACHE_KEY, _replace):
            _LOGGER.info("catalog_item_refreshed", extra={"product_code": code, "quantity": float(record.quantity)})
        return self._present([record], real_time=True)[0]

    def refresh_inventory(self) -> int:
        records = self._cache.refresh(INVENTORY_CACHE_KEY, self._gateway.fetch_inventory_snapshot)
        return len(records)

    def sync_item_list(self) -> int:
        items = self._gateway.fetch_item_list()
        return len(items)

    def cache_status(self) -> dict:
        status = self._cache.status(INVENTORY_CACHE_KEY, self._ttl_seconds)
        status["ttl_seconds"] = self._ttl_seconds
        return status

    def clear_cache(self) -> None:
        self._cache.clear(INVENTORY_CACHE_KEY)

    def mapping_diagnostics(self) -> dict:
        return self._resolver.diagnostics()

    def refresh_mapping(self) -> bool:
        return self._resolver.refresh()
