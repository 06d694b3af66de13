from __future__ import annotations

import csv
import logging
from decimal import Decimal
from pathlib import Path
from typing import List, Protocol

from storefront.contexts.erp.domain.contracts import safe_decimal


_LOGGER = logging.getLogger("storefront")

HEADER_SCAN_ROWS = 5


class ProductSourceError(RuntimeError):
    pass


class ProductSource(Protocol):
    def load_all(self) -> List[dict]:
        ...


def _cell(row: List[str], idx: int | None) -> str:
    if idx is None or idx < 0 or idx >= len(row):
        return ""
    return str(row[idx] or "").strip()


def _find_column(cells: List[str], *predicates) -> int | None:
    for idx, cell in enumerate(cells):
        if any(predicate(cell) for predicate in predicates):
            return idx
    return None


def _detect_header(rows: List[List[str]]) -> tuple[int, dict[str, int | None]] | None:
    for row_index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cells = [str(cell or "").strip().lower() for cell in row]
        code_col = _find_column(
            cells,
            lambda cell: "item" in cell and "code" in cell,
            lambda cell: cell in {"itemcode", "code", "prod_cd"},
        )
        name_col = _find_column(
            cells,
            lambda cell: "item" in cell and "name" in cell,
            lambda cell: cell in {"itemname", "name", "prod_des"},
        )
        if code_col is None or name_col is None:
            continue
        unit_col = _find_column(cells, lambda cell: cell in {"uom", "unit"})
        price_col = _find_column(cells, lambda cell: "price" in cell or "sales" in cell)
        category_col = _find_column(cells, lambda cell: cell == "category")
        return row_index, {
            "code": code_col,
            "name": name_col,
            "unit": unit_col,
            "price": price_col,
            "category": category_col,
        }
    return None


class CsvProductSource:
    """Reads the product spreadsheet from its CSV export."""

    def __init__(self, path: str | Path, *, default_price: Decimal | str = Decimal("25000")) -> None:
        self._path = Path(path).expanduser()
        self._default_price = safe_decimal(default_price, Decimal("25000"))

    @property
    def path(self) -> Path:
        return self._path

    def _read_rows(self) -> List[List[str]]:
        if not self._path.exists():
            raise ProductSourceError(f"Product spreadsheet not found: {self._path}")
        try:
            with self._path.open("r", encoding="utf-8-sig", errors="ignore", newline="") as handle:
                sample = handle.read(4096)
                delimiter = ";" if sample.count(";") > sample.count(",") else ","
                handle.seek(0)
                return [row for row in csv.reader(handle, delimiter=delimiter) if row]
        except OSError as exc:
            raise ProductSourceError(f"Product spreadsheet unreadable: {exc}") from exc

    def load_all(self) -> List[dict]:
        rows = self._read_rows()
        header = _detect_header(rows)
        if header is None:
            raise ProductSourceError("Could not find a header row with item code and item name columns")
        header_index, columns = header

        products: List[dict] = []
        for row in rows[header_index + 1:]:
            code = _cell(row, columns["code"])
            name = _cell(row, columns["name"])
            if not code or not name:
                continue
            price = safe_decimal(_cell(row, columns["price"]), self._default_price)
            if price <= 0:
                price = self._default_price
            products.append(
                {
                    "code": code,
                    "name": name,
                    "price": price,
                    "unit": _cell(row, columns["unit"]) or "Standard",
                    "category": _cell(row, columns["category"]) or None,
                }
            )
        _LOGGER.info("product_spreadsheet_loaded", extra={"path": str(self._path), "rows": len(products)})
        return products
