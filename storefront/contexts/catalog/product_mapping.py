from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List

from storefront.contexts.catalog.spreadsheet_source import ProductSource, ProductSourceError
from storefront.contexts.erp.domain.contracts import safe_decimal


_LOGGER = logging.getLogger("storefront")

MATCH_DIRECT = "direct"
MATCH_NO_LETTER_SUFFIX = "no_letter_suffix"
MATCH_NO_PACK_SUFFIX = "no_pack_suffix"
MATCH_DIGITS_ONLY = "digits_only"
MATCH_RULES = (MATCH_DIRECT, MATCH_NO_LETTER_SUFFIX, MATCH_NO_PACK_SUFFIX, MATCH_DIGITS_ONLY)

DEFAULT_CATEGORY = "Medical Supplies"
_CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("sanitizer", "disinfect"), "Sanitizers & Disinfectants"),
    (("acid", "chemical"), "Laboratory Chemicals"),
    (("test", "kit"), "Test Kits"),
    (("syringe", "needle"), "Medical Devices"),
    (("glove", "mask"), "PPE & Safety"),
    (("tablet", "capsule"), "Pharmaceuticals"),
    (("bandage", "cotton"), "Wound Care"),
)

_SEPARATORS = re.compile(r"[-\s]+")
_LEADING_ZEROS = re.compile(r"^0+")
_LETTER_SUFFIX = re.compile(r"[A-Z]+$")
_PACK_SUFFIX = re.compile(r"\d+[A-Z]+$")
_NON_DIGITS = re.compile(r"\D")

_SAMPLE_SIZE = 10
_DIGITS_ONLY_MIN_LENGTH = 4


def normalize_code(code: object | None) -> str:
    """Canonical key: trimmed, no hyphens or spaces, no leading zeros, upper case."""
    if code is None:
        return ""
    value = _SEPARATORS.sub("", str(code).strip())
    return _LEADING_ZEROS.sub("", value).upper()


def category_from_name(name: str | None) -> str:
    lowered = str(name or "").lower()
    for keywords, category in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


@dataclass(frozen=True)
class MappingEntry:
    normalized_code: str
    original_code: str
    name: str
    price: Decimal
    unit: str
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalized_code": self.normalized_code,
            "original_code": self.original_code,
            "name": self.name,
            "price": str(self.price),
            "unit": self.unit,
            "category": self.category,
        }


@dataclass(frozen=True)
class MappingMatch:
    entry: MappingEntry
    rule: str


class ProductMappingResolver:
    """Lazily loaded code -> name/price map built from the product spreadsheet.

    ``loaded`` only turns true after a successful load, so a failed load is
    retried on the next ``ensure_loaded`` call.
    """

    def __init__(self, source: ProductSource, *, default_price: Decimal | str = Decimal("25000")) -> None:
        self._source = source
        self._default_price = safe_decimal(default_price, Decimal("25000"))
        self._load_lock = Lock()
        self._state_lock = Lock()
        self._entries: Dict[str, MappingEntry] = {}
        self._by_digits: Dict[str, List[str]] = {}
        self._loaded = False
        self._last_error: str | None = None
        self._rule_counts: Dict[str, int] = {}
        self._unmatched: List[str] = []
        self._applied_total = 0

    @property
    def loaded(self) -> bool:
        with self._state_lock:
            return self._loaded

    def ensure_loaded(self) -> bool:
        if self.loaded:
            return True
        with self._load_lock:
            if self.loaded:
                return True
            return self._load()

    def refresh(self) -> bool:
        with self._load_lock:
            return self._load()

    def _load(self) -> bool:
        try:
            rows = self._source.load_all()
        except ProductSourceError as exc:
            with self._state_lock:
                self._last_error = str(exc)
            _LOGGER.warning("product_mapping_load_failed", extra={"error": str(exc)})
            return False

        entries: Dict[str, MappingEntry] = {}
        for row in rows:
            original = str(row.get("code") or "").strip()
            normalized = normalize_code(original)
            name = str(row.get("name") or "").strip()
            if not normalized or not name:
                continue
            price = safe_decimal(row.get("price"), self._default_price)
            entries[normalized] = MappingEntry(
                normalized_code=normalized,
                original_code=original,
                name=name,
                price=price if price > 0 else self._default_price,
                unit=str(row.get("unit") or "").strip() or "Standard",
                category=str(row.get("category") or "").strip() or category_from_name(name),
            )

        by_digits: Dict[str, List[str]] = {}
        for key in entries:
            by_digits.setdefault(_NON_DIGITS.sub("", key), []).append(key)

        with self._state_lock:
            self._entries = entries
            self._by_digits = by_digits
            self._loaded = True
            self._last_error = None
        _LOGGER.info("product_mapping_loaded", extra={"entries": len(entries)})
        return True

    def resolve(self, code: object | None) -> MappingEntry | None:
        """Strict lookup by normalized code; used for order submission."""
        normalized = normalize_code(code)
        if not normalized:
            return None
        with self._state_lock:
            return self._entries.get(normalized)

    def match(self, code: object | None) -> MappingMatch | None:
        """Lookup with the suffix and digits-only fallbacks; catalog display only."""
        normalized = normalize_code(code)
        if not normalized:
            return None
        with self._state_lock:
            entries = self._entries
            by_digits = self._by_digits

        entry = entries.get(normalized)
        if entry is not None:
            return MappingMatch(entry, MATCH_DIRECT)

        without_letters = _LETTER_SUFFIX.sub("", normalized)
        if without_letters != normalized:
            entry = entries.get(without_letters)
            if entry is not None:
                return MappingMatch(entry, MATCH_NO_LETTER_SUFFIX)

        without_pack = _PACK_SUFFIX.sub("", normalized)
        if without_pack != normalized and without_pack != without_letters:
            entry = entries.get(without_pack)
            if entry is not None:
                return MappingMatch(entry, MATCH_NO_PACK_SUFFIX)

        digits = _NON_DIGITS.sub("", normalized)
        if digits != normalized and len(digits) >= _DIGITS_ONLY_MIN_LENGTH:
            candidates = by_digits.get(digits) or []
            if len(candidates) == 1:
                return MappingMatch(entries[candidates[0]], MATCH_DIGITS_ONLY)
        return None

    def apply_names(self, products: List[dict]) -> List[dict]:
        """Return copies of ``products`` enriched with mapped name, price, unit and category."""
        rule_counts = {rule: 0 for rule in MATCH_RULES}
        unmatched: List[str] = []
        enriched: List[dict] = []
        for product in products:
            code = str(product.get("product_code") or "").strip()
            found = self.match(code)
            item = dict(product)
            if found is None:
                unmatched.append(code)
                item["mapped"] = False
                item["match_rule"] = None
                enriched.append(item)
                continue
            rule_counts[found.rule] += 1
            item.update(
                {
                    "name": found.entry.name,
                    "price": str(found.entry.price),
                    "unit": found.entry.unit,
                    "category": found.entry.category,
                    "mapped": True,
                    "match_rule": found.rule,
                }
            )
            enriched.append(item)

        with self._state_lock:
            self._rule_counts = rule_counts
            self._unmatched = unmatched
            self._applied_total = len(products)
        _LOGGER.info(
            "product_mapping_applied",
            extra={
                "products": len(products),
                "matched": len(products) - len(unmatched),
                "unmatched": len(unmatched),
                "rules": rule_counts,
            },
        )
        return enriched

    def diagnostics(self) -> dict:
        with self._state_lock:
            return {
                "loaded": self._loaded,
                "total_mapped": len(self._entries),
                "last_error": self._last_error,
                "last_applied_total": self._applied_total,
                "match_rules": dict(self._rule_counts),
                "unmatched_count": len(self._unmatched),
                "sample_unmatched": [
                    {"original": code, "normalized": normalize_code(code)}
                    for code in self._unmatched[:_SAMPLE_SIZE]
                ],
                "sample_mapped_codes": list(self._entries)[:_SAMPLE_SIZE],
            }
