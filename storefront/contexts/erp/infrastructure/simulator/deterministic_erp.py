from __future__ import annotations

import hashlib
import json
import urllib.parse
from threading import Lock
from typing import Any, Iterable

from storefront.contexts.erp.infrastructure.transport import TransportResponse


DEFAULT_PRODUCT_CODES = (
    "PDL-001",
    "PDL-002",
    "HS-1001",
    "ABS-220",
    "LYOFIA-CRP",
    "00451",
    "SYR-5ML",
    "GLV-M",
)


def _json_response(payload: dict[str, Any], *, status: int = 200, cookies: list[str] | None = None) -> TransportResponse:
    return TransportResponse(
        status=status,
        content_type="application/json; charset=utf-8",
        body=json.dumps(payload, ensure_ascii=False),
        cookies=list(cookies or []),
    )


class DeterministicErpTransport:
    """In-process stand-in for the ERP speaking the same wire protocol.

    Quantities, session ids and document numbers are derived from ``seed`` so
    repeated runs produce identical answers.
    """

    def __init__(self, seed: int = 42, *, product_codes: Iterable[str] = DEFAULT_PRODUCT_CODES, zone: str = "SIM") -> None:
        self.seed = int(seed)
        self.zone = zone
        self._product_codes = [str(code) for code in product_codes]
        self._lock = Lock()
        self._sessions: set[str] = set()
        self._login_count = 0
        self.requests: list[tuple[str, dict]] = []

    def _digest(self, *parts: object) -> str:
        raw = ":".join(str(part) for part in (self.seed, *parts))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def _bucket(self, *parts: object) -> int:
        return int(self._digest(*parts)[:8], 16) % 100

    def quantity_for(self, product_code: str) -> int:
        return int(self._digest("qty", product_code)[:6], 16) % 120

    def post_json(self, url: str, payload: dict | None, *, headers: dict[str, str] | None = None) -> TransportResponse:
        body = dict(payload or {})
        parts = urllib.parse.urlsplit(url)
        path = parts.path
        query = urllib.parse.parse_qs(parts.query)
        with self._lock:
            self.requests.append((path, body))

        if path.endswith("/OAPI/V2/Zone"):
            return _json_response({"Status": "200", "Data": {"Zone": self.zone}})
        if path.endswith("/OAPI/V2/OAPILogin"):
            return self._login(body)

        token = (query.get("SESSION_ID") or [""])[0]
        with self._lock:
            authenticated = token in self._sessions
        if not authenticated:
            return _json_response({"Status": "401", "Error": {"Message": "Please login (session has not been authenticated)"}})

        if path.endswith("/InventoryBalance/GetListInventoryBalanceStatus"):
            rows = [self._inventory_row(code, body.get("WH_CD")) for code in self._product_codes]
            return _json_response({"Status": "200", "Data": {"TotalCnt": len(rows), "Datas": rows}})
        if path.endswith("/InventoryBalance/GetInventoryBalanceStatus"):
            code = str(body.get("PROD_CD") or "").strip()
            rows = [self._inventory_row(code, body.get("WH_CD"))] if code in self._product_codes else []
            return _json_response({"Status": "200", "Data": {"TotalCnt": len(rows), "Datas": rows}})
        if path.endswith("/Item/GetItemList"):
            rows = [{"PROD_CD": code, "PROD_DES": f"Simulated item {code}", "UNIT": "EA"} for code in self._product_codes]
            return _json_response({"Status": "200", "Data": {"TotalCnt": len(rows), "Datas": rows}})
        if path.endswith("/SaleOrder/SaveSaleOrder"):
            return self._save_sale_order(body)
        return _json_response({"Status": "404", "Error": {"Message": f"Unknown endpoint {path}"}}, status=404)

    def _login(self, body: dict) -> TransportResponse:
        if not str(body.get("COM_CODE") or "").strip() or not str(body.get("USER_ID") or "").strip():
            return _json_response({"Status": "401", "Error": {"Message": "Invalid login credentials"}})
        with self._lock:
            self._login_count += 1
            token = self._digest("session", self._login_count)[:32]
            self._sessions.add(token)
        return _json_response(
            {"Status": "200", "Data": {"Datas": {"SESSION_ID": token}}},
            cookies=[f"ECOUNT_SESSIONID={token}; Path=/; HttpOnly"],
        )

    def _inventory_row(self, code: str, warehouse_code: object) -> dict:
        return {"PROD_CD": code, "BAL_QTY": str(self.quantity_for(code)), "WH_CD": str(warehouse_code or "")}

    def _save_sale_order(self, body: dict) -> TransportResponse:
        entries = body.get("SaleOrderList") or []
        details = []
        doc_no = ""
        for entry in entries:
            row = (entry or {}).get("BulkDatas") or {}
            doc_no = doc_no or str(row.get("DOC_NO") or "")
            code = str(row.get("PROD_CD") or "").strip()
            if code in self._product_codes:
                details.append({"IsSuccess": True, "TotalError": "", "Errors": []})
            else:
                details.append(
                    {
                        "IsSuccess": False,
                        "TotalError": f"Item code [{code}] does not exist",
                        "Errors": [{"Message": f"Item code [{code}] does not exist"}],
                    }
                )
        fail_count = sum(1 for detail in details if not detail["IsSuccess"])
        data: dict[str, Any] = {
            "SuccessCnt": len(details) - fail_count,
            "FailCnt": fail_count,
            "ResultDetails": details,
        }
        if fail_count == 0 and self._bucket("slip", doc_no) < 90:
            data["SlipNos"] = [f"SIM-{int(self._digest('slip', doc_no)[:6], 16) % 1_000_000:06d}"]
        return _json_response({"Status": "200", "Data": data})
