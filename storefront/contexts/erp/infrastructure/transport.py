from __future__ import annotations

import http.client
import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Protocol


class ErpTransportError(RuntimeError):
    """The request never produced a usable HTTP response."""


@dataclass
class TransportResponse:
    status: int
    content_type: str = ""
    body: str = ""
    cookies: list[str] = field(default_factory=list)

    @property
    def is_json(self) -> bool:
        return "json" in self.content_type.lower()

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body)


class ErpTransport(Protocol):
    def post_json(
        self,
        url: str,
        payload: dict | None,
        *,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        ...


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: D401
        return None


class UrllibTransport:
    def __init__(self, *, timeout_seconds: float = 20.0, verify_ssl: bool = True) -> None:
        self._timeout = max(1.0, float(timeout_seconds))
        handlers: list[urllib.request.BaseHandler] = [_NoRedirectHandler()]
        if not verify_ssl:
            handlers.append(urllib.request.HTTPSHandler(context=ssl._create_unverified_context()))
        self._opener = urllib.request.build_opener(*handlers)

    def post_json(
        self,
        url: str,
        payload: dict | None,
        *,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        request_headers = {"Accept": "application/json", "Content-Type": "application/json"}
        request_headers.update(headers or {})
        data = json.dumps(payload or {}, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        request = urllib.request.Request(url, data=data, headers=request_headers, method="POST")

        try:
            with self._opener.open(request, timeout=self._timeout) as response:
                return TransportResponse(
                    status=int(response.status),
                    content_type=response.headers.get("Content-Type", ""),
                    body=response.read().decode("utf-8", errors="replace"),
                    cookies=response.headers.get_all("Set-Cookie") or [],
                )
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            return TransportResponse(
                status=int(exc.code),
                content_type=exc.headers.get("Content-Type", "") if exc.headers else "",
                body=body,
                cookies=(exc.headers.get_all("Set-Cookie") or []) if exc.headers else [],
            )
        except urllib.error.URLError as exc:
            raise ErpTransportError(f"ERP connection error: {exc.reason}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise ErpTransportError(f"ERP connection error: {exc}") from exc
