from __future__ import annotations

from typing import Any, Dict, Iterable

from storefront.contexts.erp.domain.gateway import (
    CATEGORY_AUTH,
    CATEGORY_RATE_LIMIT,
    CATEGORY_VALIDATION,
    ErpCircuitOpenError,
    ErpGatewayError,
    ErpLockoutError,
)
from storefront.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "status_invalid"
    default_http_status = 400
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "product_not_found"
    default_http_status = 404
    default_critical = False


class IntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "erp_temporarily_unavailable"
    default_http_status = 502
    default_critical = False


class RateLimitedError(IntegrationError):
    default_code = "erp_rate_limited"
    default_message_key = "erp_rate_limited"
    default_http_status = 429
    default_critical = False


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


class UnmappedProductError(ValidationError):
    """Order rejected before submission: some lines have no product mapping."""

    default_code = "unmapped_products"
    default_message_key = "unmapped_products"
    default_http_status = 422

    def __init__(self, unmapped_codes: Iterable[str]) -> None:
        self.unmapped_codes = [str(code) for code in unmapped_codes]
        super().__init__(
            details=f"Unmapped product codes: {', '.join(self.unmapped_codes)}",
            payload={"unmapped_codes": list(self.unmapped_codes)},
        )


class PartialRemoteValidationError(IntegrationError):
    """The ERP answered with success but rejected one or more lines."""

    default_code = "erp_partial_rejection"
    default_message_key = "erp_partial_rejection"
    default_http_status = 422

    def __init__(self, line_errors: Iterable[str], *, success_count: int = 0, fail_count: int = 0) -> None:
        self.line_errors = [str(item) for item in line_errors]
        self.success_count = int(success_count)
        self.fail_count = int(fail_count)
        super().__init__(
            details="; ".join(self.line_errors) or f"ERP rejected {self.fail_count} line(s)",
            payload={
                "line_errors": list(self.line_errors),
                "success_count": self.success_count,
                "fail_count": self.fail_count,
            },
        )


class ProductMappingUnavailableError(IntegrationError):
    default_code = "product_mapping_unavailable"
    default_message_key = "product_mapping_unavailable"
    default_http_status = 503


_ERP_CATEGORY_RESPONSES: dict[str, tuple[str, str, int]] = {
    CATEGORY_VALIDATION: ("erp_order_rejected", "erp_order_rejected", 422),
    CATEGORY_AUTH: ("erp_auth_failed", "erp_auth_failed", 502),
    CATEGORY_RATE_LIMIT: ("erp_rate_limited", "erp_rate_limited", 429),
}


def erp_failure_response(exc: ErpGatewayError) -> tuple[str, str, int]:
    """Return ``(code, message_key, http_status)`` for a gateway failure."""
    if isinstance(exc, ErpLockoutError):
        return ("erp_lockout_active", "erp_lockout_active", 429)
    if isinstance(exc, ErpCircuitOpenError):
        return ("erp_circuit_open", "erp_circuit_open", 429)
    return _ERP_CATEGORY_RESPONSES.get(
        exc.category,
        ("erp_temporarily_unavailable", "erp_temporarily_unavailable", 502),
    )


def _retry_payload(exc: ErpGatewayError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"category": exc.category}
    if exc.retry_after_seconds is not None:
        payload["retry_after_seconds"] = round(float(exc.retry_after_seconds), 2)
    return payload


class OrderSubmissionError(IntegrationError):
    """Categorized, caller-facing failure of one order submission."""

    default_code = "erp_temporarily_unavailable"

    def __init__(
        self,
        *,
        category: str,
        reason: str,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        self.category = category
        self.reason = reason
        self.retry_after_seconds = retry_after_seconds
        payload: Dict[str, Any] = {"category": category}
        if retry_after_seconds is not None:
            payload["retry_after_seconds"] = round(float(retry_after_seconds), 2)
        super().__init__(
            code=code,
            message_key=message_key or code,
            http_status=http_status,
            details=reason,
            payload=payload,
        )

    @classmethod
    def from_gateway_error(cls, exc: ErpGatewayError) -> "OrderSubmissionError":
        code, message_key, http_status = erp_failure_response(exc)
        return cls(
            category=exc.category,
            reason=str(exc),
            code=code,
            message_key=message_key,
            http_status=http_status,
            retry_after_seconds=exc.retry_after_seconds,
        )


def integration_error_for(exc: ErpGatewayError) -> IntegrationError:
    code, message_key, http_status = erp_failure_response(exc)
    error_cls = RateLimitedError if http_status == 429 else IntegrationError
    return error_cls(
        code=code,
        message_key=message_key,
        http_status=http_status,
        details=str(exc),
        payload=_retry_payload(exc),
    )
