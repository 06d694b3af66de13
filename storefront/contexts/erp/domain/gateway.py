from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from storefront.contexts.erp.domain.contracts import ErpInventoryRecord, ErpSalesOrderV1, ErpSalesOrderResultV1


CATEGORY_NETWORK = "network"
CATEGORY_AUTH = "auth"
CATEGORY_VALIDATION = "validation"
CATEGORY_RATE_LIMIT = "rate_limit"
CATEGORY_CRITICAL = "critical"

ERROR_CATEGORIES = (
    CATEGORY_NETWORK,
    CATEGORY_AUTH,
    CATEGORY_VALIDATION,
    CATEGORY_RATE_LIMIT,
    CATEGORY_CRITICAL,
)


class ErpGatewayError(RuntimeError):
    default_category = CATEGORY_CRITICAL

    def __init__(
        self,
        message: str,
        *,
        category: str | None = None,
        code: str | None = None,
        http_status: int | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.category = str(category or self.default_category)
        self.code = str(code or "").strip() or None
        self.http_status = http_status
        self.retry_after_seconds = retry_after_seconds

    @property
    def retryable(self) -> bool:
        return self.category in {CATEGORY_AUTH, CATEGORY_RATE_LIMIT}


class ErpNetworkError(ErpGatewayError):
    default_category = CATEGORY_NETWORK


class ErpAuthError(ErpGatewayError):
    default_category = CATEGORY_AUTH


class ErpValidationError(ErpGatewayError):
    default_category = CATEGORY_VALIDATION


class ErpRateLimitError(ErpGatewayError):
    default_category = CATEGORY_RATE_LIMIT


class ErpCriticalError(ErpGatewayError):
    default_category = CATEGORY_CRITICAL


class ErpCircuitOpenError(ErpGatewayError):
    """Raised locally without touching the remote; never counted as a failure."""


class ErpLockoutError(ErpGatewayError):
    """Raised locally while the lockout guard holds all traffic."""


_ERROR_BY_CATEGORY = {
    CATEGORY_NETWORK: ErpNetworkError,
    CATEGORY_AUTH: ErpAuthError,
    CATEGORY_VALIDATION: ErpValidationError,
    CATEGORY_RATE_LIMIT: ErpRateLimitError,
    CATEGORY_CRITICAL: ErpCriticalError,
}


def error_for_category(
    category: str,
    message: str,
    *,
    code: str | None = None,
    http_status: int | None = None,
) -> ErpGatewayError:
    error_cls = _ERROR_BY_CATEGORY.get(category, ErpGatewayError)
    return error_cls(message, category=category, code=code, http_status=http_status)


class ErpGateway(ABC):
    @abstractmethod
    def fetch_inventory_snapshot(self) -> List[ErpInventoryRecord]:
        raise NotImplementedError

    @abstractmethod
    def fetch_item_inventory(self, product_code: str) -> ErpInventoryRecord | None:
        raise NotImplementedError

    @abstractmethod
    def fetch_item_list(self) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def save_sales_order(self, sales_order: ErpSalesOrderV1) -> ErpSalesOrderResultV1:
        raise NotImplementedError
