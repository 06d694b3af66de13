from __future__ import annotations

from storefront.contexts.erp.domain.gateway import (
    CATEGORY_AUTH,
    CATEGORY_CRITICAL,
    CATEGORY_NETWORK,
    CATEGORY_RATE_LIMIT,
    CATEGORY_VALIDATION,
)


RATE_LIMIT_STATUSES = frozenset({412, 429})
AUTH_STATUSES = frozenset({401, 403})
LOCKOUT_CATEGORIES = frozenset({CATEGORY_NETWORK, CATEGORY_CRITICAL})

_AUTH_MESSAGE_MARKERS = (
    "not been authenticated",
    "not authenticated",
    "session expired",
    "session has expired",
    "invalid session",
)


def classify(http_status: int | None = None, transport_error: BaseException | None = None) -> str:
    """Map an HTTP status or transport failure to a failure category.

    No status at all means the request never got an answer (refused, reset,
    timed out), which is a network problem regardless of ``transport_error``.
    """
    if http_status is None:
        return CATEGORY_NETWORK
    status = int(http_status)
    if status in RATE_LIMIT_STATUSES or 300 <= status < 400:
        return CATEGORY_RATE_LIMIT
    if status in AUTH_STATUSES:
        return CATEGORY_AUTH
    if status == 408:
        return CATEGORY_NETWORK
    if status >= 500:
        return CATEGORY_CRITICAL
    if 400 <= status < 500:
        return CATEGORY_VALIDATION
    # 1xx/2xx reaching the classifier means the body itself was unusable.
    return CATEGORY_CRITICAL


def is_auth_message(message: str | None) -> bool:
    normalized = str(message or "").strip().lower()
    if not normalized:
        return False
    return any(marker in normalized for marker in _AUTH_MESSAGE_MARKERS)


def classify_application_status(raw_status: str | None, message: str | None = None) -> str:
    """Classify the ``Status`` field of a JSON body returned with HTTP 200.

    The numeric status decides. Expiry phrases in the message only matter
    when the status is missing or not a number.
    """
    try:
        status = int(str(raw_status or "").strip())
    except ValueError:
        return CATEGORY_AUTH if is_auth_message(message) else CATEGORY_CRITICAL
    return classify(status)


def counts_toward_lockout(category: str) -> bool:
    return category in LOCKOUT_CATEGORIES
