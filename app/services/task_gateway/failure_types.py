"""
Failure normalization for task provider calls.
Classifies API and transport failures for retry policy and observability.
"""
from enum import Enum
from typing import Any


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, timeout, network
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429
    PROVIDER_REJECTED = "provider_rejected"  # 200 with error code in body / no taskId
    CIRCUIT_OPEN = "circuit_open"
    NOT_CONFIGURED = "not_configured"


def classify_failure(
    http_status: int | None,
    detail: dict[str, Any],
    message: str = "",
) -> tuple[FailureType, bool]:
    """Returns (failure_type, retry_allowed)."""
    if detail.get("circuit_open"):
        return (FailureType.CIRCUIT_OPEN, True)
    if detail.get("not_configured"):
        return (FailureType.NOT_CONFIGURED, False)

    if http_status is not None:
        if http_status == 429:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        if 500 <= http_status < 600:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        if 400 <= http_status < 500:
            return (FailureType.CLIENT_NON_RETRIABLE, False)

    provider_code = detail.get("provider_code")
    if provider_code is not None:
        # Kie отдаёт HTTP 200 и код в теле: 429/5xx в теле тоже временные
        try:
            code = int(provider_code)
        except (TypeError, ValueError):
            code = 0
        if code == 429 or 500 <= code < 600:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        return (FailureType.PROVIDER_REJECTED, False)

    if detail:
        return (FailureType.PROVIDER_REJECTED, False)

    # No detail (network error, timeout): transient
    return (FailureType.TRANSPORT_TRANSIENT, True)
