"""
Доменные ошибки сервисов. Роуты переводят их в HTTPException(status_code, {"code", "message"}).
"""
from typing import Any


class ServiceError(Exception):
    code = "service_error"
    status_code = 500

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def as_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


class ValidationFailed(ServiceError):
    code = "validation_error"
    status_code = 400


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class PaymentNotEligible(ServiceError):
    code = "payment_not_eligible"
    status_code = 402


class AlreadyConsumed(ServiceError):
    """Оплата уже превращена в job; job_id указывает на существующий job."""

    code = "already_consumed"
    status_code = 409

    def __init__(self, payment_id: str, job_id: str | None = None) -> None:
        super().__init__(f"Payment {payment_id} already consumed", payment_id=payment_id, job_id=job_id)
        self.payment_id = payment_id
        self.job_id = job_id


class InsufficientBalance(ServiceError):
    code = "insufficient_balance"
    status_code = 409


class WithdrawalConflict(ServiceError):
    code = "conflict"
    status_code = 409


class DuplicateWithdrawal(ServiceError):
    code = "duplicate_request"
    status_code = 409


class RefundFailed(ServiceError):
    code = "refund_failed"
    status_code = 502


class RefundInProgress(ServiceError):
    code = "refund_in_progress"
    status_code = 409


class ProviderUnavailable(ServiceError):
    code = "provider_error"
    status_code = 502
