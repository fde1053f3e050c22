"""
Submit-with-retry: retry budget, jitter, Retry-After on 429, failure classification.
Each attempt is announced through before_attempt so the caller can count it durably.
"""
import logging
import random
import time
from typing import Callable

from app.services.task_gateway.base import TaskGateway, TaskGatewayError, TaskSubmission
from app.services.task_gateway.failure_types import classify_failure
from app.utils.metrics import task_submissions_total

logger = logging.getLogger(__name__)


def submit_with_retry(
    gateway: TaskGateway,
    request: TaskSubmission,
    *,
    max_attempts: int,
    backoff_seconds: float = 2.0,
    respect_retry_after: bool = True,
    before_attempt: Callable[[int], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    Submit one task, retrying transient failures up to max_attempts.
    before_attempt(attempt_number) -> False stops the loop (attempt budget already spent).
    Raises the last TaskGatewayError when the budget is exhausted or the failure is not retriable.
    """
    last_error: TaskGatewayError | None = None
    attempt = 0

    while attempt < max_attempts:
        attempt += 1
        if before_attempt is not None and not before_attempt(attempt):
            logger.warning("task_submit_budget_exhausted", extra={"attempt": attempt})
            break
        try:
            provider_task_id = gateway.submit(request)
            task_submissions_total.labels(status="success").inc()
            if attempt > 1:
                logger.info(
                    "task_submit_success_after_retry",
                    extra={"attempt": attempt, "provider_task_id": provider_task_id},
                )
            return provider_task_id
        except TaskGatewayError as e:
            last_error = e
            detail = e.detail or {}
            http_status = detail.get("http_status")
            failure_type, retry_allowed = classify_failure(http_status, detail, str(e))
            detail["failure_type"] = failure_type.value

            if not retry_allowed or attempt >= max_attempts:
                task_submissions_total.labels(status="failed").inc()
                logger.warning(
                    "task_submit_failed",
                    extra={
                        "attempt": attempt,
                        "error": str(e),
                        "status_code": http_status,
                    },
                )
                raise

            task_submissions_total.labels(status="retry").inc()
            delay = backoff_seconds * attempt
            if http_status == 429 and respect_retry_after and detail.get("retry_after"):
                try:
                    delay = float(detail["retry_after"])
                except (TypeError, ValueError):
                    pass
            delay += random.uniform(0, 1)
            logger.info(
                "task_submit_retry_scheduled",
                extra={"attempt": attempt, "error": failure_type.value},
            )
            sleep(delay)

    if last_error is not None:
        raise last_error
    raise TaskGatewayError("Submit attempt budget exhausted", {"budget_exhausted": True})
