"""
FailureRefundCoordinator: реакция на окончательно упавший job:
1) job -> failed, 2) аватар -> draft, 3) возврат оплаты, 4) отмена реферального начисления.
Каждый шаг идемпотентен; повторный вызов для того же job ничего не делает дважды.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.avatar import Avatar
from app.models.generation_job import GenerationJob
from app.services.errors import RefundFailed, RefundInProgress
from app.services.notifications.outbox import Outbox

logger = logging.getLogger(__name__)


@dataclass
class FailureOutcome:
    job_id: str
    job_status: str | None
    refund_status: str  # completed / skipped / failed / in_progress / none
    refunded_amount: int = 0
    outbox: Outbox = field(default_factory=Outbox)


class FailureRefundCoordinator:
    def __init__(self, db: Session, payments=None):
        self.db = db
        self._payments = payments

    @property
    def payments(self):
        if self._payments is None:
            from app.services.payments.service import PaymentService

            self._payments = PaymentService(self.db)
        return self._payments

    def handle_job_failure(
        self,
        job_id: str,
        error: str | None = None,
        *,
        avatar_id: str | None = None,
        user_id: str | None = None,
    ) -> FailureOutcome:
        error = error or "Generation failed"
        job = (
            self.db.query(GenerationJob)
            .filter(GenerationJob.id == job_id)
            .populate_existing()
            .one_or_none()
        )
        if job is None:
            logger.warning("job_failure_unknown_job", extra={"job_id": job_id})
            if avatar_id:
                self._reset_avatar(avatar_id)
            return FailureOutcome(job_id=job_id, job_status=None, refund_status="none")

        if job.status == "completed":
            # фото уже выданы, возврата нет
            logger.info("job_failure_ignored_completed", extra={"job_id": job_id})
            return FailureOutcome(job_id=job_id, job_status="completed", refund_status="none")

        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,
                GenerationJob.status.in_(("pending", "processing")),
            )
            .values(status="failed", error_message=error[:1000], updated_at=now)
        )
        newly_failed = result.rowcount == 1
        self._reset_avatar(job.avatar_id)
        self.db.flush()

        outcome = FailureOutcome(job_id=job_id, job_status="failed", refund_status="none")
        if newly_failed:
            logger.warning("job_failed", extra={"job_id": job_id, "error": error})

        if not job.payment_id:
            return outcome

        try:
            refund = self.payments.refund(job.payment_id, reason=f"generation_failed: {error}"[:500])
        except RefundInProgress:
            outcome.refund_status = "in_progress"
            return outcome
        except RefundFailed as e:
            logger.error(
                "job_refund_failed",
                extra={"job_id": job_id, "payment_id": job.payment_id, "error": e.message},
            )
            outcome.refund_status = "failed"
            outcome.outbox.add(
                job.user_id or user_id,
                "Не удалось создать фотосет. Мы оформляем возврат средств, поддержка свяжется с вами.",
            )
            return outcome

        outcome.refund_status = "completed" if refund.refunded_amount else "skipped"
        outcome.refunded_amount = refund.refunded_amount
        if refund.refunded_amount:
            outcome.outbox.add(
                job.user_id or user_id,
                f"Не удалось создать фотосет. Мы вернули {refund.refunded_amount} ₽ на вашу карту.",
            )
        return outcome

    def _reset_avatar(self, avatar_id: str) -> None:
        self.db.execute(
            update(Avatar)
            .where(Avatar.id == avatar_id, Avatar.status != "draft")
            .values(status="draft", updated_at=datetime.now(timezone.utc))
        )
