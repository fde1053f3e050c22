"""
Celery task: отправка одобренной заявки на вывод в Jump.Finance.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.payouts.jump import PayoutProviderError
from app.services.withdrawals.service import WithdrawalService

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.payouts.submit_payout",
    max_retries=5,
    default_retry_delay=60,
    time_limit=120,
    soft_time_limit=110,
)
def submit_payout(self, withdrawal_id: str) -> dict:
    db = SessionLocal()
    try:
        outbox = WithdrawalService(db).submit_payout(withdrawal_id)
        db.commit()
        outbox.dispatch()
        return {"ok": True, "withdrawal_id": withdrawal_id}
    except PayoutProviderError as e:
        db.rollback()
        logger.warning(
            "submit_payout_retry",
            extra={"withdrawal_id": withdrawal_id, "error": str(e)},
        )
        raise self.retry(exc=e)
    except Exception:
        db.rollback()
        logger.exception("submit_payout_error", extra={"withdrawal_id": withdrawal_id})
        return {"ok": False, "withdrawal_id": withdrawal_id, "error": "exception"}
    finally:
        db.close()
