"""
Dead-letter callback очереди генерации: job не удалось довести до конца.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import http_error, require_internal_token
from app.db.session import get_db
from app.schemas.generation import JobFailureOut, JobFailureRequest
from app.services.errors import ServiceError
from app.services.generation.refunds import FailureRefundCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_internal_token)])


@router.post("/failure", response_model=JobFailureOut)
def job_failure(body: JobFailureRequest, db: Session = Depends(get_db)):
    """Идемпотентно: повторный вызов для failed job не делает второй возврат."""
    try:
        outcome = FailureRefundCoordinator(db).handle_job_failure(
            body.job_id,
            body.error,
            avatar_id=body.avatar_id,
            user_id=body.user_id,
        )
        db.commit()
    except ServiceError as e:
        db.rollback()
        raise http_error(e)
    outcome.outbox.dispatch()
    logger.info(
        "job_failure_handled",
        extra={"job_id": body.job_id, "new_state": outcome.job_status, "error": body.error},
    )
    return JobFailureOut(
        job_id=body.job_id,
        job_status=outcome.job_status,
        refund_status=outcome.refund_status,
        refunded_amount=outcome.refunded_amount,
    )
