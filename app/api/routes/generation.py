"""
Запуск генерации фотосета по оплате и прогресс job.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id, http_error
from app.db.session import get_db
from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.schemas.generation import GenerateOut, GenerateRequest, JobStatusOut
from app.services.errors import AlreadyConsumed, ServiceError
from app.services.generation.consumption import PaymentConsumptionGate
from app.services.generation.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generate", tags=["generation"])


@router.post("", response_model=GenerateOut, status_code=status.HTTP_202_ACCEPTED)
def start_generation(
    body: GenerateRequest,
    response: Response,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    gate = PaymentConsumptionGate(db)
    try:
        job = gate.consume(
            payment_id=body.payment_id,
            avatar_id=body.avatar_id,
            style_id=body.style_id,
            reference_images=body.reference_images,
            user_id=user_id,
        )
        db.commit()
    except AlreadyConsumed as e:
        db.rollback()
        existing = db.get(GenerationJob, e.job_id) if e.job_id else None
        if existing is None:
            raise http_error(e)
        response.status_code = status.HTTP_200_OK
        return GenerateOut(job_id=existing.id, status=existing.status, total_photos=existing.total_photos)
    except ServiceError as e:
        db.rollback()
        raise http_error(e)

    JobDispatcher(db).dispatch(job.id)
    db.refresh(job)
    return GenerateOut(job_id=job.id, status=job.status, total_photos=job.total_photos)


@router.get("/{job_id}", response_model=JobStatusOut)
def get_generation(
    job_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    job = db.get(GenerationJob, job_id)
    if job is None or job.user_id != user_id:
        raise HTTPException(404, "Job not found")
    photos = [
        row[0]
        for row in db.query(GenerationTask.result_url)
        .filter(GenerationTask.job_id == job.id, GenerationTask.status == "completed")
        .order_by(GenerationTask.prompt_index)
        .all()
    ]
    return JobStatusOut(
        job_id=job.id,
        avatar_id=job.avatar_id,
        payment_id=job.payment_id,
        style_id=job.style_id,
        status=job.status,
        total_photos=job.total_photos,
        completed_photos=job.completed_photos,
        failed_photos=job.failed_photos,
        error_message=job.error_message,
        photos=photos,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )
