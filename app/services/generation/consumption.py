"""
PaymentConsumptionGate: одна успешная оплата превращается ровно в один GenerationJob.

Атомарность: условный UPDATE payments ... WHERE status='succeeded' AND generation_consumed=false
и уникальный generation_jobs.payment_id. Проигравший в гонке получает AlreadyConsumed с id job.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.avatar import Avatar
from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.models.payment import Payment
from app.services.errors import AlreadyConsumed, NotFound, PaymentNotEligible, ValidationFailed
from app.services.generation.prompts import build_prompts, is_known_style
from app.utils.metrics import jobs_created_total

logger = logging.getLogger(__name__)

MAX_REFERENCE_IMAGES = 20


class PaymentConsumptionGate:
    def __init__(self, db: Session):
        self.db = db

    def get_job_for_payment(self, payment_id: str) -> GenerationJob | None:
        return (
            self.db.query(GenerationJob)
            .filter(GenerationJob.payment_id == payment_id)
            .one_or_none()
        )

    def consume(
        self,
        payment_id: str,
        avatar_id: str,
        style_id: str,
        reference_images: list[str] | None = None,
        user_id: str | None = None,
    ) -> GenerationJob:
        """
        Пометить оплату использованной и создать job + N задач (flush, коммитит вызывающий).
        Raises: ValidationFailed, NotFound, PaymentNotEligible, AlreadyConsumed.
        """
        if not is_known_style(style_id):
            raise ValidationFailed(f"Invalid style: {style_id}")
        images = [url for url in (reference_images or []) if isinstance(url, str) and url.strip()]
        if not images:
            raise ValidationFailed("No valid reference images")
        images = images[:MAX_REFERENCE_IMAGES]

        payment = self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()
        if payment is None:
            raise PaymentNotEligible(f"Payment not found: {payment_id}")
        if user_id is not None and payment.user_id != user_id:
            raise PaymentNotEligible("Payment belongs to another user")

        avatar = self.db.query(Avatar).filter(Avatar.id == avatar_id).one_or_none()
        if avatar is None:
            raise NotFound(f"Avatar not found: {avatar_id}")
        if avatar.user_id != payment.user_id:
            raise ValidationFailed("Avatar belongs to another user")

        result = self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status == "succeeded",
                Payment.generation_consumed.is_(False),
            )
            .values(
                generation_consumed=True,
                consumed_avatar_id=avatar_id,
                updated_at=datetime.now(timezone.utc),
            )
        )
        if result.rowcount != 1:
            self.db.refresh(payment)
            if payment.generation_consumed:
                existing = self.get_job_for_payment(payment_id)
                logger.info(
                    "payment_already_consumed",
                    extra={"payment_id": payment_id, "job_id": existing.id if existing else None},
                )
                raise AlreadyConsumed(payment_id, existing.id if existing else None)
            raise PaymentNotEligible(f"Payment is not eligible (status: {payment.status})")

        prompts = build_prompts(style_id)
        total = min(payment.photo_count, len(prompts), settings.generation_max_photos)
        job = GenerationJob(
            avatar_id=avatar_id,
            user_id=payment.user_id,
            payment_id=payment_id,
            style_id=style_id,
            total_photos=total,
            completed_photos=0,
            failed_photos=0,
            status="pending",
            reference_images=images,
        )
        try:
            self.db.add(job)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.get_job_for_payment(payment_id)
            logger.info("payment_already_consumed", extra={"payment_id": payment_id})
            raise AlreadyConsumed(payment_id, existing.id if existing else None)

        self.db.add_all(
            [
                GenerationTask(job_id=job.id, prompt_index=i, prompt=prompts[i], status="pending")
                for i in range(total)
            ]
        )
        avatar.status = "processing"
        self.db.add(avatar)
        self.db.flush()

        jobs_created_total.labels(style_id=style_id).inc()
        logger.info(
            "job_created",
            extra={
                "job_id": job.id,
                "payment_id": payment_id,
                "avatar_id": avatar_id,
                "user_id": payment.user_id,
                "count": total,
            },
        )
        return job
