"""
CompletionAggregator: сохраняет результаты задач как GeneratedPhoto и финализирует job.
Финализация: условный UPDATE статуса: из параллельных вызовов выигрывает один.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.avatar import Avatar
from app.models.generated_photo import GeneratedPhoto
from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.services.notifications.outbox import Outbox
from app.utils.metrics import jobs_finalized_total

logger = logging.getLogger(__name__)


@dataclass
class FinalizeOutcome:
    status: str
    outbox: Outbox = field(default_factory=Outbox)


class CompletionAggregator:
    def __init__(self, db: Session, tracker=None, coordinator=None):
        self.db = db
        self._tracker = tracker
        self._coordinator = coordinator

    @property
    def tracker(self):
        if self._tracker is None:
            from app.services.generation.tracker import TaskTracker

            self._tracker = TaskTracker(self.db, aggregator=self)
        return self._tracker

    @property
    def coordinator(self):
        if self._coordinator is None:
            from app.services.generation.refunds import FailureRefundCoordinator

            self._coordinator = FailureRefundCoordinator(self.db)
        return self._coordinator

    def save_photo(self, job: GenerationJob, prompt: str, image_url: str) -> GeneratedPhoto:
        """Один снимок на (avatar, style, prompt). Повторная запись возвращает существующий."""
        existing = (
            self.db.query(GeneratedPhoto)
            .filter(
                GeneratedPhoto.avatar_id == job.avatar_id,
                GeneratedPhoto.style_id == job.style_id,
                GeneratedPhoto.prompt == prompt,
            )
            .first()
        )
        if existing:
            return existing

        photo = GeneratedPhoto(
            avatar_id=job.avatar_id,
            style_id=job.style_id,
            prompt=prompt,
            image_url=image_url,
        )
        try:
            self.db.add(photo)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("generated_photo_duplicate", extra={"job_id": job.id})
            return (
                self.db.query(GeneratedPhoto)
                .filter(
                    GeneratedPhoto.avatar_id == job.avatar_id,
                    GeneratedPhoto.style_id == job.style_id,
                    GeneratedPhoto.prompt == prompt,
                )
                .one()
            )
        return photo

    def record_completion(self, task: GenerationTask, image_url: str, source: str = "poll"):
        """Сохранить фото задачи (до перевода задачи в completed) и продвинуть счётчики job."""
        from app.services.generation.tracker import TERMINAL_STATUSES, TaskTransition

        if task.status in TERMINAL_STATUSES:
            logger.info("task_completion_duplicate", extra={"task_id": task.id})
            return TaskTransition(changed=False)

        job = self.db.query(GenerationJob).filter(GenerationJob.id == task.job_id).one()
        task_id = task.id
        self.save_photo(job, task.prompt, image_url)
        return self.tracker.complete(task_id, image_url, source=source)

    def finalize(self, job_id: str) -> FinalizeOutcome:
        job = (
            self.db.query(GenerationJob)
            .filter(GenerationJob.id == job_id)
            .populate_existing()
            .one()
        )
        if job.status in ("completed", "failed"):
            return FinalizeOutcome(status=job.status)

        if job.completed_photos == 0:
            outcome = self.coordinator.handle_job_failure(
                job_id, f"All {job.total_photos} photos failed"
            )
            jobs_finalized_total.labels(status="failed").inc()
            return FinalizeOutcome(status="failed", outbox=outcome.outbox)

        message = None
        if job.failed_photos:
            message = f"{job.failed_photos} of {job.total_photos} photos failed"
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,
                GenerationJob.status.in_(("pending", "processing")),
            )
            .values(status="completed", error_message=message, updated_at=now)
        )
        if result.rowcount != 1:
            self.db.refresh(job)
            return FinalizeOutcome(status=job.status)

        thumbnail = (
            self.db.query(GeneratedPhoto.image_url)
            .filter(
                GeneratedPhoto.avatar_id == job.avatar_id,
                GeneratedPhoto.style_id == job.style_id,
            )
            .order_by(GeneratedPhoto.created_at)
            .first()
        )
        self.db.execute(
            update(Avatar)
            .where(Avatar.id == job.avatar_id)
            .values(
                status="ready",
                thumbnail_url=thumbnail[0] if thumbnail else None,
                updated_at=now,
            )
        )
        self.db.flush()
        jobs_finalized_total.labels(status="completed").inc()

        outbox = Outbox()
        outbox.add(
            job.user_id,
            f"Ваш фотосет готов: {job.completed_photos} из {job.total_photos} фото.",
        )
        logger.info(
            "job_finalized",
            extra={
                "job_id": job_id,
                "new_state": "completed",
                "count": job.completed_photos,
            },
        )
        return FinalizeOutcome(status="completed", outbox=outbox)
