"""
JobDispatcher: разбивает задачи job на чанки фиксированного размера и отправляет их провайдеру.

Чанк k выполняется Celery-задачей dispatch_chunk и по завершении ставит чанк k+1
с countdown = chunk_delay: чанки одного job идут строго по порядку индексов.
Внутри чанка между задачами пауза task_delay.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.services.app_settings.settings_service import AppSettingsService, GenerationSettings
from app.services.cache import TTLCache
from app.services.generation.tracker import TaskTracker, TaskTransition
from app.services.notifications.outbox import Outbox
from app.services.task_gateway.base import TaskGateway, TaskGatewayError, TaskSubmission
from app.services.task_gateway.runner import submit_with_retry

logger = logging.getLogger(__name__)


def plan_chunks(total: int, chunk_size: int) -> list[list[int]]:
    """[[0..size-1], [size..2*size-1], ...]: индексы задач по чанкам."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return [list(range(start, min(start + chunk_size, total))) for start in range(0, total, chunk_size)]


def build_callback_url() -> str | None:
    if not settings.public_base_url:
        return None
    url = f"{settings.public_base_url.rstrip('/')}/webhooks/tasks"
    if settings.kie_callback_token:
        url = f"{url}?token={settings.kie_callback_token}"
    return url


@dataclass
class ChunkResult:
    job_id: str
    chunk_index: int
    submitted: int = 0
    failed: int = 0
    next_chunk: int | None = None
    delay_seconds: float = 0.0
    skipped: bool = False
    outbox: Outbox = field(default_factory=Outbox)


class JobDispatcher:
    def __init__(
        self,
        db: Session,
        gateway: TaskGateway | None = None,
        settings_cache: TTLCache[GenerationSettings] | None = None,
        tracker: TaskTracker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self._gateway = gateway
        self.settings_cache = settings_cache
        self.tracker = tracker or TaskTracker(db)
        self._sleep = sleep

    @property
    def gateway(self) -> TaskGateway:
        if self._gateway is None:
            from app.services.task_gateway import get_task_gateway

            self._gateway = get_task_gateway()
        return self._gateway

    @property
    def generation_settings(self) -> GenerationSettings:
        if self.settings_cache is not None:
            return self.settings_cache.get()
        return AppSettingsService(self.db).get_generation_settings(settings)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, job_id: str) -> bool:
        """pending -> processing. False, если job уже запущен или завершён."""
        result = self.db.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id, GenerationJob.status == "pending")
            .values(status="processing", updated_at=datetime.now(timezone.utc))
        )
        self.db.flush()
        return result.rowcount == 1

    def enqueue_chunk(self, job_id: str, chunk_index: int, countdown: float = 0.0) -> None:
        from app.workers.tasks.generation import dispatch_chunk

        dispatch_chunk.apply_async(args=[job_id, chunk_index], countdown=countdown)
        logger.info("chunk_enqueued", extra={"job_id": job_id, "chunk_index": chunk_index})

    def dispatch(self, job_id: str) -> bool:
        """Запустить job: start + commit + постановка чанка 0 в очередь."""
        started = self.start(job_id)
        self.db.commit()
        if started:
            self.enqueue_chunk(job_id, 0)
            logger.info("job_dispatched", extra={"job_id": job_id})
        return started

    # ------------------------------------------------------------------
    # Chunk execution (Celery worker)
    # ------------------------------------------------------------------

    def run_chunk(self, job_id: str, chunk_index: int) -> ChunkResult:
        """Отправить задачи чанка. Коммит после каждой задачи."""
        gen_settings = self.generation_settings
        result = ChunkResult(job_id=job_id, chunk_index=chunk_index, delay_seconds=gen_settings.chunk_delay_seconds)

        job = self.db.query(GenerationJob).filter(GenerationJob.id == job_id).one_or_none()
        if job is None or job.status != "processing":
            logger.info("chunk_skipped", extra={"job_id": job_id, "chunk_index": chunk_index})
            result.skipped = True
            return result

        task_ids = [
            row[0]
            for row in self.db.query(GenerationTask.id)
            .filter(GenerationTask.job_id == job_id)
            .order_by(GenerationTask.prompt_index)
            .all()
        ]
        chunks = plan_chunks(len(task_ids), gen_settings.chunk_size)
        if chunk_index >= len(chunks):
            result.skipped = True
            return result

        for position, index in enumerate(chunks[chunk_index]):
            if position:
                self._sleep(gen_settings.task_delay_seconds)
            transition = self.submit_task(task_ids[index], job, gen_settings)
            result.outbox.extend(transition.outbox)
            self.db.commit()
            status = self._task_status(task_ids[index])
            if status == "dispatched":
                result.submitted += 1
            elif status == "failed":
                result.failed += 1

        if chunk_index + 1 < len(chunks):
            result.next_chunk = chunk_index + 1
        logger.info(
            "chunk_done",
            extra={"job_id": job_id, "chunk_index": chunk_index, "count": result.submitted},
        )
        return result

    def _task_status(self, task_id: str) -> str | None:
        row = self.db.query(GenerationTask.status).filter(GenerationTask.id == task_id).one_or_none()
        return row[0] if row else None

    def submit_task(self, task_id: str, job: GenerationJob, gen_settings: GenerationSettings) -> TaskTransition:
        task = self.tracker.get_task(task_id)
        if task is None or task.status != "pending":
            return TaskTransition(changed=False)

        request = TaskSubmission(
            prompt=task.prompt,
            reference_images=list(job.reference_images or []),
            aspect_ratio=settings.kie_aspect_ratio,
            output_format=settings.kie_output_format,
            callback_url=build_callback_url(),
        )

        def before_attempt(_attempt: int) -> bool:
            allowed = self.tracker.begin_attempt(task_id, gen_settings.max_submit_attempts)
            # счётчик попыток фиксируется до внешнего вызова
            self.db.commit()
            return allowed

        try:
            provider_task_id = submit_with_retry(
                self.gateway,
                request,
                max_attempts=gen_settings.max_submit_attempts,
                backoff_seconds=settings.generation_retry_backoff_seconds,
                before_attempt=before_attempt,
                sleep=self._sleep,
            )
        except TaskGatewayError as e:
            logger.warning(
                "task_submit_exhausted",
                extra={"task_id": task_id, "job_id": job.id, "error": str(e)},
            )
            return self.tracker.fail(task_id, f"Submit failed: {e}", source="dispatch")

        self.tracker.mark_dispatched(task_id, provider_task_id)
        return TaskTransition(changed=True)
