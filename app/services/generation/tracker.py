"""
TaskTracker: состояние задач генерации и счётчики прогресса job.

pending -> dispatched -> completed | failed, плюс pending -> failed.
Все переходы: условные UPDATE по текущему статусу: повторный терминальный сигнал
(webhook + polling, повтор доставки) ничего не меняет и возвращает changed=False.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.services.notifications.outbox import Outbox
from app.utils.metrics import task_terminal_total

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
OPEN_STATUSES = ("pending", "dispatched")


@dataclass
class TaskTransition:
    changed: bool
    job_status: str | None = None  # заполнен, если переход завершил job
    outbox: Outbox = field(default_factory=Outbox)


class TaskTracker:
    def __init__(self, db: Session, aggregator=None):
        self.db = db
        self._aggregator = aggregator

    @property
    def aggregator(self):
        if self._aggregator is None:
            from app.services.generation.aggregator import CompletionAggregator

            self._aggregator = CompletionAggregator(self.db, tracker=self)
        return self._aggregator

    def get_task(self, task_id: str) -> GenerationTask | None:
        return self.db.query(GenerationTask).filter(GenerationTask.id == task_id).one_or_none()

    def get_by_provider_task_id(self, provider_task_id: str) -> GenerationTask | None:
        return (
            self.db.query(GenerationTask)
            .filter(GenerationTask.provider_task_id == provider_task_id)
            .one_or_none()
        )

    # ------------------------------------------------------------------
    # Dispatch-side transitions
    # ------------------------------------------------------------------

    def begin_attempt(self, task_id: str, max_attempts: int) -> bool:
        """attempts += 1, только пока задача pending и attempts < max_attempts."""
        result = self.db.execute(
            update(GenerationTask)
            .where(
                GenerationTask.id == task_id,
                GenerationTask.status == "pending",
                GenerationTask.attempts < max_attempts,
            )
            .values(
                attempts=GenerationTask.attempts + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        return result.rowcount == 1

    def mark_dispatched(self, task_id: str, provider_task_id: str) -> bool:
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id, GenerationTask.status == "pending")
            .values(
                status="dispatched",
                provider_task_id=provider_task_id,
                dispatched_at=now,
                updated_at=now,
            )
        )
        self.db.flush()
        if result.rowcount != 1:
            logger.info("task_dispatch_ignored", extra={"task_id": task_id})
            return False
        logger.info(
            "task_dispatched",
            extra={"task_id": task_id, "provider_task_id": provider_task_id},
        )
        return True

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def complete(self, task_id: str, result_url: str, source: str = "poll") -> TaskTransition:
        return self._finish(task_id, "completed", source, result_url=result_url)

    def fail(self, task_id: str, error: str, source: str = "poll") -> TaskTransition:
        return self._finish(task_id, "failed", source, error=error)

    def _finish(
        self,
        task_id: str,
        status: str,
        source: str,
        *,
        result_url: str | None = None,
        error: str | None = None,
    ) -> TaskTransition:
        values = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if result_url is not None:
            values["result_url"] = result_url
        if error is not None:
            values["error_message"] = error[:1000]

        result = self.db.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id, GenerationTask.status.in_(OPEN_STATUSES))
            .values(**values)
        )
        if result.rowcount != 1:
            logger.info(
                "task_terminal_signal_ignored",
                extra={"task_id": task_id, "new_state": status},
            )
            return TaskTransition(changed=False)

        task = self.get_task(task_id)
        counter = GenerationJob.completed_photos if status == "completed" else GenerationJob.failed_photos
        job_result = self.db.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == task.job_id,
                GenerationJob.completed_photos + GenerationJob.failed_photos < GenerationJob.total_photos,
            )
            .values({counter.key: counter + 1, "updated_at": datetime.now(timezone.utc)})
        )
        self.db.flush()
        task_terminal_total.labels(status=status, source=source).inc()

        if job_result.rowcount != 1:
            logger.error(
                "job_counter_overflow",
                extra={"job_id": task.job_id, "task_id": task_id},
            )
            return TaskTransition(changed=True)

        logger.info(
            "task_finished",
            extra={"task_id": task_id, "job_id": task.job_id, "new_state": status, "error": error},
        )
        return self._maybe_finalize(task.job_id)

    def _maybe_finalize(self, job_id: str) -> TaskTransition:
        job = (
            self.db.query(GenerationJob)
            .filter(GenerationJob.id == job_id)
            .populate_existing()
            .one()
        )
        if job.completed_photos + job.failed_photos < job.total_photos:
            return TaskTransition(changed=True)
        outcome = self.aggregator.finalize(job_id)
        return TaskTransition(changed=True, job_status=outcome.status, outbox=outcome.outbox)

    def fail_open_tasks(self, job_id: str, error: str, source: str = "sweep") -> TaskTransition:
        """Перевести все незавершённые задачи job в failed (sweep зависших job)."""
        tasks = (
            self.db.query(GenerationTask)
            .filter(GenerationTask.job_id == job_id, GenerationTask.status.in_(OPEN_STATUSES))
            .order_by(GenerationTask.prompt_index)
            .all()
        )
        last = TaskTransition(changed=False)
        outbox = Outbox()
        for task in tasks:
            transition = self.fail(task.id, error, source=source)
            outbox.extend(transition.outbox)
            if transition.changed:
                last = transition
        last.outbox = outbox
        return last
