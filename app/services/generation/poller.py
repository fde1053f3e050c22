"""
TaskPoller: терминальные сигналы от провайдера: периодический опрос и callback.
Оба пути сходятся в apply_status, поэтому дубликаты (callback + опрос) безопасны.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.generation_task import GenerationTask
from app.services.generation.aggregator import CompletionAggregator
from app.services.generation.tracker import TaskTracker, TaskTransition
from app.services.notifications.outbox import Outbox
from app.services.task_gateway.base import TaskGateway, TaskGatewayError, TaskState, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class PollSummary:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    errors: int = 0
    outbox: Outbox = field(default_factory=Outbox)


class TaskPoller:
    def __init__(self, db: Session, gateway: TaskGateway | None = None, aggregator: CompletionAggregator | None = None):
        self.db = db
        self._gateway = gateway
        self.aggregator = aggregator or CompletionAggregator(db)
        self.tracker: TaskTracker = self.aggregator.tracker

    @property
    def gateway(self) -> TaskGateway:
        if self._gateway is None:
            from app.services.task_gateway import get_task_gateway

            self._gateway = get_task_gateway()
        return self._gateway

    def apply_status(self, task: GenerationTask, status: TaskStatus, source: str) -> TaskTransition:
        if status.state == TaskState.SUCCESS:
            return self.aggregator.record_completion(task, status.result_url, source=source)
        if status.state == TaskState.FAILED:
            return self.tracker.fail(task.id, status.error or "Provider task failed", source=source)
        return TaskTransition(changed=False)

    def apply_callback(self, status: TaskStatus) -> TaskTransition:
        """Callback провайдера. Неизвестный taskId или не терминальное состояние: no-op."""
        task = self.tracker.get_by_provider_task_id(status.provider_task_id)
        if task is None:
            logger.warning("task_callback_unknown", extra={"provider_task_id": status.provider_task_id})
            return TaskTransition(changed=False)
        return self.apply_status(task, status, source="webhook")

    def due_tasks(self, now: datetime | None = None, limit: int | None = None) -> list[GenerationTask]:
        now = now or datetime.now(timezone.utc)
        min_age = now - timedelta(seconds=settings.task_poll_min_age_seconds)
        return (
            self.db.query(GenerationTask)
            .filter(
                GenerationTask.status == "dispatched",
                GenerationTask.dispatched_at <= min_age,
            )
            .order_by(GenerationTask.dispatched_at)
            .limit(limit or settings.task_poll_batch_size)
            .all()
        )

    def poll_due(self, now: datetime | None = None, limit: int | None = None) -> PollSummary:
        """Опросить dispatched задачи. Коммит после каждой задачи; ошибка одной не останавливает остальные."""
        now = now or datetime.now(timezone.utc)
        timeout_cutoff = now - timedelta(minutes=settings.task_poll_timeout_minutes)
        summary = PollSummary()

        tasks = self.due_tasks(now=now, limit=limit)
        task_refs = [(t.id, t.provider_task_id, t.dispatched_at) for t in tasks]
        for task_id, provider_task_id, dispatched_at in task_refs:
            summary.checked += 1
            try:
                status = self.gateway.poll(provider_task_id)
            except TaskGatewayError as e:
                summary.errors += 1
                logger.warning(
                    "task_poll_error",
                    extra={"task_id": task_id, "provider_task_id": provider_task_id, "error": str(e)},
                )
                if dispatched_at is not None and _as_utc(dispatched_at) <= timeout_cutoff:
                    self._fail_timed_out(task_id, summary)
                continue

            task = self.tracker.get_task(task_id)
            if task is None:
                continue
            if not status.is_terminal:
                if dispatched_at is not None and _as_utc(dispatched_at) <= timeout_cutoff:
                    self._fail_timed_out(task_id, summary)
                else:
                    summary.pending += 1
                continue

            transition = self.apply_status(task, status, source="poll")
            self.db.commit()
            summary.outbox.extend(transition.outbox)
            if status.state == TaskState.SUCCESS:
                summary.completed += 1
            else:
                summary.failed += 1
        return summary

    def _fail_timed_out(self, task_id: str, summary: PollSummary) -> None:
        transition = self.tracker.fail(task_id, "Provider task timed out", source="poll")
        self.db.commit()
        summary.outbox.extend(transition.outbox)
        summary.failed += 1


def _as_utc(value: datetime) -> datetime:
    # sqlite отдаёт naive datetime
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
