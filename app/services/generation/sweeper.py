"""
Sweep зависших job: processing без обновлений дольше stuck_processing_minutes,
pending дольше stuck_pending_minutes. Открытые задачи таких job переводятся в failed
через TaskTracker, дальше обычный путь финализации (completed или возврат оплаты).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.generation_job import GenerationJob
from app.services.generation.aggregator import CompletionAggregator
from app.services.notifications.outbox import Outbox

logger = logging.getLogger(__name__)

STUCK_ERROR = "Generation timed out"


@dataclass
class SweepSummary:
    jobs: int = 0
    completed: int = 0
    failed: int = 0
    outbox: Outbox = field(default_factory=Outbox)


class StuckJobSweeper:
    def __init__(self, db: Session, aggregator: CompletionAggregator | None = None):
        self.db = db
        self.aggregator = aggregator or CompletionAggregator(db)

    def find_stuck(self, now: datetime | None = None) -> list[str]:
        now = now or datetime.now(timezone.utc)
        processing_cutoff = now - timedelta(minutes=settings.stuck_processing_minutes)
        pending_cutoff = now - timedelta(minutes=settings.stuck_pending_minutes)
        rows = (
            self.db.query(GenerationJob.id)
            .filter(
                or_(
                    and_(
                        GenerationJob.status == "processing",
                        GenerationJob.updated_at < processing_cutoff,
                    ),
                    and_(
                        GenerationJob.status == "pending",
                        GenerationJob.created_at < pending_cutoff,
                    ),
                )
            )
            .all()
        )
        return [row[0] for row in rows]

    def sweep(self, now: datetime | None = None) -> SweepSummary:
        summary = SweepSummary()
        for job_id in self.find_stuck(now):
            summary.jobs += 1
            transition = self.aggregator.tracker.fail_open_tasks(job_id, STUCK_ERROR, source="sweep")
            summary.outbox.extend(transition.outbox)

            job = (
                self.db.query(GenerationJob)
                .filter(GenerationJob.id == job_id)
                .populate_existing()
                .one()
            )
            status = job.status
            if status not in ("completed", "failed"):
                # счётчики уже полные или задач нет: финализировать напрямую
                outcome = self.aggregator.finalize(job_id)
                summary.outbox.extend(outcome.outbox)
                status = outcome.status
            self.db.commit()

            if status == "completed":
                summary.completed += 1
            else:
                summary.failed += 1
            logger.warning("stuck_job_swept", extra={"job_id": job_id, "new_state": status})
        return summary
