"""
Celery tasks of the generation pipeline:
- dispatch_chunk: отправка одного чанка задач провайдеру, затем постановка следующего чанка;
- poll_dispatched_tasks (beat, каждую минуту): опрос dispatched задач;
- sweep_stuck_jobs (beat, каждые 5 минут): зависшие job -> failed / completed.
"""
import logging

from celery.exceptions import MaxRetriesExceededError

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.app_settings.settings_service import AppSettingsService, GenerationSettings
from app.services.cache import TTLCache
from app.services.generation.dispatcher import JobDispatcher
from app.services.generation.poller import TaskPoller
from app.services.generation.refunds import FailureRefundCoordinator
from app.services.generation.sweeper import StuckJobSweeper

logger = logging.getLogger(__name__)

CHUNK_MAX_RETRIES = 3
CHUNK_RETRY_DELAY_SECONDS = 10


def _load_generation_settings() -> GenerationSettings:
    db = SessionLocal()
    try:
        return AppSettingsService(db).get_generation_settings(settings)
    finally:
        db.close()


def build_generation_settings_cache() -> TTLCache[GenerationSettings]:
    return TTLCache(_load_generation_settings, ttl_seconds=settings.generation_settings_ttl_seconds)


class ChunkDispatchTask(celery_app.Task):
    """Кэш runtime-настроек создаётся экземпляром задачи при первом чанке в процессе воркера."""

    _settings_cache: TTLCache[GenerationSettings] | None = None

    @property
    def settings_cache(self) -> TTLCache[GenerationSettings]:
        if self._settings_cache is None:
            self._settings_cache = build_generation_settings_cache()
        return self._settings_cache


@celery_app.task(
    bind=True,
    base=ChunkDispatchTask,
    name="app.workers.tasks.generation.dispatch_chunk",
    max_retries=CHUNK_MAX_RETRIES,
    time_limit=300,
    soft_time_limit=290,
)
def dispatch_chunk(self, job_id: str, chunk_index: int) -> dict:
    """Отправить чанк chunk_index job; по завершении поставить следующий с задержкой."""
    db = SessionLocal()
    try:
        dispatcher = JobDispatcher(db, settings_cache=self.settings_cache)
        result = dispatcher.run_chunk(job_id, chunk_index)
        db.commit()
        result.outbox.dispatch()

        if result.next_chunk is not None:
            dispatcher.enqueue_chunk(job_id, result.next_chunk, countdown=result.delay_seconds)
        return {
            "ok": True,
            "job_id": job_id,
            "chunk_index": chunk_index,
            "submitted": result.submitted,
            "failed": result.failed,
            "next_chunk": result.next_chunk,
            "skipped": result.skipped,
        }
    except Exception as e:
        db.rollback()
        logger.exception("dispatch_chunk_error", extra={"job_id": job_id, "chunk_index": chunk_index})
        try:
            raise self.retry(exc=e, countdown=CHUNK_RETRY_DELAY_SECONDS)
        except MaxRetriesExceededError:
            _dead_letter(job_id, f"Chunk {chunk_index} dispatch failed: {e}")
            return {"ok": False, "job_id": job_id, "chunk_index": chunk_index, "error": "dead_letter"}
    finally:
        db.close()


def _dead_letter(job_id: str, error: str) -> None:
    """Исчерпаны повторы чанка: job -> failed с возвратом оплаты."""
    db = SessionLocal()
    try:
        outcome = FailureRefundCoordinator(db).handle_job_failure(job_id, error)
        db.commit()
        outcome.outbox.dispatch()
        logger.error(
            "dispatch_chunk_dead_letter",
            extra={"job_id": job_id, "error": error},
        )
    except Exception:
        db.rollback()
        logger.exception("dispatch_chunk_dead_letter_error", extra={"job_id": job_id})
    finally:
        db.close()


@celery_app.task(
    name="app.workers.tasks.generation.poll_dispatched_tasks",
    time_limit=55,
    soft_time_limit=50,
)
def poll_dispatched_tasks() -> dict:
    """Опросить провайдера по задачам в dispatched, применить терминальные состояния."""
    db = SessionLocal()
    try:
        summary = TaskPoller(db).poll_due()
        db.commit()
        summary.outbox.dispatch()
        if summary.checked:
            logger.info(
                "poll_dispatched_tasks_done",
                extra={"count": summary.checked},
            )
        return {
            "ok": True,
            "checked": summary.checked,
            "completed": summary.completed,
            "failed": summary.failed,
            "pending": summary.pending,
            "errors": summary.errors,
        }
    except Exception:
        db.rollback()
        logger.exception("poll_dispatched_tasks_error")
        return {"ok": False, "error": "exception"}
    finally:
        db.close()


@celery_app.task(
    name="app.workers.tasks.generation.sweep_stuck_jobs",
    time_limit=120,
    soft_time_limit=110,
)
def sweep_stuck_jobs() -> dict:
    """Зависшие job: открытые задачи -> failed, затем финализация (возврат при 0 фото)."""
    db = SessionLocal()
    try:
        summary = StuckJobSweeper(db).sweep()
        db.commit()
        summary.outbox.dispatch()
        if summary.jobs:
            logger.warning(
                "sweep_stuck_jobs_done",
                extra={"count": summary.jobs},
            )
        return {
            "ok": True,
            "jobs": summary.jobs,
            "completed": summary.completed,
            "failed": summary.failed,
        }
    except Exception:
        db.rollback()
        logger.exception("sweep_stuck_jobs_error")
        return {"ok": False, "error": "exception"}
    finally:
        db.close()
