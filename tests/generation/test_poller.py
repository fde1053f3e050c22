"""Tests for TaskPoller: опрос провайдера и callback."""
from datetime import datetime, timedelta, timezone

from app.services.task_gateway.base import TaskGateway, TaskGatewayError, TaskState, TaskStatus


class ScriptedGateway(TaskGateway):
    name = "scripted"

    def __init__(self, statuses):
        super().__init__({})
        self.statuses = statuses
        self.polled = []

    def is_available(self):
        return True

    def submit(self, request):
        raise NotImplementedError

    def poll(self, provider_task_id):
        self.polled.append(provider_task_id)
        value = self.statuses[provider_task_id]
        if isinstance(value, Exception):
            raise value
        return value


def _poller(db, gateway, provider):
    from app.services.generation.aggregator import CompletionAggregator
    from app.services.generation.poller import TaskPoller
    from app.services.generation.refunds import FailureRefundCoordinator
    from app.services.payments.service import PaymentService

    coordinator = FailureRefundCoordinator(db, payments=PaymentService(db, provider=provider))
    return TaskPoller(db, gateway=gateway, aggregator=CompletionAggregator(db, coordinator=coordinator))


def _age_tasks(db, job_id, minutes):
    from app.models.generation_task import GenerationTask

    dispatched_at = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    db.query(GenerationTask).filter(GenerationTask.job_id == job_id).update(
        {"dispatched_at": dispatched_at}
    )
    db.commit()


def _provider_ids(db, job_id):
    from app.models.generation_task import GenerationTask

    return [
        row[0]
        for row in db.query(GenerationTask.provider_task_id)
        .filter(GenerationTask.job_id == job_id)
        .order_by(GenerationTask.prompt_index)
        .all()
    ]


class TestPollDue:
    def test_applies_terminal_states(self, db, make_job, fake_payment_provider):
        job = make_job(total=3)
        _age_tasks(db, job.id, minutes=2)
        ids = _provider_ids(db, job.id)
        gateway = ScriptedGateway(
            {
                ids[0]: TaskStatus(ids[0], TaskState.SUCCESS, result_url="https://cdn.example/0.jpg"),
                ids[1]: TaskStatus(ids[1], TaskState.FAILED, error="content policy"),
                ids[2]: TaskStatus(ids[2], TaskState.PENDING, raw_state="generating"),
            }
        )

        summary = _poller(db, gateway, fake_payment_provider).poll_due()

        assert summary.checked == 3
        assert summary.completed == 1
        assert summary.failed == 1
        assert summary.pending == 1
        db.refresh(job)
        assert job.completed_photos == 1
        assert job.failed_photos == 1
        assert job.status == "processing"

    def test_recent_tasks_not_polled(self, db, make_job, fake_payment_provider):
        job = make_job(total=1)
        _age_tasks(db, job.id, minutes=0)
        gateway = ScriptedGateway({})

        summary = _poller(db, gateway, fake_payment_provider).poll_due()

        assert summary.checked == 0
        assert gateway.polled == []

    def test_poll_error_does_not_stop_batch(self, db, make_job, fake_payment_provider):
        job = make_job(total=2)
        _age_tasks(db, job.id, minutes=2)
        ids = _provider_ids(db, job.id)
        gateway = ScriptedGateway(
            {
                ids[0]: TaskGatewayError("timeout"),
                ids[1]: TaskStatus(ids[1], TaskState.SUCCESS, result_url="https://cdn.example/1.jpg"),
            }
        )

        summary = _poller(db, gateway, fake_payment_provider).poll_due()

        assert summary.errors == 1
        assert summary.completed == 1

    def test_old_pending_task_timed_out(self, db, make_job, fake_payment_provider):
        from app.models.generation_task import GenerationTask

        job = make_job(total=1)
        _age_tasks(db, job.id, minutes=45)
        ids = _provider_ids(db, job.id)
        gateway = ScriptedGateway({ids[0]: TaskStatus(ids[0], TaskState.PENDING)})

        summary = _poller(db, gateway, fake_payment_provider).poll_due()

        assert summary.failed == 1
        task = db.query(GenerationTask).filter(GenerationTask.job_id == job.id).one()
        assert task.status == "failed"
        db.refresh(job)
        assert job.status == "failed"


class TestCallback:
    def test_callback_then_poll_counted_once(self, db, make_job, fake_payment_provider):
        job = make_job(total=2)
        ids = _provider_ids(db, job.id)
        done = TaskStatus(ids[0], TaskState.SUCCESS, result_url="https://cdn.example/0.jpg")
        poller = _poller(db, ScriptedGateway({}), fake_payment_provider)

        first = poller.apply_callback(done)
        db.commit()
        task = poller.tracker.get_by_provider_task_id(ids[0])
        second = poller.apply_status(task, done, source="poll")
        db.commit()

        assert first.changed is True
        assert second.changed is False
        db.refresh(job)
        assert job.completed_photos == 1

    def test_unknown_task_ignored(self, db, fake_payment_provider):
        poller = _poller(db, ScriptedGateway({}), fake_payment_provider)

        transition = poller.apply_callback(TaskStatus("nope", TaskState.SUCCESS, result_url="x"))

        assert transition.changed is False
