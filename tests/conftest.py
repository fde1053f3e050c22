import os

# Settings читаются при импорте app.core.config: обязательные значения задаются до импорта app
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("INTERNAL_API_TOKEN", "test-internal-token")
os.environ.setdefault("JUMP_SECRET_KEY", "test-jump-secret")
os.environ.setdefault("TBANK_PASSWORD", "test-tbank-password")
os.environ.setdefault("KIE_CALLBACK_TOKEN", "test-callback-token")

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


@pytest.fixture
def db():
    """Сессия на in-memory SQLite: условные UPDATE и уникальные ограничения работают как в Postgres."""
    import app.models  # noqa: F401  регистрирует все таблицы
    from app.db.base import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """Фабрика независимых сессий на файловой SQLite: каждая сессия держит своё соединение."""
    import app.models  # noqa: F401
    from app.db.base import Base

    engine = create_engine(
        f"sqlite:///{tmp_path / 'core.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )
    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        engine.dispose()


@pytest.fixture(autouse=True)
def celery_calls():
    """Постановка Celery-задач подменена: тесты проверяют вызовы, брокер не нужен."""
    from app.workers.tasks.generation import dispatch_chunk
    from app.workers.tasks.notifications import send_notifications
    from app.workers.tasks.payouts import submit_payout

    with patch.object(dispatch_chunk, "apply_async") as apply_async, patch.object(
        send_notifications, "delay"
    ) as notify, patch.object(submit_payout, "delay") as payout:
        yield {"dispatch_chunk": apply_async, "send_notifications": notify, "submit_payout": payout}


@pytest.fixture
def fake_payment_provider():
    provider = MagicMock()
    provider.cancel.return_value = {"Success": True, "Status": "REFUNDED"}
    provider.verify_notification.return_value = True
    provider.init_payment.return_value = {"PaymentId": "777", "PaymentURL": "https://pay.example/777"}
    return provider


@pytest.fixture
def make_payment(db):
    from app.models.payment import Payment

    def _make(**kwargs):
        payment = Payment(
            user_id=kwargs.pop("user_id", "user-1"),
            provider="tbank",
            provider_payment_id=kwargs.pop("provider_payment_id", uuid4().hex[:12]),
            tier_id=kwargs.pop("tier_id", "starter"),
            amount=kwargs.pop("amount", 499),
            photo_count=kwargs.pop("photo_count", 7),
            status=kwargs.pop("status", "succeeded"),
            **kwargs,
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


@pytest.fixture
def make_avatar(db):
    from app.models.avatar import Avatar

    def _make(user_id="user-1", status="draft"):
        avatar = Avatar(user_id=user_id, name="me", status=status)
        db.add(avatar)
        db.commit()
        return avatar

    return _make


@pytest.fixture
def make_job(db, make_payment, make_avatar):
    """Job с N задачами в заданных статусах, привязанный к оплаченному платежу."""
    from app.models.generation_job import GenerationJob
    from app.models.generation_task import GenerationTask

    def _make(total=3, status="processing", task_status="dispatched", amount=499, **payment_kwargs):
        payment = make_payment(amount=amount, generation_consumed=True, **payment_kwargs)
        avatar = make_avatar(user_id=payment.user_id, status="processing")
        job = GenerationJob(
            avatar_id=avatar.id,
            user_id=payment.user_id,
            payment_id=payment.id,
            style_id="pinglass",
            total_photos=total,
            status=status,
            reference_images=["https://img.example/ref.jpg"],
        )
        db.add(job)
        db.flush()
        for i in range(total):
            db.add(
                GenerationTask(
                    job_id=job.id,
                    prompt_index=i,
                    prompt=f"prompt {i}",
                    status=task_status,
                    provider_task_id=f"kie-{job.id[:8]}-{i}" if task_status == "dispatched" else None,
                )
            )
        db.commit()
        return job

    return _make
