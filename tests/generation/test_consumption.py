"""Tests for PaymentConsumptionGate: одна оплата -> один job."""
import pytest


REFS = ["https://img.example/a.jpg", "https://img.example/b.jpg"]


class TestConsume:
    def test_creates_job_and_tasks(self, db, make_payment, make_avatar):
        from app.models.generation_task import GenerationTask
        from app.services.generation.consumption import PaymentConsumptionGate

        payment = make_payment(photo_count=7)
        avatar = make_avatar()

        job = PaymentConsumptionGate(db).consume(payment.id, avatar.id, "pinglass", REFS)
        db.commit()

        assert job.status == "pending"
        assert job.total_photos == 7
        assert job.completed_photos == 0
        assert job.reference_images == REFS
        tasks = db.query(GenerationTask).filter(GenerationTask.job_id == job.id).all()
        assert sorted(t.prompt_index for t in tasks) == list(range(7))
        assert all(t.status == "pending" for t in tasks)
        db.refresh(payment)
        db.refresh(avatar)
        assert payment.generation_consumed is True
        assert payment.consumed_avatar_id == avatar.id
        assert avatar.status == "processing"

    @pytest.mark.parametrize("style_id, photo_count", [("professional", 23), ("lifestyle", 15), ("creative", 15)])
    def test_every_style_covers_paid_tier(self, db, make_payment, make_avatar, style_id, photo_count):
        from app.models.generation_task import GenerationTask
        from app.services.generation.consumption import PaymentConsumptionGate
        from app.services.generation.prompts import STYLE_CONFIGS

        payment = make_payment(photo_count=photo_count, amount=1499, tier_id="premium")
        avatar = make_avatar()

        job = PaymentConsumptionGate(db).consume(payment.id, avatar.id, style_id, REFS)
        db.commit()

        assert job.total_photos == photo_count
        tasks = db.query(GenerationTask).filter(GenerationTask.job_id == job.id).all()
        assert len(tasks) == photo_count
        assert all(t.prompt.startswith(STYLE_CONFIGS[style_id]["prefix"]) for t in tasks)

    def test_second_consume_raises_already_consumed_with_job(self, db, make_payment, make_avatar):
        from app.models.generation_job import GenerationJob
        from app.services.errors import AlreadyConsumed
        from app.services.generation.consumption import PaymentConsumptionGate

        payment = make_payment()
        avatar = make_avatar()
        gate = PaymentConsumptionGate(db)
        first = gate.consume(payment.id, avatar.id, "pinglass", REFS)
        db.commit()

        with pytest.raises(AlreadyConsumed) as exc:
            gate.consume(payment.id, avatar.id, "pinglass", REFS)

        assert exc.value.job_id == first.id
        assert db.query(GenerationJob).filter(GenerationJob.payment_id == payment.id).count() == 1

    @pytest.mark.parametrize("status", ["pending", "canceled", "refunded"])
    def test_unpaid_payment_not_eligible(self, db, make_payment, make_avatar, status):
        from app.services.errors import PaymentNotEligible
        from app.services.generation.consumption import PaymentConsumptionGate

        payment = make_payment(status=status)
        avatar = make_avatar()

        with pytest.raises(PaymentNotEligible):
            PaymentConsumptionGate(db).consume(payment.id, avatar.id, "pinglass", REFS)

    def test_unknown_payment_not_eligible(self, db, make_avatar):
        from app.services.errors import PaymentNotEligible
        from app.services.generation.consumption import PaymentConsumptionGate

        avatar = make_avatar()
        with pytest.raises(PaymentNotEligible):
            PaymentConsumptionGate(db).consume("missing", avatar.id, "pinglass", REFS)

    def test_foreign_payment_rejected(self, db, make_payment, make_avatar):
        from app.services.errors import PaymentNotEligible
        from app.services.generation.consumption import PaymentConsumptionGate

        payment = make_payment(user_id="owner")
        avatar = make_avatar(user_id="owner")

        with pytest.raises(PaymentNotEligible):
            PaymentConsumptionGate(db).consume(payment.id, avatar.id, "pinglass", REFS, user_id="intruder")

    def test_validation(self, db, make_payment, make_avatar):
        from app.services.errors import NotFound, ValidationFailed
        from app.services.generation.consumption import PaymentConsumptionGate

        payment = make_payment()
        avatar = make_avatar()
        gate = PaymentConsumptionGate(db)

        with pytest.raises(ValidationFailed):
            gate.consume(payment.id, avatar.id, "no-such-style", REFS)
        with pytest.raises(ValidationFailed):
            gate.consume(payment.id, avatar.id, "pinglass", ["", "  "])
        with pytest.raises(NotFound):
            gate.consume(payment.id, "missing-avatar", "pinglass", REFS)
        db.refresh(payment)
        assert payment.generation_consumed is False


def _seed_paid_payment(session_factory, photo_count=7):
    from app.models.avatar import Avatar
    from app.models.payment import Payment

    session = session_factory()
    try:
        payment = Payment(
            user_id="user-1",
            provider="tbank",
            provider_payment_id="tb-concurrent",
            tier_id="starter",
            amount=499,
            photo_count=photo_count,
            status="succeeded",
        )
        avatar = Avatar(user_id="user-1", name="me", status="draft")
        session.add_all([payment, avatar])
        session.commit()
        return payment.id, avatar.id
    finally:
        session.close()


class TestConcurrentConsume:
    def test_interleaved_sessions_create_one_job(self, session_factory):
        from app.models.generation_job import GenerationJob
        from app.models.payment import Payment
        from app.services.errors import AlreadyConsumed
        from app.services.generation.consumption import PaymentConsumptionGate

        payment_id, avatar_id = _seed_paid_payment(session_factory)
        first, second = session_factory(), session_factory()
        try:
            # обе стороны видят неиспользованную оплату до первой записи
            assert first.get(Payment, payment_id).generation_consumed is False
            assert second.get(Payment, payment_id).generation_consumed is False

            job = PaymentConsumptionGate(first).consume(payment_id, avatar_id, "pinglass", REFS)
            first.commit()

            with pytest.raises(AlreadyConsumed) as exc:
                PaymentConsumptionGate(second).consume(payment_id, avatar_id, "pinglass", REFS)
            second.rollback()

            assert exc.value.job_id == job.id
            assert second.query(GenerationJob).filter(GenerationJob.payment_id == payment_id).count() == 1
        finally:
            first.close()
            second.close()

    def test_parallel_threads_create_one_job(self, session_factory):
        import threading

        from app.models.generation_job import GenerationJob
        from app.models.generation_task import GenerationTask
        from app.services.errors import AlreadyConsumed
        from app.services.generation.consumption import PaymentConsumptionGate

        payment_id, avatar_id = _seed_paid_payment(session_factory)
        barrier = threading.Barrier(2)
        results = []

        def consume():
            session = session_factory()
            try:
                barrier.wait()
                try:
                    job = PaymentConsumptionGate(session).consume(payment_id, avatar_id, "pinglass", REFS)
                    session.commit()
                    results.append(("created", job.id))
                except AlreadyConsumed as e:
                    session.rollback()
                    results.append(("already_consumed", e.job_id))
            finally:
                session.close()

        threads = [threading.Thread(target=consume) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(kind for kind, _ in results) == ["already_consumed", "created"]
        job_ids = {job_id for _, job_id in results}
        assert len(job_ids) == 1
        check = session_factory()
        try:
            assert check.query(GenerationJob).count() == 1
            assert check.query(GenerationTask).count() == 7
        finally:
            check.close()
