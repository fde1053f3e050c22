"""Tests for WithdrawalService: заявки, одобрение, выплата, webhook события."""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest


def _fund(db, user_id="ref-1", amount=10000):
    from app.referral.service import ReferralLedger

    ledger = ReferralLedger(db)
    ledger.credit(user_id, "buyer", f"pay-{user_id}-{amount}", amount * 2, Decimal("0.5"))
    db.commit()
    return ledger


def _service(db, payouts=None):
    from app.services.withdrawals.service import WithdrawalService

    return WithdrawalService(db, payouts=payouts or MagicMock())


class TestEstimateFee:
    def test_fee_by_tax_status(self):
        from app.services.withdrawals.service import estimate_fee

        self_employed = estimate_fee(5000, self_employed=True)
        regular = estimate_fee(5000, self_employed=False)

        assert (self_employed.fee_amount, self_employed.payout_amount) == (150, 4850)
        assert (regular.fee_amount, regular.payout_amount) == (300, 4700)

    def test_fee_rounds_half_up(self):
        from app.services.withdrawals.service import estimate_fee

        assert estimate_fee(5050, self_employed=True).fee_amount == 152


class TestCreate:
    def test_create_pending(self, db):
        _fund(db)

        withdrawal = _service(db).create("ref-1", 6000, "+79991234567", None, "key-1")
        db.commit()

        assert withdrawal.status == "pending"
        assert withdrawal.fee_amount == 360
        assert withdrawal.payout_amount == 5640

    @pytest.mark.parametrize(
        "amount, phone, inn, key",
        [
            (4999, "+79991234567", None, "k"),
            (6000, "89991234567", None, "k"),
            (6000, "+79991234567", "123", "k"),
            (6000, "+79991234567", None, ""),
        ],
    )
    def test_validation(self, db, amount, phone, inn, key):
        from app.services.errors import ValidationFailed

        _fund(db)
        with pytest.raises(ValidationFailed):
            _service(db).create("ref-1", amount, phone, inn, key)

    def test_duplicate_key(self, db):
        from app.services.errors import DuplicateWithdrawal

        _fund(db)
        svc = _service(db)
        first = svc.create("ref-1", 5000, "+79991234567", None, "key-1")
        db.commit()

        with pytest.raises(DuplicateWithdrawal) as exc:
            svc.create("ref-1", 5000, "+79991234567", None, "key-1")
        assert exc.value.context["withdrawal_id"] == first.id

    def test_pending_requests_reserve_balance(self, db):
        from app.services.errors import InsufficientBalance

        _fund(db, amount=10000)
        svc = _service(db)
        svc.create("ref-1", 6000, "+79991234567", None, "key-1")
        db.commit()

        assert svc.available_balance("ref-1") == 4000
        with pytest.raises(InsufficientBalance):
            svc.create("ref-1", 6000, "+79991234567", None, "key-2")


class TestApprove:
    def test_approve_debits_balance(self, db):
        ledger = _fund(db, amount=10000)
        svc = _service(db)
        withdrawal = svc.create("ref-1", 6000, "+79991234567", "123456789012", "key-1")
        db.commit()

        svc.approve(withdrawal.id, admin_id="admin")
        db.commit()

        balance = ledger.get_balance("ref-1")
        db.refresh(balance)
        db.refresh(withdrawal)
        assert withdrawal.status == "approved"
        assert balance.balance == 4000
        assert balance.total_withdrawn == withdrawal.payout_amount

    def test_approve_twice_conflict(self, db):
        from app.services.errors import WithdrawalConflict

        _fund(db)
        svc = _service(db)
        withdrawal = svc.create("ref-1", 6000, "+79991234567", None, "key-1")
        svc.approve(withdrawal.id)
        db.commit()

        with pytest.raises(WithdrawalConflict):
            svc.approve(withdrawal.id)

    def test_approve_insufficient_rolls_back(self, db):
        from app.models.referral_balance import ReferralBalance
        from app.services.errors import InsufficientBalance

        _fund(db, amount=10000)
        svc = _service(db)
        withdrawal = svc.create("ref-1", 8000, "+79991234567", None, "key-1")
        db.commit()
        # начисление отменено после подачи заявки
        db.query(ReferralBalance).filter(ReferralBalance.user_id == "ref-1").update({"balance": 1000})
        db.commit()

        with pytest.raises(InsufficientBalance):
            svc.approve(withdrawal.id)

        db.refresh(withdrawal)
        assert withdrawal.status == "pending"

    def test_reject_keeps_balance(self, db):
        ledger = _fund(db, amount=10000)
        svc = _service(db)
        withdrawal = svc.create("ref-1", 6000, "+79991234567", None, "key-1")

        rejected = svc.reject(withdrawal.id, reason="fraud check")
        db.commit()

        assert rejected.status == "rejected"
        assert ledger.get_balance("ref-1").balance == 10000
        assert svc.available_balance("ref-1") == 10000


class TestPayout:
    def _approved(self, db, payouts):
        _fund(db, amount=10000)
        svc = _service(db, payouts=payouts)
        withdrawal = svc.create("ref-1", 6000, "+79991234567", None, "key-1")
        svc.approve(withdrawal.id)
        db.commit()
        return svc, withdrawal

    def test_submit_then_completed_event(self, db):
        from app.services.payouts.jump import PayoutEvent, PayoutResult

        payouts = MagicMock()
        payouts.create_payout.return_value = PayoutResult(payout_id="po-1", status="pending")
        svc, withdrawal = self._approved(db, payouts)

        svc.submit_payout(withdrawal.id)
        db.commit()
        db.refresh(withdrawal)
        assert withdrawal.status == "processing"
        assert withdrawal.payout_id == "po-1"

        event = PayoutEvent(event="payout.completed", payout_id="po-1", withdrawal_id=None, receipt_url="https://r")
        outbox = svc.apply_payout_event(event)
        again = svc.apply_payout_event(event)
        db.commit()

        db.refresh(withdrawal)
        assert withdrawal.status == "completed"
        assert withdrawal.receipt_url == "https://r"
        assert len(outbox) == 1
        assert len(again) == 0

    def test_failed_event_returns_balance_once(self, db):
        from app.referral.service import ReferralLedger
        from app.services.payouts.jump import PayoutEvent

        svc, withdrawal = self._approved(db, MagicMock())
        event = PayoutEvent(
            event="payout.failed", payout_id=None, withdrawal_id=withdrawal.id, error_message="card blocked"
        )

        svc.apply_payout_event(event)
        svc.apply_payout_event(event)
        db.commit()

        balance = ReferralLedger(db).get_balance("ref-1")
        db.refresh(balance)
        db.refresh(withdrawal)
        assert withdrawal.status == "failed"
        assert balance.balance == 10000
        assert balance.total_withdrawn == 0

    def test_rejected_by_provider_fails_withdrawal(self, db):
        from app.services.payouts.jump import PayoutProviderError

        payouts = MagicMock()
        payouts.create_payout.side_effect = PayoutProviderError("invalid phone", rejected=True)
        svc, withdrawal = self._approved(db, payouts)

        outbox = svc.submit_payout(withdrawal.id)
        db.commit()

        db.refresh(withdrawal)
        assert withdrawal.status == "failed"
        assert len(outbox) == 1

    def test_transient_error_reverts_to_approved(self, db):
        from app.services.payouts.jump import PayoutProviderError

        payouts = MagicMock()
        payouts.create_payout.side_effect = PayoutProviderError("503")
        svc, withdrawal = self._approved(db, payouts)

        with pytest.raises(PayoutProviderError):
            svc.submit_payout(withdrawal.id)

        db.refresh(withdrawal)
        assert withdrawal.status == "approved"

    def test_unknown_withdrawal_event(self, db):
        from app.services.errors import NotFound
        from app.services.payouts.jump import PayoutEvent

        with pytest.raises(NotFound):
            _service(db).apply_payout_event(
                PayoutEvent(event="payout.completed", payout_id="nope", withdrawal_id=None)
            )


def _seed_withdrawal(session_factory, balance=6000, amount=5000):
    from app.referral.service import ReferralLedger
    from app.services.withdrawals.service import WithdrawalService

    session = session_factory()
    try:
        ReferralLedger(session).credit("ref-1", "buyer", "pay-concurrent", balance * 2, Decimal("0.5"))
        session.commit()
        withdrawal = WithdrawalService(session, payouts=MagicMock()).create(
            "ref-1", amount, "+79991234567", None, "key-concurrent"
        )
        session.commit()
        return withdrawal.id, withdrawal.payout_amount
    finally:
        session.close()


def _balance(session_factory, user_id="ref-1"):
    from app.models.referral_balance import ReferralBalance

    session = session_factory()
    try:
        row = session.query(ReferralBalance).filter(ReferralBalance.user_id == user_id).one()
        return row.balance, row.total_withdrawn
    finally:
        session.close()


class TestConcurrentApproval:
    def test_interleaved_approvals_debit_once(self, session_factory):
        from app.models.withdrawal import Withdrawal
        from app.services.errors import WithdrawalConflict
        from app.services.withdrawals.service import WithdrawalService

        withdrawal_id, payout_amount = _seed_withdrawal(session_factory)
        first, second = session_factory(), session_factory()
        try:
            assert first.get(Withdrawal, withdrawal_id).status == "pending"
            assert second.get(Withdrawal, withdrawal_id).status == "pending"

            WithdrawalService(first, payouts=MagicMock()).approve(withdrawal_id, admin_id="admin-1")
            first.commit()

            with pytest.raises(WithdrawalConflict):
                WithdrawalService(second, payouts=MagicMock()).approve(withdrawal_id, admin_id="admin-2")
            second.rollback()
        finally:
            first.close()
            second.close()

        assert _balance(session_factory) == (1000, payout_amount)

    def test_parallel_approvals_debit_once(self, session_factory):
        import threading

        from app.services.errors import WithdrawalConflict
        from app.services.withdrawals.service import WithdrawalService

        withdrawal_id, payout_amount = _seed_withdrawal(session_factory)
        barrier = threading.Barrier(2)
        results = []

        def approve(admin_id):
            session = session_factory()
            try:
                barrier.wait()
                try:
                    WithdrawalService(session, payouts=MagicMock()).approve(withdrawal_id, admin_id=admin_id)
                    session.commit()
                    results.append("approved")
                except WithdrawalConflict:
                    session.rollback()
                    results.append("conflict")
            finally:
                session.close()

        threads = [threading.Thread(target=approve, args=(f"admin-{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(results) == ["approved", "conflict"]
        assert _balance(session_factory) == (1000, payout_amount)

    def test_creation_rejected_when_balance_short(self, db):
        from app.services.errors import InsufficientBalance

        _fund(db, amount=4000)

        with pytest.raises(InsufficientBalance):
            _service(db).create("ref-1", 5000, "+79991234567", None, "key-short")
