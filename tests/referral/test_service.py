"""Tests for ReferralLedger: attribution, earnings, cancel with debt, debit."""
from decimal import Decimal

import pytest


class TestCalcCommission:
    @pytest.mark.parametrize(
        "raw, rate, expected",
        [
            (499, Decimal("0.10"), 49),
            (999, Decimal("0.10"), 99),
            (1499, Decimal("0.50"), 749),
            (100, 0.29, 29),
            (5, Decimal("0.10"), 0),
        ],
    )
    def test_floor(self, raw, rate, expected):
        from app.referral.service import calc_commission

        assert calc_commission(raw, rate) == expected


class TestAttribution:
    def test_attribute_by_code(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        code = ledger.get_or_create_code("referrer")

        assert ledger.attribute("newbie", code.lower()) is True
        assert ledger.get_referrer_id("newbie") == "referrer"

    def test_attribute_only_once(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        first = ledger.get_or_create_code("referrer-a")
        second = ledger.get_or_create_code("referrer-b")

        assert ledger.attribute("newbie", first) is True
        assert ledger.attribute("newbie", second) is False
        assert ledger.get_referrer_id("newbie") == "referrer-a"

    def test_self_referral_and_unknown_code(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        code = ledger.get_or_create_code("user")

        assert ledger.attribute("user", code) is False
        assert ledger.attribute("other", "NOSUCHCODE") is False


class TestEarnings:
    def test_credit_idempotent_by_payment(self, db):
        from app.models.referral_earning import ReferralEarning
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        ledger.credit("referrer", "buyer", "pay-1", 999, Decimal("0.10"))
        ledger.credit("referrer", "buyer", "pay-1", 999, Decimal("0.10"))
        db.commit()

        balance = ledger.get_balance("referrer")
        assert balance.balance == 99
        assert balance.total_earned == 99
        assert db.query(ReferralEarning).filter(ReferralEarning.payment_id == "pay-1").count() == 1

    def test_credit_then_cancel_restores_balance(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        ledger.credit("referrer", "buyer", "pay-0", 499, Decimal("0.10"))
        db.commit()
        before = ledger.get_balance("referrer").balance

        ledger.credit("referrer", "buyer", "pay-1", 1499, Decimal("0.10"))
        ledger.cancel_earning("pay-1")
        ledger.cancel_earning("pay-1")
        db.commit()

        balance = ledger.get_balance("referrer")
        db.refresh(balance)
        assert balance.balance == before
        assert balance.debt == 0

    def test_cancel_after_withdrawal_records_debt(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        ledger.credit("referrer", "buyer", "pay-1", 1000, Decimal("0.50"))
        ledger.debit("referrer", 400)
        db.commit()

        earning = ledger.cancel_earning("pay-1")
        db.commit()

        balance = ledger.get_balance("referrer")
        db.refresh(balance)
        assert earning.status == "cancelled"
        assert balance.balance == 0
        assert balance.debt == 400

    def test_credit_for_payment_uses_partner_rate(self, db, make_payment):
        from app.models.referral_balance import ReferralBalance
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        code = ledger.get_or_create_code("partner")
        db.query(ReferralBalance).filter(ReferralBalance.user_id == "partner").update(
            {"is_partner": True, "commission_rate": 0.3}
        )
        ledger.attribute("buyer", code)
        db.commit()
        payment = make_payment(user_id="buyer", amount=999)

        earning = ledger.credit_for_payment(payment)
        db.commit()

        assert earning.amount == 299
        assert ledger.get_balance("partner").balance == 299

    def test_no_referrer_no_credit(self, db, make_payment):
        from app.referral.service import ReferralLedger

        payment = make_payment(user_id="organic")

        assert ReferralLedger(db).credit_for_payment(payment) is None


class TestDebit:
    def test_debit_never_goes_negative(self, db):
        from app.referral.service import ReferralLedger
        from app.services.errors import InsufficientBalance

        ledger = ReferralLedger(db)
        ledger.credit("referrer", "buyer", "pay-1", 1000, Decimal("0.10"))
        db.commit()

        ledger.debit("referrer", 60, payout_amount=57)
        with pytest.raises(InsufficientBalance):
            ledger.debit("referrer", 60)
        db.commit()

        balance = ledger.get_balance("referrer")
        db.refresh(balance)
        assert balance.balance == 40
        assert balance.total_withdrawn == 57

    def test_credit_back(self, db):
        from app.referral.service import ReferralLedger

        ledger = ReferralLedger(db)
        ledger.credit("referrer", "buyer", "pay-1", 1000, Decimal("0.10"))
        ledger.debit("referrer", 100, payout_amount=94)
        ledger.credit_back("referrer", 100, payout_amount=94)
        db.commit()

        balance = ledger.get_balance("referrer")
        db.refresh(balance)
        assert balance.balance == 100
        assert balance.total_withdrawn == 0
