"""
ReferralLedger: referral codes, attribution, commission earnings and the balance ledger.

Все изменения баланса: одиночные условные UPDATE: списание только WHERE balance >= amount,
поэтому balance не уходит в минус даже при гонке approve / webhook.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.payment import Payment
from app.models.referral import Referral
from app.models.referral_balance import ReferralBalance
from app.models.referral_earning import ReferralEarning
from app.models.withdrawal import Withdrawal
from app.referral.config import resolve_rate
from app.services.errors import InsufficientBalance, ValidationFailed
from app.utils.metrics import balance_rejected_total, ledger_operations_total

logger = logging.getLogger(__name__)


def calc_commission(raw_amount: int, rate: Decimal) -> int:
    """floor(raw_amount * rate) в целых рублях."""
    value = Decimal(int(raw_amount)) * Decimal(str(rate))
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


class ReferralLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Balance rows & referral codes
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> ReferralBalance | None:
        return (
            self.db.query(ReferralBalance)
            .filter(ReferralBalance.user_id == user_id)
            .one_or_none()
        )

    def get_or_create_balance(self, user_id: str) -> ReferralBalance:
        row = self.get_balance(user_id)
        if row:
            return row
        row = ReferralBalance(user_id=user_id)
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return self.db.query(ReferralBalance).filter(ReferralBalance.user_id == user_id).one()
        return row

    def generate_referral_code(self) -> str:
        for _ in range(10):
            code = secrets.token_urlsafe(6)[:8].upper()
            exists = (
                self.db.query(ReferralBalance.id)
                .filter(ReferralBalance.referral_code == code)
                .first()
            )
            if not exists:
                return code
        return secrets.token_urlsafe(8)[:10].upper()

    def get_or_create_code(self, user_id: str) -> str:
        row = self.get_or_create_balance(user_id)
        if row.referral_code:
            return row.referral_code
        row.referral_code = self.generate_referral_code()
        self.db.add(row)
        self.db.flush()
        return row.referral_code

    def get_referrer_by_code(self, code: str) -> ReferralBalance | None:
        return (
            self.db.query(ReferralBalance)
            .filter(ReferralBalance.referral_code == code.strip().upper())
            .one_or_none()
        )

    # ------------------------------------------------------------------
    # Attribution
    # ------------------------------------------------------------------

    def attribute(self, referred_id: str, code: str) -> bool:
        """Привязать пользователя к рефереру по коду. Повторная привязка и самореферал игнорируются."""
        existing = self.db.query(Referral).filter(Referral.referred_id == referred_id).one_or_none()
        if existing:
            return False

        referrer = self.get_referrer_by_code(code)
        if not referrer:
            logger.warning("referral_code_not_found", extra={"user_id": referred_id})
            return False
        if referrer.user_id == referred_id:
            return False

        try:
            self.db.add(
                Referral(
                    referrer_id=referrer.user_id,
                    referred_id=referred_id,
                    referral_code=referrer.referral_code,
                )
            )
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            return False

        logger.info(
            "referral_attributed",
            extra={"user_id": referred_id, "referrer_id": referrer.user_id},
        )
        return True

    def get_referrer_id(self, referred_id: str) -> str | None:
        row = (
            self.db.query(Referral.referrer_id)
            .filter(Referral.referred_id == referred_id)
            .one_or_none()
        )
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Earnings
    # ------------------------------------------------------------------

    def credit(
        self,
        referrer_id: str,
        referred_id: str,
        payment_id: str,
        raw_amount: int,
        rate: Decimal,
    ) -> ReferralEarning | None:
        """
        Начислить комиссию за оплату. Идемпотентно по payment_id: повтор возвращает
        существующее начисление и баланс не меняет.
        """
        amount = calc_commission(raw_amount, rate)
        if amount <= 0:
            return None

        existing = (
            self.db.query(ReferralEarning)
            .filter(ReferralEarning.payment_id == payment_id)
            .first()
        )
        if existing:
            logger.info("referral_earning_duplicate", extra={"payment_id": payment_id})
            return existing

        self.get_or_create_balance(referrer_id)
        earning = ReferralEarning(
            referrer_id=referrer_id,
            referred_id=referred_id,
            payment_id=payment_id,
            original_amount=raw_amount,
            amount=amount,
            rate=float(rate),
            status="credited",
        )
        try:
            self.db.add(earning)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info("referral_earning_duplicate", extra={"payment_id": payment_id})
            return (
                self.db.query(ReferralEarning)
                .filter(ReferralEarning.payment_id == payment_id)
                .one()
            )

        self.db.execute(
            update(ReferralBalance)
            .where(ReferralBalance.user_id == referrer_id)
            .values(
                balance=ReferralBalance.balance + amount,
                total_earned=ReferralBalance.total_earned + amount,
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        ledger_operations_total.labels(operation="CREDIT").inc()
        logger.info(
            "referral_earning_credited",
            extra={"user_id": referrer_id, "payment_id": payment_id, "amount": amount},
        )
        return earning

    def credit_for_payment(self, payment: Payment) -> ReferralEarning | None:
        """Комиссия рефереру плательщика за успешную оплату (если реферер есть)."""
        if payment.status != "succeeded":
            return None
        referrer_id = self.get_referrer_id(payment.user_id)
        if not referrer_id:
            return None
        referrer = self.get_or_create_balance(referrer_id)
        rate = resolve_rate(bool(referrer.is_partner), referrer.commission_rate)
        return self.credit(referrer_id, payment.user_id, payment.id, payment.amount, rate)

    def cancel_earning(self, payment_id: str, reason: str = "refund") -> ReferralEarning | None:
        """
        Отменить начисление за оплату (возврат). Списание с баланса условное;
        если деньги уже выведены, недостача записывается в debt.
        """
        earning = (
            self.db.query(ReferralEarning)
            .filter(ReferralEarning.payment_id == payment_id)
            .first()
        )
        if earning is None:
            return None

        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(ReferralEarning)
            .where(ReferralEarning.id == earning.id, ReferralEarning.status == "credited")
            .values(status="cancelled", cancel_reason=reason, cancelled_at=now)
        )
        if result.rowcount != 1:
            return earning

        amount = earning.amount
        deducted = self.db.execute(
            update(ReferralBalance)
            .where(
                ReferralBalance.user_id == earning.referrer_id,
                ReferralBalance.balance >= amount,
            )
            .values(
                balance=ReferralBalance.balance - amount,
                total_earned=ReferralBalance.total_earned - amount,
                updated_at=now,
            )
        )
        if deducted.rowcount != 1:
            # balance < amount: обнуляем остаток, недостачу: в debt
            self.db.execute(
                update(ReferralBalance)
                .where(
                    ReferralBalance.user_id == earning.referrer_id,
                    ReferralBalance.balance < amount,
                )
                .values(
                    debt=ReferralBalance.debt + amount - ReferralBalance.balance,
                    balance=0,
                    total_earned=ReferralBalance.total_earned - amount,
                    updated_at=now,
                )
                .execution_options(synchronize_session="fetch")
            )
            logger.warning(
                "referral_earning_cancel_debt",
                extra={"user_id": earning.referrer_id, "payment_id": payment_id, "amount": amount},
            )
        self.db.flush()
        ledger_operations_total.labels(operation="CANCEL").inc()
        logger.info(
            "referral_earning_cancelled",
            extra={"user_id": earning.referrer_id, "payment_id": payment_id, "amount": amount},
        )
        return earning

    # ------------------------------------------------------------------
    # Balance movements for withdrawals
    # ------------------------------------------------------------------

    def debit(self, user_id: str, amount: int, payout_amount: int = 0) -> None:
        """Списать amount. Ноль затронутых строк (не хватает баланса) -> InsufficientBalance."""
        if amount <= 0:
            raise ValidationFailed("Debit amount must be positive")
        result = self.db.execute(
            update(ReferralBalance)
            .where(ReferralBalance.user_id == user_id, ReferralBalance.balance >= amount)
            .values(
                balance=ReferralBalance.balance - amount,
                total_withdrawn=ReferralBalance.total_withdrawn + payout_amount,
                updated_at=datetime.now(timezone.utc),
            )
        )
        if result.rowcount != 1:
            balance_rejected_total.inc()
            logger.info("referral_debit_rejected", extra={"user_id": user_id, "amount": amount})
            raise InsufficientBalance("Insufficient referral balance")
        self.db.flush()
        ledger_operations_total.labels(operation="DEBIT").inc()

    def credit_back(self, user_id: str, amount: int, payout_amount: int = 0) -> None:
        """Вернуть списанное при неуспешной выплате."""
        self.db.execute(
            update(ReferralBalance)
            .where(ReferralBalance.user_id == user_id)
            .values(
                balance=ReferralBalance.balance + amount,
                total_withdrawn=ReferralBalance.total_withdrawn - payout_amount,
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        ledger_operations_total.labels(operation="CREDIT_BACK").inc()
        logger.info("referral_credit_back", extra={"user_id": user_id, "amount": amount})

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, user_id: str) -> dict:
        row = self.get_balance(user_id)
        referrals_count = (
            self.db.query(func.count(Referral.id))
            .filter(Referral.referrer_id == user_id)
            .scalar()
        )
        pending_withdrawals = (
            self.db.query(func.coalesce(func.sum(Withdrawal.amount), 0))
            .filter(Withdrawal.user_id == user_id, Withdrawal.status == "pending")
            .scalar()
        )
        if not row:
            return {
                "referral_code": None,
                "referrals_count": referrals_count or 0,
                "balance": 0,
                "total_earned": 0,
                "total_withdrawn": 0,
                "debt": 0,
                "pending_withdrawals": 0,
                "is_partner": False,
            }
        return {
            "referral_code": row.referral_code,
            "referrals_count": referrals_count or 0,
            "balance": row.balance,
            "total_earned": row.total_earned,
            "total_withdrawn": row.total_withdrawn,
            "debt": row.debt,
            "pending_withdrawals": int(pending_withdrawals or 0),
            "is_partner": bool(row.is_partner),
        }
