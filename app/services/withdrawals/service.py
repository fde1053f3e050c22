"""
WithdrawalService: заявки на вывод реферального баланса.

pending -> approved (списание баланса) -> processing (выплата отправлена) -> completed | failed (возврат баланса)
pending -> rejected (без изменений баланса).
Каждый переход: условный UPDATE по текущему статусу; повторная доставка webhook: no-op.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.referral_balance import ReferralBalance
from app.models.withdrawal import Withdrawal
from app.referral.config import get_fee_percent, get_withdrawal_min_amount
from app.services.errors import (
    DuplicateWithdrawal,
    InsufficientBalance,
    NotFound,
    ValidationFailed,
    WithdrawalConflict,
)
from app.services.notifications.outbox import Outbox
from app.services.payouts.jump import PayoutEvent, PayoutProviderError
from app.utils.metrics import withdrawal_transitions_total

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\+7\d{10}$")
INN_RE = re.compile(r"^\d{12}$")
IN_FLIGHT_STATUSES = ("approved", "processing")


@dataclass(frozen=True)
class FeeEstimate:
    amount: int
    fee_percent: Decimal
    fee_amount: int
    payout_amount: int


def estimate_fee(amount: int, self_employed: bool) -> FeeEstimate:
    percent = get_fee_percent(self_employed)
    fee = int((Decimal(amount) * percent / Decimal(100)).to_integral_value(rounding=ROUND_HALF_UP))
    return FeeEstimate(
        amount=amount,
        fee_percent=percent,
        fee_amount=fee,
        payout_amount=amount - fee,
    )


class WithdrawalService:
    def __init__(self, db: Session, ledger=None, payouts=None):
        self.db = db
        self._ledger = ledger
        self._payouts = payouts

    @property
    def ledger(self):
        if self._ledger is None:
            from app.referral.service import ReferralLedger

            self._ledger = ReferralLedger(self.db)
        return self._ledger

    @property
    def payouts(self):
        if self._payouts is None:
            from app.services.payouts.jump import JumpFinanceClient

            self._payouts = JumpFinanceClient.from_settings()
        return self._payouts

    def get(self, withdrawal_id: str) -> Withdrawal | None:
        return self.db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).one_or_none()

    def available_balance(self, user_id: str) -> int:
        """balance - debt - сумма других заявок в pending (approved уже списаны с баланса)."""
        row = (
            self.db.query(ReferralBalance)
            .filter(ReferralBalance.user_id == user_id)
            .one_or_none()
        )
        if row is None:
            return 0
        reserved = (
            self.db.query(func.coalesce(func.sum(Withdrawal.amount), 0))
            .filter(Withdrawal.user_id == user_id, Withdrawal.status == "pending")
            .scalar()
        )
        return max(0, row.balance - (row.debt or 0) - int(reserved or 0))

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: str,
        amount: int,
        phone: str,
        inn: str | None,
        idempotency_key: str,
    ) -> Withdrawal:
        if not idempotency_key or len(idempotency_key) > 128:
            raise ValidationFailed("Idempotency-Key header is required")
        min_amount = get_withdrawal_min_amount()
        if amount < min_amount:
            raise ValidationFailed(f"Minimum withdrawal amount is {min_amount} RUB")
        phone = (phone or "").strip()
        if not PHONE_RE.match(phone):
            raise ValidationFailed("Phone must be in format +7XXXXXXXXXX")
        inn = (inn or "").strip() or None
        if inn is not None and not INN_RE.match(inn):
            raise ValidationFailed("INN must be 12 digits")

        existing = (
            self.db.query(Withdrawal)
            .filter(Withdrawal.idempotency_key == idempotency_key)
            .one_or_none()
        )
        if existing:
            raise DuplicateWithdrawal("Duplicate request", withdrawal_id=existing.id)

        available = self.available_balance(user_id)
        if amount > available:
            raise InsufficientBalance(f"Insufficient balance: available {available} RUB")

        fee = estimate_fee(amount, self_employed=inn is not None)
        withdrawal = Withdrawal(
            user_id=user_id,
            amount=amount,
            fee_percent=float(fee.fee_percent),
            fee_amount=fee.fee_amount,
            payout_amount=fee.payout_amount,
            phone=phone,
            inn=inn,
            status="pending",
            idempotency_key=idempotency_key,
        )
        try:
            self.db.add(withdrawal)
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateWithdrawal("Duplicate request")

        withdrawal_transitions_total.labels(status="pending").inc()
        logger.info(
            "withdrawal_created",
            extra={"withdrawal_id": withdrawal.id, "user_id": user_id, "amount": amount},
        )
        return withdrawal

    # ------------------------------------------------------------------
    # Admin decisions
    # ------------------------------------------------------------------

    def approve(self, withdrawal_id: str, admin_id: str | None = None) -> Withdrawal:
        """
        pending -> approved и списание баланса в одной транзакции.
        Если любое из условий не выполнено: откат и WithdrawalConflict / InsufficientBalance.
        """
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == "pending")
            .values(status="approved", processed_at=now, approved_by=admin_id)
        )
        if result.rowcount != 1:
            withdrawal = self.get(withdrawal_id)
            if withdrawal is None:
                raise NotFound(f"Withdrawal not found: {withdrawal_id}")
            raise WithdrawalConflict(f"Withdrawal is not pending (status: {withdrawal.status})")

        withdrawal = self.get(withdrawal_id)
        try:
            self.ledger.debit(withdrawal.user_id, withdrawal.amount, withdrawal.payout_amount)
        except InsufficientBalance:
            self.db.rollback()
            logger.warning(
                "withdrawal_approve_insufficient_balance",
                extra={"withdrawal_id": withdrawal_id},
            )
            raise

        self.db.flush()
        withdrawal_transitions_total.labels(status="approved").inc()
        logger.info(
            "withdrawal_approved",
            extra={"withdrawal_id": withdrawal_id, "user_id": withdrawal.user_id, "amount": withdrawal.amount},
        )
        return withdrawal

    def reject(self, withdrawal_id: str, reason: str | None = None) -> Withdrawal:
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == "pending")
            .values(status="rejected", reject_reason=reason, processed_at=now)
        )
        withdrawal = self.get(withdrawal_id)
        if withdrawal is None:
            raise NotFound(f"Withdrawal not found: {withdrawal_id}")
        if result.rowcount != 1:
            raise WithdrawalConflict(f"Withdrawal is not pending (status: {withdrawal.status})")
        self.db.flush()
        self.db.refresh(withdrawal)
        withdrawal_transitions_total.labels(status="rejected").inc()
        logger.info("withdrawal_rejected", extra={"withdrawal_id": withdrawal_id})
        return withdrawal

    # ------------------------------------------------------------------
    # Payout
    # ------------------------------------------------------------------

    def submit_payout(self, withdrawal_id: str) -> Outbox:
        """
        approved -> processing и создание выплаты у провайдера.
        Явный отказ провайдера обрабатывается как payout.failed; сетевые ошибки
        возвращают заявку в approved и пробрасываются (повтор задачи).
        """
        withdrawal = self.get(withdrawal_id)
        if withdrawal is None:
            raise NotFound(f"Withdrawal not found: {withdrawal_id}")
        if withdrawal.status != "approved":
            logger.info("withdrawal_payout_skipped", extra={"withdrawal_id": withdrawal_id})
            return Outbox()
        if not self.payouts.is_available():
            logger.warning("payout_provider_not_configured", extra={"withdrawal_id": withdrawal_id})
            return Outbox()

        result = self.db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == "approved")
            .values(status="processing")
        )
        if result.rowcount != 1:
            return Outbox()
        self.db.commit()

        try:
            payout = self.payouts.create_payout(
                withdrawal_id=withdrawal.id,
                phone=withdrawal.phone,
                amount_rub=withdrawal.payout_amount,
                description=f"Реферальная выплата {withdrawal.id}",
                inn=withdrawal.inn,
            )
        except PayoutProviderError as e:
            if e.rejected:
                return self.apply_payout_event(
                    PayoutEvent(
                        event="payout.failed",
                        payout_id=None,
                        withdrawal_id=withdrawal.id,
                        error_message=str(e),
                    )
                )
            self.db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal_id, Withdrawal.status == "processing")
                .values(status="approved", error_message=str(e)[:1000])
            )
            self.db.commit()
            raise

        self.db.execute(
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id)
            .values(payout_id=payout.payout_id, receipt_url=payout.receipt_url)
        )
        self.db.flush()
        withdrawal_transitions_total.labels(status="processing").inc()
        logger.info(
            "withdrawal_payout_submitted",
            extra={"withdrawal_id": withdrawal_id, "payout_id": payout.payout_id},
        )
        return Outbox()

    def find_for_event(self, event: PayoutEvent) -> Withdrawal | None:
        if event.withdrawal_id:
            withdrawal = self.get(event.withdrawal_id)
            if withdrawal is not None:
                return withdrawal
        if event.payout_id:
            return (
                self.db.query(Withdrawal)
                .filter(Withdrawal.payout_id == event.payout_id)
                .one_or_none()
            )
        return None

    def apply_payout_event(self, event: PayoutEvent) -> Outbox:
        """Применить событие провайдера. Повтор для завершённой заявки ничего не меняет."""
        withdrawal = self.find_for_event(event)
        if withdrawal is None:
            raise NotFound("Withdrawal not found for payout event")

        outbox = Outbox()
        now = datetime.now(timezone.utc)
        if event.event == "payout.completed":
            values = {"status": "completed", "completed_at": now}
            if event.receipt_url:
                values["receipt_url"] = event.receipt_url
            if event.payout_id:
                values["payout_id"] = event.payout_id
            result = self.db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal.id, Withdrawal.status.in_(IN_FLIGHT_STATUSES))
                .values(**values)
            )
            if result.rowcount == 1:
                withdrawal_transitions_total.labels(status="completed").inc()
                outbox.add(
                    withdrawal.user_id,
                    f"Выплата {withdrawal.payout_amount} ₽ отправлена на {withdrawal.phone}.",
                )
                logger.info("withdrawal_completed", extra={"withdrawal_id": withdrawal.id})
            else:
                logger.info(
                    "payout_event_ignored",
                    extra={"withdrawal_id": withdrawal.id, "event_type": event.event},
                )

        elif event.event == "payout.failed":
            error = (event.error_message or "Payout failed")[:1000]
            result = self.db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal.id, Withdrawal.status.in_(IN_FLIGHT_STATUSES))
                .values(status="failed", error_message=error, completed_at=now)
            )
            if result.rowcount == 1:
                self.ledger.credit_back(withdrawal.user_id, withdrawal.amount, withdrawal.payout_amount)
                withdrawal_transitions_total.labels(status="failed").inc()
                outbox.add(
                    withdrawal.user_id,
                    f"Выплата {withdrawal.payout_amount} ₽ не прошла: {error}. "
                    f"Сумма {withdrawal.amount} ₽ возвращена на баланс.",
                )
                logger.warning(
                    "withdrawal_failed",
                    extra={"withdrawal_id": withdrawal.id, "error": error},
                )
            else:
                logger.info(
                    "payout_event_ignored",
                    extra={"withdrawal_id": withdrawal.id, "event_type": event.event},
                )

        elif event.event == "payout.pending":
            if event.payout_id and not withdrawal.payout_id:
                self.db.execute(
                    update(Withdrawal)
                    .where(Withdrawal.id == withdrawal.id)
                    .values(payout_id=event.payout_id)
                )
        else:
            logger.warning(
                "payout_event_unknown",
                extra={"withdrawal_id": withdrawal.id, "event_type": event.event},
            )

        self.db.flush()
        return outbox
