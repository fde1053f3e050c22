"""
PaymentService: оплата тарифа через T-Bank, подтверждение по notification, возвраты.

Возврат: refund_status блокирует параллельные попытки (none/failed/completed -> processing
условным UPDATE), блокировка коммитится до вызова провайдера. Статус платежа меняется
только после подтверждения провайдера; при ошибке refund_status = failed и RefundFailed.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.payment import Payment
from app.services.errors import (
    NotFound,
    RefundFailed,
    RefundInProgress,
    ValidationFailed,
)
from app.services.payments.tbank import PaymentProviderError, TBankClient
from app.utils.metrics import refunds_total

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = ("succeeded", "partially_refunded")


def get_pricing_tiers() -> dict[str, dict[str, int]]:
    """{tier_id: {"price": RUB, "photos": N}}."""
    raw = json.loads(settings.pricing_tiers)
    return {
        str(tier_id): {"price": int(conf["price"]), "photos": int(conf["photos"])}
        for tier_id, conf in raw.items()
    }


@dataclass
class RefundResult:
    payment_id: str
    refunded_amount: int
    status: str


@dataclass
class NotificationResult:
    payment: Payment | None
    newly_succeeded: bool = False
    status: str | None = None


class PaymentService:
    def __init__(self, db: Session, provider: TBankClient | None = None, ledger=None):
        self.db = db
        self.provider = provider or TBankClient.from_settings()
        self._ledger = ledger

    @property
    def ledger(self):
        if self._ledger is None:
            from app.referral.service import ReferralLedger

            self._ledger = ReferralLedger(self.db)
        return self._ledger

    def get(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_checkout(
        self,
        user_id: str,
        tier_id: str,
        *,
        avatar_id: str | None = None,
        style_id: str | None = None,
        reference_images: list[str] | None = None,
        notification_url: str | None = None,
    ) -> tuple[Payment, str]:
        tiers = get_pricing_tiers()
        tier = tiers.get(tier_id)
        if tier is None:
            raise ValidationFailed(f"Unknown tier: {tier_id}")

        payment = Payment(
            user_id=user_id,
            provider="tbank",
            tier_id=tier_id,
            amount=tier["price"],
            photo_count=tier["photos"],
            status="pending",
            avatar_id=avatar_id,
            style_id=style_id,
            reference_images=reference_images or None,
        )
        self.db.add(payment)
        self.db.flush()

        data = self.provider.init_payment(
            order_id=payment.id,
            amount_rub=payment.amount,
            description=f"Фотосет ({tier_id}, {tier['photos']} фото)",
            notification_url=notification_url,
        )
        payment.provider_payment_id = str(data.get("PaymentId"))
        self.db.add(payment)
        self.db.flush()
        logger.info(
            "payment_created",
            extra={"payment_id": payment.id, "user_id": user_id, "amount": payment.amount},
        )
        return payment, data.get("PaymentURL", "")

    # ------------------------------------------------------------------
    # Provider notifications
    # ------------------------------------------------------------------

    def handle_notification(self, payload: dict[str, Any]) -> NotificationResult:
        """
        Обработка notification T-Bank. Токен проверяется всегда.
        CONFIRMED: pending -> succeeded (условно, повтор доставки: no-op).
        REJECTED / CANCELED / DEADLINE_EXPIRED: pending -> canceled.
        """
        if not self.provider.verify_notification(payload):
            raise ValidationFailed("Invalid notification token")

        order_id = str(payload.get("OrderId") or "")
        payment = self.get(order_id)
        if payment is None and payload.get("PaymentId") is not None:
            payment = (
                self.db.query(Payment)
                .filter(Payment.provider_payment_id == str(payload["PaymentId"]))
                .one_or_none()
            )
        if payment is None:
            logger.warning("payment_notification_unknown", extra={"payment_id": order_id})
            return NotificationResult(payment=None)

        provider_status = str(payload.get("Status") or "").upper()
        now = datetime.now(timezone.utc)
        if provider_status == "CONFIRMED":
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == "pending")
                .values(status="succeeded", updated_at=now)
            )
            self.db.flush()
            self.db.refresh(payment)
            if result.rowcount == 1:
                logger.info(
                    "payment_succeeded",
                    extra={"payment_id": payment.id, "user_id": payment.user_id, "amount": payment.amount},
                )
            return NotificationResult(
                payment=payment, newly_succeeded=result.rowcount == 1, status=payment.status
            )

        if provider_status in ("REJECTED", "CANCELED", "DEADLINE_EXPIRED", "AUTH_FAIL"):
            self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == "pending")
                .values(status="canceled", updated_at=now)
            )
            self.db.flush()
            self.db.refresh(payment)

        return NotificationResult(payment=payment, status=payment.status)

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund(self, payment_id: str, reason: str, amount: int | None = None) -> RefundResult:
        """
        Вернуть amount (по умолчанию: весь невозвращённый остаток).
        Уже возвращённая сумма повторно не возвращается: повтор: no-op с refunded_amount=0.
        """
        payment = self.get(payment_id)
        if payment is None:
            raise NotFound(f"Payment not found: {payment_id}")

        remaining = payment.amount - (payment.refund_amount or 0)
        to_refund = remaining if amount is None else min(amount, remaining)
        if to_refund <= 0 or payment.status not in REFUNDABLE_STATUSES:
            refunds_total.labels(status="skipped").inc()
            logger.info("payment_refund_skipped", extra={"payment_id": payment_id})
            return RefundResult(payment_id=payment_id, refunded_amount=0, status=payment.status)

        now = datetime.now(timezone.utc)
        lock = self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.status.in_(REFUNDABLE_STATUSES),
                Payment.refund_status != "processing",
                Payment.refund_amount + to_refund <= Payment.amount,
            )
            .values(refund_status="processing", updated_at=now)
        )
        if lock.rowcount != 1:
            self.db.refresh(payment)
            if payment.refund_status == "processing":
                raise RefundInProgress(f"Refund already in progress for {payment_id}")
            refunds_total.labels(status="skipped").inc()
            return RefundResult(payment_id=payment_id, refunded_amount=0, status=payment.status)
        # Блокировка должна быть видна другим воркерам до вызова провайдера
        self.db.commit()

        try:
            if not payment.provider_payment_id:
                raise PaymentProviderError("Payment has no provider payment id")
            self.provider.cancel(payment.provider_payment_id, to_refund)
        except PaymentProviderError as e:
            self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.refund_status == "processing")
                .values(refund_status="failed", refund_reason=f"{reason} | {e}"[:1000])
            )
            self.db.commit()
            refunds_total.labels(status="failed").inc()
            logger.error(
                "payment_refund_failed",
                extra={"payment_id": payment_id, "amount": to_refund, "error": str(e)},
            )
            raise RefundFailed(str(e), payment_id=payment_id) from e

        fully_refunded = (payment.refund_amount or 0) + to_refund >= payment.amount
        new_status = "refunded" if fully_refunded else "partially_refunded"
        self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.refund_status == "processing")
            .values(
                refund_amount=Payment.refund_amount + to_refund,
                status=new_status,
                refund_status="completed",
                refund_reason=reason[:1000],
                refunded_at=datetime.now(timezone.utc),
                updated_at=datetime.now(timezone.utc),
            )
        )
        self.db.flush()
        self.ledger.cancel_earning(payment_id, reason="refund")
        refunds_total.labels(status="completed").inc()
        logger.info(
            "payment_refunded",
            extra={"payment_id": payment_id, "amount": to_refund, "new_state": new_status},
        )
        return RefundResult(payment_id=payment_id, refunded_amount=to_refund, status=new_status)
