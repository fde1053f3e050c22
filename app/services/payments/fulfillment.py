"""
Что делать после подтверждения оплаты: реферальное начисление и, если в оплате
сохранено намерение генерации (аватар + стиль + фото), запуск job.
Оба шага идемпотентны, повторная доставка notification безопасна.
"""
import logging

from sqlalchemy.orm import Session

from app.models.generation_job import GenerationJob
from app.models.payment import Payment
from app.referral.service import ReferralLedger
from app.services.errors import AlreadyConsumed, ServiceError
from app.services.generation.consumption import PaymentConsumptionGate
from app.services.generation.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


def has_generation_intent(payment: Payment) -> bool:
    return bool(payment.avatar_id and payment.style_id and payment.reference_images)


def fulfill_payment(db: Session, payment: Payment, dispatcher: JobDispatcher | None = None) -> GenerationJob | None:
    """Коммитит сам: начисление и job фиксируются независимо друг от друга."""
    if payment.status != "succeeded":
        return None

    ReferralLedger(db).credit_for_payment(payment)
    db.commit()

    if not has_generation_intent(payment) or payment.generation_consumed:
        return None
    try:
        job = PaymentConsumptionGate(db).consume(
            payment_id=payment.id,
            avatar_id=payment.avatar_id,
            style_id=payment.style_id,
            reference_images=list(payment.reference_images or []),
            user_id=payment.user_id,
        )
        db.commit()
    except AlreadyConsumed:
        db.rollback()
        return None
    except ServiceError as e:
        db.rollback()
        logger.warning(
            "payment_fulfillment_generation_skipped",
            extra={"payment_id": payment.id, "error": e.message},
        )
        return None

    (dispatcher or JobDispatcher(db)).dispatch(job.id)
    return job
