"""
Checkout: pending Payment + T-Bank Init -> ссылка на оплату.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id, http_error
from app.core.config import settings
from app.db.session import get_db
from app.referral.service import ReferralLedger
from app.schemas.payments import CheckoutOut, CheckoutRequest
from app.services.errors import ProviderUnavailable, ServiceError
from app.services.payments.service import PaymentService
from app.services.payments.tbank import PaymentProviderError

router = APIRouter(prefix="/payments", tags=["payments"])


def _notification_url() -> str | None:
    if not settings.public_base_url:
        return None
    return f"{settings.public_base_url.rstrip('/')}/webhooks/payments"


@router.post("", response_model=CheckoutOut)
def create_checkout(
    body: CheckoutRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    try:
        if body.referral_code:
            ReferralLedger(db).attribute(user_id, body.referral_code)
        payment, payment_url = PaymentService(db).create_checkout(
            user_id,
            body.tier_id,
            avatar_id=body.avatar_id,
            style_id=body.style_id,
            reference_images=body.reference_images,
            notification_url=_notification_url(),
        )
        db.commit()
    except ServiceError as e:
        db.rollback()
        raise http_error(e)
    except PaymentProviderError as e:
        db.rollback()
        raise http_error(ProviderUnavailable(str(e)))
    return CheckoutOut(
        payment_id=payment.id,
        payment_url=payment_url or None,
        amount=payment.amount,
        photo_count=payment.photo_count,
    )
