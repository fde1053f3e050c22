"""
Заявки на вывод реферального баланса (пользователь).
"""
from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id, http_error
from app.db.session import get_db
from app.referral.service import ReferralLedger
from app.schemas.withdrawals import ReferralStatsOut, WithdrawalOut, WithdrawalRequest
from app.services.errors import InsufficientBalance, ServiceError
from app.services.withdrawals.service import WithdrawalService

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


@router.post("", response_model=WithdrawalOut, status_code=status.HTTP_201_CREATED)
def create_withdrawal(
    body: WithdrawalRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    svc = WithdrawalService(db)
    try:
        withdrawal = svc.create(
            user_id=user_id,
            amount=body.amount,
            phone=body.payout_destination,
            inn=body.inn,
            idempotency_key=(idempotency_key or "").strip(),
        )
        db.commit()
    except InsufficientBalance as e:
        db.rollback()
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=e.as_detail())
    except ServiceError as e:
        db.rollback()
        raise http_error(e)
    return WithdrawalOut(
        withdrawal_id=withdrawal.id,
        status=withdrawal.status,
        amount=withdrawal.amount,
        fee_percent=withdrawal.fee_percent,
        fee_amount=withdrawal.fee_amount,
        payout_amount=withdrawal.payout_amount,
        created_at=withdrawal.created_at,
    )


@router.get("/stats", response_model=ReferralStatsOut)
def referral_stats(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    stats = ReferralLedger(db).get_stats(user_id)
    return ReferralStatsOut(**stats, available=WithdrawalService(db).available_balance(user_id))
