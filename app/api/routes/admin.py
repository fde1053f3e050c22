"""
Admin API: решения по заявкам на вывод, ручной повтор возврата оплаты, настройки генерации.
Все действия пишутся в AuditLog в той же транзакции.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import http_error, require_admin
from app.db.session import get_db
from app.models.withdrawal import Withdrawal
from app.schemas.payments import RefundOut, RefundRequest
from app.schemas.withdrawals import AdminWithdrawalAction
from app.services.app_settings.settings_service import AppSettingsService
from app.services.audit.service import AuditService
from app.services.errors import ServiceError
from app.services.payments.service import PaymentService
from app.services.withdrawals.service import WithdrawalService
from app.workers.tasks.payouts import submit_payout

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------- Withdrawals ----------
@router.get("/withdrawals")
def withdrawals_list(
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    q = db.query(Withdrawal)
    if status:
        q = q.filter(Withdrawal.status == status)
    total = q.count()
    rows = q.order_by(Withdrawal.created_at.desc()).offset((page - 1) * page_size).limit(page_size).all()
    return {
        "items": [
            {
                "id": w.id,
                "user_id": w.user_id,
                "amount": w.amount,
                "fee_amount": w.fee_amount,
                "payout_amount": w.payout_amount,
                "status": w.status,
                "payout_id": w.payout_id,
                "error_message": w.error_message,
                "created_at": w.created_at.isoformat() if w.created_at else None,
            }
            for w in rows
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/withdrawals/{withdrawal_id}")
def withdrawal_decide(
    withdrawal_id: str,
    body: AdminWithdrawalAction,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    svc = WithdrawalService(db)
    try:
        if body.action == "approve":
            svc.approve(withdrawal_id, admin_id=admin)
        else:
            svc.reject(withdrawal_id, reason=body.reason)
        AuditService(db).log(
            actor_type="admin",
            actor_id=admin,
            action=f"withdrawal_{body.action}",
            entity_type="withdrawal",
            entity_id=withdrawal_id,
            payload={"reason": body.reason} if body.reason else None,
        )
        db.commit()
    except ServiceError as e:
        db.rollback()
        raise http_error(e)

    if body.action == "approve":
        submit_payout.delay(withdrawal_id)
    return {"success": True, "action": body.action, "withdrawalId": withdrawal_id}


# ---------- Payments ----------
@router.post("/payments/{payment_id}/refund", response_model=RefundOut)
def payment_refund(
    payment_id: str,
    body: RefundRequest | None = None,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    body = body or RefundRequest()
    try:
        result = PaymentService(db).refund(payment_id, reason=body.reason, amount=body.amount)
        AuditService(db).log(
            actor_type="admin",
            actor_id=admin,
            action="payment_refund",
            entity_type="payment",
            entity_id=payment_id,
            payload={"refunded_amount": result.refunded_amount, "status": result.status},
        )
        db.commit()
    except ServiceError as e:
        db.rollback()
        raise http_error(e)
    return RefundOut(payment_id=payment_id, refunded_amount=result.refunded_amount, status=result.status)


# ---------- Generation settings ----------
@router.get("/settings/generation")
def generation_settings_get(db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    return AppSettingsService(db).as_dict()


@router.put("/settings/generation")
def generation_settings_update(
    payload: dict,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    svc = AppSettingsService(db)
    try:
        data = svc.update(payload)
        AuditService(db).log(
            actor_type="admin",
            actor_id=admin,
            action="generation_settings_update",
            entity_type="app_settings",
            entity_id="1",
            payload=payload,
        )
        db.commit()
    except ServiceError as e:
        db.rollback()
        raise http_error(e)
    return data
