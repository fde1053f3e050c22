"""
Входящие webhook провайдеров: задачи генерации (Kie.ai), оплаты (T-Bank), выплаты (Jump.Finance).
Обработчики не пробрасывают ошибки провайдеру: повторная доставка обрабатывается идемпотентно.
"""
import hmac
import json
import logging
import time

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models.payout_webhook_log import PayoutWebhookLog
from app.services.errors import NotFound, ValidationFailed
from app.services.generation.poller import TaskPoller
from app.services.payments.fulfillment import fulfill_payment
from app.services.payments.service import PaymentService
from app.services.payouts.jump import JumpFinanceClient, parse_event
from app.services.task_gateway.kie import parse_record
from app.services.withdrawals.service import WithdrawalService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ---------- Kie.ai ----------
@router.post("/tasks")
async def task_callback(
    request: Request,
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    if settings.kie_callback_token and not hmac.compare_digest(
        settings.kie_callback_token.encode(), (token or "").encode()
    ):
        logger.warning("task_callback_bad_token")
        return PlainTextResponse("forbidden", status_code=403)

    try:
        payload = await request.json()
    except ValueError:
        return {"ok": False, "error": "invalid_json"}
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict) or not data.get("taskId"):
        return {"ok": False, "error": "missing_task_id"}

    status = parse_record(data)
    try:
        transition = TaskPoller(db).apply_callback(status)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("task_callback_error", extra={"provider_task_id": status.provider_task_id})
        return {"ok": False, "error": "processing_failed"}
    transition.outbox.dispatch()
    return {"ok": True, "changed": transition.changed}


# ---------- T-Bank ----------
@router.post("/payments")
async def payment_notification(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await request.json()
    except ValueError:
        return PlainTextResponse("ERROR", status_code=400)
    if not isinstance(payload, dict):
        return PlainTextResponse("ERROR", status_code=400)

    try:
        result = PaymentService(db).handle_notification(payload)
        db.commit()
    except ValidationFailed:
        db.rollback()
        logger.warning("payment_notification_bad_token", extra={"payment_id": payload.get("OrderId")})
        return PlainTextResponse("ERROR", status_code=403)

    if result.payment is not None and result.status == "succeeded":
        try:
            fulfill_payment(db, result.payment)
        except Exception:
            db.rollback()
            logger.exception("payment_fulfillment_error", extra={"payment_id": result.payment.id})
    return PlainTextResponse("OK")


# ---------- Jump.Finance ----------
@router.post("/payouts")
async def payout_webhook(request: Request, db: Session = Depends(get_db)):
    started = time.monotonic()
    raw_body = await request.body()
    signature = request.headers.get("X-Signature")
    timestamp = request.headers.get("X-Timestamp")

    client = JumpFinanceClient.from_settings()
    signature_valid = client.verify_webhook(raw_body, signature, timestamp)
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    event = parse_event(payload)

    log = PayoutWebhookLog(
        event_type=event.event or None,
        payout_id=event.payout_id,
        withdrawal_id=event.withdrawal_id,
        payload=payload,
        signature_valid=signature_valid,
    )

    if not signature_valid and not settings.is_local:
        log.error_message = "invalid_signature"
        _save_log(db, log, started)
        logger.warning("payout_webhook_bad_signature", extra={"payout_id": event.payout_id})
        return {"ok": False, "error": "invalid_signature"}

    try:
        outbox = WithdrawalService(db).apply_payout_event(event)
        log.processed = True
        _save_log(db, log, started)
    except NotFound as e:
        db.rollback()
        log.error_message = e.message
        _save_log(db, log, started)
        logger.warning("payout_webhook_unknown_withdrawal", extra={"payout_id": event.payout_id})
        return {"ok": False, "error": "not_found"}
    except Exception as e:
        db.rollback()
        log.error_message = str(e)[:1000]
        _save_log(db, log, started)
        logger.exception("payout_webhook_error", extra={"payout_id": event.payout_id})
        return {"ok": False, "error": "processing_failed"}

    outbox.dispatch()
    return {"ok": True}


def _save_log(db: Session, log: PayoutWebhookLog, started: float) -> None:
    log.processing_time_ms = int((time.monotonic() - started) * 1000)
    db.add(log)
    db.commit()
