"""
Celery task: доставка уведомлений пользователям в Telegram (fire-and-forget, без повторов).
"""
import logging

import httpx

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.models.user import User
from app.services.telegram.client import TelegramClient, TelegramError

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.notifications.send_notifications")
def send_notifications(items: list[dict]) -> dict:
    """items: [{"user_id", "text"}]. Ошибка одного сообщения не мешает остальным."""
    db = SessionLocal()
    telegram = TelegramClient()
    sent = 0
    failed = 0
    try:
        if not telegram.is_configured:
            logger.warning("notifications_telegram_not_configured", extra={"count": len(items)})
            return {"sent": 0, "failed": len(items)}

        user_ids = {item["user_id"] for item in items}
        chat_ids = dict(
            db.query(User.id, User.telegram_id).filter(User.id.in_(user_ids)).all()
        )
        for item in items:
            chat_id = chat_ids.get(item["user_id"])
            if not chat_id:
                failed += 1
                continue
            try:
                telegram.send_message(chat_id, item["text"])
                sent += 1
            except (TelegramError, httpx.HTTPError):
                failed += 1
                logger.exception(
                    "notification_send_failed",
                    extra={"user_id": item["user_id"]},
                )
        logger.info("notifications_sent", extra={"count": sent})
        return {"sent": sent, "failed": failed}
    finally:
        telegram.close()
        db.close()
