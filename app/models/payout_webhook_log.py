from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class PayoutWebhookLog(Base):
    """Журнал входящих webhook от платёжного провайдера выплат (для разбора инцидентов)."""

    __tablename__ = "payout_webhook_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    event_type = Column(String, nullable=True)
    payout_id = Column(String, nullable=True, index=True)
    withdrawal_id = Column(String, nullable=True)
    payload = Column(JSONType, nullable=True)
    signature_valid = Column(Boolean, nullable=False, default=False)
    processed = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
