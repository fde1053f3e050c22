"""
Payment model: оплата тарифа (T-Bank).
generation_consumed переводится false -> true ровно один раз (см. PaymentConsumptionGate).
refund_status блокирует параллельные возвраты: none / processing / completed / failed.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, default="tbank")
    provider_payment_id = Column(String, unique=True, nullable=True)
    tier_id = Column(String, nullable=False)                  # "starter" / "standard" / "premium"
    amount = Column(Integer, nullable=False)                  # RUB
    photo_count = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending / succeeded / refunded / partially_refunded / canceled
    generation_consumed = Column(Boolean, nullable=False, default=False)
    consumed_avatar_id = Column(String, nullable=True)
    # Намерение «сгенерировать после оплаты» (заполняется при checkout)
    avatar_id = Column(String, nullable=True)
    style_id = Column(String, nullable=True)
    reference_images = Column(JSONType, nullable=True)
    refund_amount = Column(Integer, nullable=False, default=0)
    refund_status = Column(String, nullable=False, default="none")
    refund_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    refunded_at = Column(DateTime(timezone=True), nullable=True)
