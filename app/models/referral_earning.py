from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from app.db.base import Base


class ReferralEarning(Base):
    __tablename__ = "referral_earnings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    referrer_id = Column(String, nullable=False, index=True)
    referred_id = Column(String, nullable=False, index=True)
    payment_id = Column(String, unique=True, nullable=False)
    original_amount = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    rate = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="credited")  # pending / credited / cancelled
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
