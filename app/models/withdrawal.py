"""
Withdrawal: заявка на вывод реферального баланса.
pending -> approved -> processing -> completed | failed; pending -> rejected.
Баланс списывается при approve, возвращается при failed.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from app.db.base import Base


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    fee_percent = Column(Float, nullable=False)
    fee_amount = Column(Integer, nullable=False)
    payout_amount = Column(Integer, nullable=False)
    phone = Column(String, nullable=False)
    inn = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    idempotency_key = Column(String, unique=True, nullable=False)
    payout_id = Column(String, nullable=True, index=True)
    receipt_url = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    reject_reason = Column(Text, nullable=True)
    approved_by = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
