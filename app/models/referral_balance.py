"""
ReferralBalance: баланс реферальных начислений пользователя (RUB).
balance >= 0 всегда: все списания идут условным UPDATE ... WHERE balance >= :amount.
debt: отменённые начисления, которые не удалось списать (деньги уже выведены).
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String

from app.db.base import Base


class ReferralBalance(Base):
    __tablename__ = "referral_balances"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, unique=True, nullable=False)
    referral_code = Column(String, unique=True, nullable=True)
    balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_withdrawn = Column(Integer, nullable=False, default=0)
    debt = Column(Integer, nullable=False, default=0)
    is_partner = Column(Boolean, nullable=False, default=False)
    commission_rate = Column(Float, nullable=True)  # персональная ставка партнёра, None = по умолчанию
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
