from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from app.db.base import Base


class Referral(Base):
    """Кто кого привёл. Один пользователь атрибутируется не более одного раза."""

    __tablename__ = "referrals"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    referrer_id = Column(String, nullable=False, index=True)
    referred_id = Column(String, unique=True, nullable=False)
    referral_code = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
