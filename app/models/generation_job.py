"""
GenerationJob: один фотосет по одной оплате (payment_id уникален).
Инвариант: completed_photos + failed_photos <= total_photos.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.base import Base, JSONType


class GenerationJob(Base):
    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    avatar_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    payment_id = Column(String, unique=True, nullable=True)
    style_id = Column(String, nullable=False)
    total_photos = Column(Integer, nullable=False)
    completed_photos = Column(Integer, nullable=False, default=0)
    failed_photos = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending")  # pending / processing / completed / failed
    error_message = Column(Text, nullable=True)
    reference_images = Column(JSONType, nullable=False, default=list)
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
