from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint

from app.db.base import Base


class GeneratedPhoto(Base):
    __tablename__ = "generated_photos"
    __table_args__ = (
        UniqueConstraint("avatar_id", "style_id", "prompt", name="uq_generated_photos_avatar_style_prompt"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    avatar_id = Column(String, nullable=False, index=True)
    style_id = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    image_url = Column(String, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
