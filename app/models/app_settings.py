from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer

from app.db.base import Base


class AppSettings(Base):
    """Global app settings (single row, id=1). Runtime overrides of generation pipeline from admin.

    NULL в колонке = значение из .env (app.core.config.settings).
    """

    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, default=1)
    chunk_size = Column(Integer, nullable=True)
    chunk_delay_seconds = Column(Float, nullable=True)
    task_delay_seconds = Column(Float, nullable=True)
    max_submit_attempts = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
