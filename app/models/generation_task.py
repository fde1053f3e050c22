from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db.base import Base


class GenerationTask(Base):
    """Одна задача провайдера на один промпт. completed / failed: финальные состояния."""

    __tablename__ = "generation_tasks"
    __table_args__ = (
        UniqueConstraint("job_id", "prompt_index", name="uq_generation_tasks_job_prompt"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    job_id = Column(String, nullable=False, index=True)
    prompt_index = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    provider_task_id = Column(String, unique=True, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending / dispatched / completed / failed
    attempts = Column(Integer, nullable=False, default=0)
    result_url = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
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
