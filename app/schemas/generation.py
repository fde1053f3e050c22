from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class GenerateRequest(CamelModel):
    avatar_id: str
    payment_id: str
    style_id: str = "pinglass"
    reference_images: list[str] = Field(default_factory=list)


class GenerateOut(CamelModel):
    job_id: str
    status: str
    total_photos: int


class JobStatusOut(CamelModel):
    job_id: str
    avatar_id: str
    payment_id: str
    style_id: str
    status: str
    total_photos: int
    completed_photos: int
    failed_photos: int
    error_message: str | None = None
    photos: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class JobFailureRequest(CamelModel):
    """Dead-letter сигнал: job не удалось довести до конца."""
    job_id: str
    error: str | None = None
    avatar_id: str | None = None
    user_id: str | None = None


class JobFailureOut(CamelModel):
    job_id: str
    job_status: str | None
    refund_status: str
    refunded_amount: int = 0
