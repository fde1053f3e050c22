"""Runtime-настройки генерации из админки: переопределяют значения .env для чанков, задержек и попыток."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models.app_settings import AppSettings
from app.services.errors import ValidationFailed

OVERRIDE_FIELDS = ("chunk_size", "chunk_delay_seconds", "task_delay_seconds", "max_submit_attempts")


@dataclass(frozen=True)
class GenerationSettings:
    chunk_size: int
    chunk_delay_seconds: float
    task_delay_seconds: float
    max_submit_attempts: int

    @classmethod
    def from_env(cls, settings) -> "GenerationSettings":
        return cls(
            chunk_size=settings.generation_chunk_size,
            chunk_delay_seconds=settings.generation_chunk_delay_seconds,
            task_delay_seconds=settings.generation_task_delay_seconds,
            max_submit_attempts=settings.generation_max_submit_attempts,
        )


class AppSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self) -> AppSettings | None:
        return self.db.query(AppSettings).filter(AppSettings.id == 1).first()

    def get_or_create(self) -> AppSettings:
        row = self.get()
        if row:
            return row
        row = AppSettings(id=1)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def get_generation_settings(self, settings) -> GenerationSettings:
        """Значения из строки app_settings поверх .env. Строки нет: только .env."""
        base = GenerationSettings.from_env(settings)
        row = self.get()
        if row is None:
            return base
        overrides = {
            name: getattr(row, name)
            for name in OVERRIDE_FIELDS
            if getattr(row, name) is not None
        }
        if overrides.get("chunk_size") is not None and overrides["chunk_size"] < 1:
            overrides.pop("chunk_size")
        return GenerationSettings(**{**base.__dict__, **overrides})

    def as_dict(self) -> dict[str, Any]:
        row = self.get_or_create()
        data: dict[str, Any] = {name: getattr(row, name) for name in OVERRIDE_FIELDS}
        data["updated_at"] = row.updated_at.isoformat() if row.updated_at else None
        return data

    def update(self, data: dict[str, Any]) -> dict[str, Any]:
        _validate(data)
        row = self.get_or_create()
        for name in OVERRIDE_FIELDS:
            if name in data:
                setattr(row, name, data[name])
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return self.as_dict()


def _validate(data: dict[str, Any]) -> None:
    for name in ("chunk_size", "max_submit_attempts"):
        value = data.get(name)
        if value is not None and (not isinstance(value, int) or value < 1):
            raise ValidationFailed(f"{name} must be a positive integer")
    for name in ("chunk_delay_seconds", "task_delay_seconds"):
        value = data.get(name)
        if value is not None and (not isinstance(value, (int, float)) or value < 0):
            raise ValidationFailed(f"{name} must be >= 0")
