"""
Общие зависимости роутов: идентификация пользователя, админ-ключ, внутренний токен,
перевод ServiceError в HTTPException.
"""
import hmac

from fastapi import Header, HTTPException, status

from app.core.config import settings
from app.services.errors import ServiceError


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Пользователь определяется фронтом (бот / web) и передаётся в X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return x_user_id.strip()


def _check_secret(expected: str, provided: str | None) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())


def require_admin(x_admin_key: str | None = Header(default=None)) -> str:
    if not _check_secret(settings.admin_api_key, x_admin_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")
    return "admin"


def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    """Проверяется, только если internal_api_token задан."""
    if not settings.internal_api_token:
        return
    if not _check_secret(settings.internal_api_token, x_internal_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")


def http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.as_detail())
