"""Все модели импортируются здесь, чтобы Base.metadata знала о каждой таблице."""
from app.models.app_settings import AppSettings
from app.models.audit_log import AuditLog
from app.models.avatar import Avatar
from app.models.generated_photo import GeneratedPhoto
from app.models.generation_job import GenerationJob
from app.models.generation_task import GenerationTask
from app.models.payment import Payment
from app.models.payout_webhook_log import PayoutWebhookLog
from app.models.referral import Referral
from app.models.referral_balance import ReferralBalance
from app.models.referral_earning import ReferralEarning
from app.models.user import User
from app.models.withdrawal import Withdrawal

__all__ = [
    "AppSettings",
    "AuditLog",
    "Avatar",
    "GeneratedPhoto",
    "GenerationJob",
    "GenerationTask",
    "Payment",
    "PayoutWebhookLog",
    "Referral",
    "ReferralBalance",
    "ReferralEarning",
    "User",
    "Withdrawal",
]
