"""
Referral program config: typed wrappers over app.core.config.settings.
"""
from __future__ import annotations

from decimal import Decimal

from app.core.config import settings


def get_default_rate() -> Decimal:
    return Decimal(str(settings.referral_default_rate))


def get_partner_rate() -> Decimal:
    return Decimal(str(settings.referral_partner_rate))


def resolve_rate(is_partner: bool, commission_rate: float | None) -> Decimal:
    """Ставка реферера: персональная ставка партнёра > ставка партнёра по умолчанию > обычная."""
    if is_partner:
        if commission_rate is not None:
            return Decimal(str(commission_rate))
        return get_partner_rate()
    return get_default_rate()


def get_withdrawal_min_amount() -> int:
    return settings.withdrawal_min_amount


def get_fee_percent(self_employed: bool) -> Decimal:
    """3% для самозанятых (с ИНН), 6% для остальных."""
    if self_employed:
        return Decimal(str(settings.withdrawal_fee_self_employed_percent))
    return Decimal(str(settings.withdrawal_fee_default_percent))
