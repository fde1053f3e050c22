from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class WithdrawalRequest(CamelModel):
    amount: int = Field(gt=0)
    payout_destination: str
    inn: str | None = None


class WithdrawalOut(CamelModel):
    withdrawal_id: str
    status: str
    amount: int
    fee_percent: float
    fee_amount: int
    payout_amount: int
    created_at: datetime | None = None


class AdminWithdrawalAction(CamelModel):
    action: str = Field(pattern="^(approve|reject)$")
    reason: str | None = None


class ReferralStatsOut(CamelModel):
    referral_code: str | None
    referrals_count: int
    balance: int
    available: int
    total_earned: int
    total_withdrawn: int
    debt: int
    pending_withdrawals: int
    is_partner: bool
