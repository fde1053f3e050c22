from app.schemas.base import CamelModel


class CheckoutRequest(CamelModel):
    tier_id: str
    avatar_id: str | None = None
    style_id: str | None = None
    reference_images: list[str] | None = None
    referral_code: str | None = None


class CheckoutOut(CamelModel):
    payment_id: str
    payment_url: str | None
    amount: int
    photo_count: int


class RefundRequest(CamelModel):
    reason: str = "admin_refund"
    amount: int | None = None


class RefundOut(CamelModel):
    payment_id: str
    refunded_amount: int
    status: str
