"""
Jump.Finance SBP payouts: create payout, webhook signature check, webhook event parsing.
Подпись запросов и webhook: HMAC-SHA256(secret, "{timestamp}.{body}"), hex.
"""
import hashlib
import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.utils.metrics import provider_request_duration_seconds, provider_requests_total

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "WD-"
ORDER_ID_RE = re.compile(r"^WD-(.+)$")
MAX_PAYOUT_RUB = 600_000


class PayoutProviderError(Exception):
    """rejected=True: провайдер явно отклонил выплату (повтор бессмысленен)."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None, rejected: bool = False):
        super().__init__(message)
        self.detail = detail or {}
        self.rejected = rejected


@dataclass
class PayoutResult:
    payout_id: str
    status: str
    receipt_url: str | None = None


@dataclass
class PayoutEvent:
    event: str
    payout_id: str | None
    withdrawal_id: str | None
    status: str | None = None
    receipt_url: str | None = None
    error_message: str | None = None
    completed_at: str | None = None


def order_id_for(withdrawal_id: str) -> str:
    return f"{ORDER_ID_PREFIX}{withdrawal_id}"


def sign(secret_key: str, body: str | bytes, timestamp: str) -> str:
    """HMAC-SHA256 над "{timestamp}.{body}"; тело подписывается как есть, без декодирования."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def parse_event(payload: dict[str, Any]) -> PayoutEvent:
    order_id = str(payload.get("orderId") or "")
    match = ORDER_ID_RE.match(order_id)
    error = payload.get("error")
    if isinstance(error, dict):
        error_message = error.get("message") or error.get("code")
    else:
        error_message = error
    return PayoutEvent(
        event=str(payload.get("event") or ""),
        payout_id=payload.get("payoutId"),
        withdrawal_id=match.group(1) if match else None,
        status=payload.get("status"),
        receipt_url=payload.get("receiptUrl"),
        error_message=error_message,
        completed_at=payload.get("completedAt"),
    )


class JumpFinanceClient:
    name = "jump"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        api_url: str = "https://api.jump.finance/v1",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "JumpFinanceClient":
        from app.core.config import settings

        return cls(
            api_key=settings.jump_api_key,
            secret_key=settings.jump_secret_key,
            api_url=settings.jump_api_url,
            timeout=settings.jump_timeout,
        )

    def is_available(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def verify_webhook(self, raw_body: bytes, signature: str | None, timestamp: str | None) -> bool:
        if not self.secret_key:
            logger.warning("jump_webhook_secret_not_configured")
            return False
        if not signature or not timestamp:
            return False
        expected = sign(self.secret_key, raw_body, timestamp)
        return hmac.compare_digest(expected, signature)

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        body_string = json.dumps(body, ensure_ascii=False, separators=(",", ":"))
        timestamp = datetime.now(timezone.utc).isoformat()
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Timestamp": timestamp,
            "X-Signature": sign(self.secret_key, body_string, timestamp),
        }
        label = path.strip("/").replace("/", "_")
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.api_url}{path}", content=body_string.encode("utf-8"), headers=headers)
        except httpx.HTTPError as e:
            provider_requests_total.labels(provider=self.name, method=label, status="error").inc()
            raise PayoutProviderError(f"Jump.Finance request failed: {e}") from e
        finally:
            provider_request_duration_seconds.labels(provider=self.name, method=label).observe(
                time.time() - start
            )

        if response.status_code >= 500 or response.status_code == 429:
            provider_requests_total.labels(provider=self.name, method=label, status="error").inc()
            raise PayoutProviderError(
                f"Jump.Finance API error: {response.status_code}",
                {"http_status": response.status_code, "body": response.text[:300]},
            )
        if response.status_code >= 400:
            provider_requests_total.labels(provider=self.name, method=label, status="rejected").inc()
            raise PayoutProviderError(
                f"Jump.Finance API error: {response.status_code} - {response.text[:200]}",
                {"http_status": response.status_code},
                rejected=True,
            )
        provider_requests_total.labels(provider=self.name, method=label, status="success").inc()
        return response.json()

    def create_payout(
        self,
        withdrawal_id: str,
        phone: str,
        amount_rub: int,
        description: str,
        inn: str | None = None,
    ) -> PayoutResult:
        if not self.is_available():
            raise PayoutProviderError("Jump.Finance is not configured", {"not_configured": True})
        if amount_rub > MAX_PAYOUT_RUB:
            raise PayoutProviderError(
                "Maximum payout amount is 600,000 RUB", {"code": "AMOUNT_TOO_HIGH"}, rejected=True
            )

        body: dict[str, Any] = {
            "orderId": order_id_for(withdrawal_id),
            "phone": phone,
            "amount": amount_rub * 100,
            "description": description,
        }
        if inn:
            body["inn"] = inn
        data = self._post("/payouts/sbp", body)

        if not data.get("success") or not data.get("data"):
            error = data.get("error") or {}
            raise PayoutProviderError(
                error.get("message") or "Payout creation failed",
                {"code": error.get("code")},
                rejected=True,
            )
        payout = data["data"]
        logger.info(
            "jump_payout_created",
            extra={"withdrawal_id": withdrawal_id, "payout_id": payout.get("payoutId")},
        )
        return PayoutResult(
            payout_id=str(payout.get("payoutId")),
            status=payout.get("status", "pending"),
            receipt_url=payout.get("receiptUrl"),
        )
