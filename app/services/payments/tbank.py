"""
T-Bank (Tinkoff) acquiring API client: Init, Cancel, notification token check.
Суммы в API: в копейках.
"""
import hashlib
import hmac
import logging
import time
from typing import Any

import httpx

from app.utils.metrics import provider_request_duration_seconds, provider_requests_total

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


def _token_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def make_token(params: dict[str, Any], password: str) -> str:
    """SHA-256 от конкатенации значений корневых скалярных полей + Password, отсортированных по ключу."""
    values = {
        key: _token_value(value)
        for key, value in params.items()
        if key != "Token" and value is not None and not isinstance(value, (dict, list))
    }
    values["Password"] = password
    concatenated = "".join(values[key] for key in sorted(values))
    return hashlib.sha256(concatenated.encode("utf-8")).hexdigest()


class TBankClient:
    name = "tbank"

    def __init__(
        self,
        terminal_key: str,
        password: str,
        api_url: str = "https://securepay.tinkoff.ru/v2",
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.terminal_key = terminal_key
        self.password = password
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "TBankClient":
        from app.core.config import settings

        return cls(
            terminal_key=settings.tbank_terminal_key,
            password=settings.tbank_password,
            api_url=settings.tbank_api_url,
            timeout=settings.tbank_timeout,
        )

    def is_available(self) -> bool:
        return bool(self.terminal_key and self.password)

    def verify_notification(self, payload: dict[str, Any]) -> bool:
        received = payload.get("Token")
        if not received:
            return False
        expected = make_token(payload, self.password)
        return hmac.compare_digest(expected, str(received))

    def _post(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.is_available():
            raise PaymentProviderError("T-Bank terminal is not configured", {"not_configured": True})
        body = {"TerminalKey": self.terminal_key, **params}
        body["Token"] = make_token(body, self.password)
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(f"{self.api_url}/{method}", json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            provider_requests_total.labels(provider=self.name, method=method, status="error").inc()
            raise PaymentProviderError(f"T-Bank {method} request failed: {e}") from e
        finally:
            provider_request_duration_seconds.labels(provider=self.name, method=method).observe(
                time.time() - start
            )

        if not data.get("Success"):
            provider_requests_total.labels(provider=self.name, method=method, status="rejected").inc()
            raise PaymentProviderError(
                f"T-Bank {method} rejected: {data.get('ErrorCode')} {data.get('Message', '')}".strip(),
                {"error_code": data.get("ErrorCode"), "details": data.get("Details")},
            )
        provider_requests_total.labels(provider=self.name, method=method, status="success").inc()
        return data

    def init_payment(
        self,
        order_id: str,
        amount_rub: int,
        description: str,
        notification_url: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "Amount": amount_rub * 100,
            "OrderId": order_id,
            "Description": description,
        }
        if notification_url:
            params["NotificationURL"] = notification_url
        return self._post("Init", params)

    def cancel(self, provider_payment_id: str, amount_rub: int | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"PaymentId": provider_payment_id}
        if amount_rub is not None:
            params["Amount"] = amount_rub * 100
        data = self._post("Cancel", params)
        logger.info(
            "tbank_cancel_ok",
            extra={"payment_id": provider_payment_id, "amount": amount_rub},
        )
        return data
