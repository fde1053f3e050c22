"""
Kie.ai task gateway (model nano-banana-pro).
createTask -> data.taskId; recordInfo -> data.state, data.resultJson.resultUrls[0], data.failMsg.
"""
import json
import logging
import time
from typing import Any

import httpx
import pybreaker

from app.services.task_gateway.base import (
    TaskGateway,
    TaskGatewayError,
    TaskState,
    TaskStatus,
    TaskSubmission,
)
from app.utils.metrics import provider_request_duration_seconds, provider_requests_total

logger = logging.getLogger(__name__)

PENDING_STATES = frozenset({"waiting", "queuing", "generating", "pending", "processing"})
SUCCESS_STATES = frozenset({"success", "completed"})
FAILED_STATES = frozenset({"fail", "failed", "error"})

MAX_REFERENCE_IMAGES = 14  # лимит API; фактический лимит задаётся kie_max_reference_images


def parse_record(data: dict[str, Any]) -> TaskStatus:
    """Normalize a recordInfo `data` object (the callback payload uses the same shape)."""
    task_id = data.get("taskId") or ""
    raw_state = str(data.get("state") or data.get("status") or "").lower()

    if raw_state in SUCCESS_STATES:
        result_url = _extract_result_url(data.get("resultJson"))
        if not result_url:
            return TaskStatus(
                provider_task_id=task_id,
                state=TaskState.FAILED,
                error="Provider reported success without result URL",
                raw_state=raw_state,
            )
        return TaskStatus(
            provider_task_id=task_id,
            state=TaskState.SUCCESS,
            result_url=result_url,
            raw_state=raw_state,
        )
    if raw_state in FAILED_STATES:
        return TaskStatus(
            provider_task_id=task_id,
            state=TaskState.FAILED,
            error=data.get("failMsg") or data.get("failCode") or "Unknown provider error",
            raw_state=raw_state,
        )
    return TaskStatus(provider_task_id=task_id, state=TaskState.PENDING, raw_state=raw_state or None)


def _extract_result_url(result_json: Any) -> str | None:
    if not result_json:
        return None
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except ValueError:
            return None
    if not isinstance(result_json, dict):
        return None
    urls = result_json.get("resultUrls") or []
    if urls:
        return urls[0]
    return result_json.get("url")


class KieTaskGateway(TaskGateway):
    name = "kie"

    def __init__(
        self,
        config: dict,
        *,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(config)
        self.api_key = (config.get("api_key") or "").strip()
        self.api_url = config.get("api_url", "https://api.kie.ai/api/v1").rstrip("/")
        self.model = config.get("model", "nano-banana-pro")
        self.timeout = config.get("timeout", 30.0)
        self.max_reference_images = min(
            config.get("max_reference_images", 4), MAX_REFERENCE_IMAGES
        )
        self._breaker = breaker
        self._transport = transport

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _call(self, func, *args):
        if self._breaker is None:
            return func(*args)
        try:
            return self._breaker.call(func, *args)
        except pybreaker.CircuitBreakerError as e:
            raise TaskGatewayError(
                "Task provider circuit is open", {"circuit_open": True}
            ) from e

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        label = path.rsplit("/", 1)[-1]
        start = time.time()
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, f"{self.api_url}{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            provider_requests_total.labels(provider=self.name, method=label, status="error").inc()
            raise TaskGatewayError(f"Kie.ai request failed: {e}") from e
        finally:
            provider_request_duration_seconds.labels(provider=self.name, method=label).observe(
                time.time() - start
            )

        if response.status_code >= 400:
            provider_requests_total.labels(provider=self.name, method=label, status="error").inc()
            raise TaskGatewayError(
                f"Kie.ai {label} failed: {response.status_code}",
                {
                    "http_status": response.status_code,
                    "retry_after": response.headers.get("Retry-After"),
                    "body": response.text[:300],
                },
            )
        try:
            body = response.json()
        except ValueError as e:
            provider_requests_total.labels(provider=self.name, method=label, status="error").inc()
            raise TaskGatewayError(
                f"Kie.ai {label} returned non-JSON body", {"body": response.text[:300]}
            ) from e

        code = body.get("code")
        if code is not None and code != 200:
            provider_requests_total.labels(provider=self.name, method=label, status="rejected").inc()
            raise TaskGatewayError(
                f"Kie.ai {label} rejected: {code} {body.get('msg', '')}".strip(),
                {"provider_code": code, "body": str(body)[:300]},
            )
        provider_requests_total.labels(provider=self.name, method=label, status="success").inc()
        return body

    def submit(self, request: TaskSubmission) -> str:
        if not self.is_available():
            raise TaskGatewayError("Kie.ai API key not configured", {"not_configured": True})

        task_input: dict[str, Any] = {
            "prompt": request.prompt,
            "output_format": request.output_format,
            "image_size": request.aspect_ratio,
        }
        if request.reference_images:
            task_input["image_input"] = list(request.reference_images[: self.max_reference_images])

        payload: dict[str, Any] = {"model": self.model, "input": task_input}
        if request.callback_url:
            payload["callBackUrl"] = request.callback_url

        body = self._call(self._submit_raw, payload)
        data = body.get("data") or {}
        task_id = data.get("taskId") or body.get("taskId")
        if not task_id:
            raise TaskGatewayError(
                "No taskId returned from Kie.ai", {"body": str(body)[:300]}
            )
        logger.info("kie_task_created", extra={"provider_task_id": task_id})
        return task_id

    def _submit_raw(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/jobs/createTask", json=payload)

    def _poll_raw(self, provider_task_id: str) -> dict[str, Any]:
        return self._request("GET", "/jobs/recordInfo", params={"taskId": provider_task_id})

    def poll(self, provider_task_id: str) -> TaskStatus:
        if not self.is_available():
            raise TaskGatewayError("Kie.ai API key not configured", {"not_configured": True})
        body = self._call(self._poll_raw, provider_task_id)
        data = body.get("data") or {}
        data.setdefault("taskId", provider_task_id)
        return parse_record(data)
