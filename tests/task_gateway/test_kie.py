"""Tests for KieTaskGateway: формат запросов и разбор recordInfo."""
import json

import httpx
import pybreaker
import pytest


def _gateway(handler, **kwargs):
    from app.services.task_gateway.kie import KieTaskGateway

    config = {"api_key": "key", "api_url": "https://kie.test/api/v1", "max_reference_images": 4}
    return KieTaskGateway(config, transport=httpx.MockTransport(handler), **kwargs)


def _submission(**kwargs):
    from app.services.task_gateway.base import TaskSubmission

    return TaskSubmission(
        prompt=kwargs.get("prompt", "portrait"),
        reference_images=kwargs.get("reference_images", [f"https://img/{i}.jpg" for i in range(6)]),
        aspect_ratio="3:4",
        output_format="jpg",
        callback_url=kwargs.get("callback_url", "https://api.example/webhooks/tasks?token=t"),
    )


class TestSubmit:
    def test_create_task_payload(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"code": 200, "data": {"taskId": "task-1"}})

        task_id = _gateway(handler).submit(_submission())

        assert task_id == "task-1"
        assert captured["url"] == "https://kie.test/api/v1/jobs/createTask"
        assert captured["auth"] == "Bearer key"
        body = captured["body"]
        assert body["model"] == "nano-banana-pro"
        assert body["callBackUrl"] == "https://api.example/webhooks/tasks?token=t"
        assert body["input"]["prompt"] == "portrait"
        assert body["input"]["image_size"] == "3:4"
        assert body["input"]["output_format"] == "jpg"
        assert len(body["input"]["image_input"]) == 4

    def test_http_error_carries_status(self):
        from app.services.task_gateway.base import TaskGatewayError

        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "7"}, text="slow down")

        with pytest.raises(TaskGatewayError) as exc:
            _gateway(handler).submit(_submission())
        assert exc.value.detail["http_status"] == 429
        assert exc.value.detail["retry_after"] == "7"

    def test_body_error_code(self):
        from app.services.task_gateway.base import TaskGatewayError

        def handler(request):
            return httpx.Response(200, json={"code": 422, "msg": "bad input"})

        with pytest.raises(TaskGatewayError) as exc:
            _gateway(handler).submit(_submission())
        assert exc.value.detail["provider_code"] == 422

    def test_not_configured(self):
        from app.services.task_gateway.base import TaskGatewayError
        from app.services.task_gateway.kie import KieTaskGateway

        gateway = KieTaskGateway({"api_key": ""})
        assert gateway.is_available() is False
        with pytest.raises(TaskGatewayError) as exc:
            gateway.submit(_submission())
        assert exc.value.detail["not_configured"] is True

    def test_open_circuit_maps_to_gateway_error(self):
        from app.services.task_gateway.base import TaskGatewayError

        breaker = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=60)
        breaker.open()

        def handler(request):
            raise AssertionError("must not be called")

        with pytest.raises(TaskGatewayError) as exc:
            _gateway(handler, breaker=breaker).submit(_submission())
        assert exc.value.detail["circuit_open"] is True


class TestPoll:
    def test_success_with_result_json_string(self):
        from app.services.task_gateway.base import TaskState

        def handler(request):
            assert request.url.params["taskId"] == "task-1"
            return httpx.Response(
                200,
                json={
                    "code": 200,
                    "data": {
                        "taskId": "task-1",
                        "state": "success",
                        "resultJson": json.dumps({"resultUrls": ["https://cdn/1.jpg"]}),
                    },
                },
            )

        status = _gateway(handler).poll("task-1")

        assert status.state == TaskState.SUCCESS
        assert status.result_url == "https://cdn/1.jpg"
        assert status.is_terminal

    @pytest.mark.parametrize("state", ["waiting", "queuing", "generating"])
    def test_pending_states(self, state):
        from app.services.task_gateway.kie import parse_record
        from app.services.task_gateway.base import TaskState

        status = parse_record({"taskId": "t", "state": state})

        assert status.state == TaskState.PENDING
        assert not status.is_terminal

    def test_fail_state_message(self):
        from app.services.task_gateway.kie import parse_record
        from app.services.task_gateway.base import TaskState

        status = parse_record({"taskId": "t", "state": "fail", "failMsg": "nsfw"})

        assert status.state == TaskState.FAILED
        assert status.error == "nsfw"

    def test_success_without_url_is_failure(self):
        from app.services.task_gateway.kie import parse_record
        from app.services.task_gateway.base import TaskState

        status = parse_record({"taskId": "t", "state": "success", "resultJson": "{}"})

        assert status.state == TaskState.FAILED
