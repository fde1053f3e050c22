"""
Task gateway: one prompt -> one provider task; polling of provider tasks.
"""
from app.services.task_gateway.base import (
    TaskGateway,
    TaskGatewayError,
    TaskState,
    TaskStatus,
    TaskSubmission,
)


def get_task_gateway() -> TaskGateway:
    """Шлюз, сконфигурированный из settings (Kie.ai + circuit breaker в Redis)."""
    from app.core.config import settings
    from app.services.circuit_breaker import get_circuit_breaker
    from app.services.task_gateway.kie import KieTaskGateway

    return KieTaskGateway(
        {
            "api_key": settings.kie_api_key,
            "api_url": settings.kie_api_url,
            "model": settings.kie_model,
            "timeout": settings.kie_timeout,
            "max_reference_images": settings.kie_max_reference_images,
        },
        breaker=get_circuit_breaker("task_provider"),
    )


__all__ = [
    "TaskGateway",
    "TaskGatewayError",
    "TaskState",
    "TaskStatus",
    "TaskSubmission",
    "get_task_gateway",
]
