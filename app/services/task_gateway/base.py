"""
Base classes and types for the image task provider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskState(str, Enum):
    PENDING = "pending"      # waiting / queuing / generating
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TaskSubmission:
    """Request for one provider task (one prompt)."""
    prompt: str
    reference_images: list[str] = field(default_factory=list)
    aspect_ratio: str = "3:4"
    output_format: str = "jpg"
    callback_url: str | None = None


@dataclass
class TaskStatus:
    """Snapshot of a provider task."""
    provider_task_id: str
    state: TaskState
    result_url: str | None = None
    error: str | None = None
    raw_state: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (TaskState.SUCCESS, TaskState.FAILED)


class TaskGatewayError(Exception):
    """Raised when a provider call fails; detail holds http_status / retry_after for the runner."""
    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


class TaskGateway(ABC):
    """Provider of asynchronous image generation tasks."""

    name = "base"

    def __init__(self, config: dict):
        self.config = config

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def submit(self, request: TaskSubmission) -> str:
        """Create a provider task. Returns provider task id."""
        ...

    @abstractmethod
    def poll(self, provider_task_id: str) -> TaskStatus:
        """Current state of a provider task."""
        ...
