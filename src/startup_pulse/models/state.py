"""State models for analysis runs, phases and tasks."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class WorkflowStatus(str, Enum):
    """Analysis run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            WorkflowStatus.COMPLETED,
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        )


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RetryPolicy(BaseModel):
    """Exponential backoff policy applied to every workflow task."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 5
    initial_delay: float = 2.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must be non-negative")
        return v

    @field_validator("backoff_multiplier")
    @classmethod
    def validate_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        return v

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = self.initial_delay * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_delay)


class TaskState(BaseModel):
    """State of one unit of work inside a phase."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: TaskStatus = TaskStatus.SCHEDULED
    attempts: int = 0
    last_error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


def begin_attempt(task: TaskState, now: datetime) -> TaskState:
    """Scheduled -> Executing."""
    if task.status not in (TaskStatus.SCHEDULED, TaskStatus.RETRYING):
        raise ValueError(f"Cannot start task {task.name} from {task.status.value}")
    return task.model_copy(
        update={
            "status": TaskStatus.EXECUTING,
            "attempts": task.attempts + 1,
            "started_at": task.started_at or now,
        }
    )


def complete_attempt(task: TaskState, now: datetime) -> TaskState:
    """Executing -> Succeeded."""
    if task.status != TaskStatus.EXECUTING:
        raise ValueError(f"Cannot complete task {task.name} from {task.status.value}")
    return task.model_copy(
        update={"status": TaskStatus.SUCCEEDED, "finished_at": now, "last_error": None}
    )


def fail_attempt(
    task: TaskState,
    error: str,
    policy: RetryPolicy,
    now: datetime,
    allow_retry: bool = True,
) -> TaskState:
    """Executing -> Retrying, or Failed once attempts are exhausted."""
    if task.status != TaskStatus.EXECUTING:
        raise ValueError(f"Cannot fail task {task.name} from {task.status.value}")
    if allow_retry and task.attempts < policy.max_attempts:
        return task.model_copy(
            update={"status": TaskStatus.RETRYING, "last_error": error}
        )
    return task.model_copy(
        update={"status": TaskStatus.FAILED, "last_error": error, "finished_at": now}
    )


class PhaseState(BaseModel):
    """Ordered group of tasks executed concurrently."""

    model_config = ConfigDict(frozen=True)

    name: str
    tasks: list[TaskState] = []

    @property
    def is_complete(self) -> bool:
        return all(t.is_terminal for t in self.tasks)

    def with_task(self, task: TaskState) -> "PhaseState":
        tasks = [task if t.name == task.name else t for t in self.tasks]
        return self.model_copy(update={"tasks": tasks})


class WorkflowState(BaseModel):
    """State of one analysis run."""

    workflow_id: str
    subject: str
    status: WorkflowStatus
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    phases: list[PhaseState] = []
    slots: dict[str, Any] = {}
    event_count: int = 0
    error: str | None = None

    @model_validator(mode="after")
    def validate_completion(self) -> "WorkflowState":
        if self.completed_at is not None and not self.status.is_terminal:
            raise ValueError("completed_at is only valid for terminal runs")
        return self


class WorkflowEvent(BaseModel):
    """History entry recorded for a run."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    kind: str
    timestamp: datetime
    phase: str | None = None
    task: str | None = None
    detail: str | None = None
