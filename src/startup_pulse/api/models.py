"""Request and response models for REST API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class MonitorSubmitRequest(BaseModel):
    """Request to start periodic monitoring of a subject."""

    model_config = ConfigDict(extra="forbid")

    subject_name: str
    interval: str = "1h"
    duration: str = "24h"

    @field_validator("subject_name")
    @classmethod
    def subject_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("subject_name is required")
        return v.strip()


class RunSubmitResponse(BaseModel):
    """Response from run submission."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    status: str


class RunStatusResponse(BaseModel):
    """Response for run status."""

    model_config = ConfigDict(frozen=True)

    workflow_id: str
    subject: str
    status: str
    event_count: int
    is_running: bool
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    error: str | None = None


class CancelResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_id: str
    cancelled: bool


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(frozen=True)

    status: str
    active_runs: int = 0


class ErrorResponse(BaseModel):
    """Error response."""

    model_config = ConfigDict(frozen=True)

    detail: str
