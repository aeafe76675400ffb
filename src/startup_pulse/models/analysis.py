"""Request and result models for startup analysis runs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from startup_pulse.models.sentiment import AggregatedSentiment
from startup_pulse.models.state import WorkflowStatus


class Founder(BaseModel):
    """Founder entry with optional social handles."""

    model_config = ConfigDict(frozen=True)

    name: str
    twitter: str | None = None
    linkedin: str | None = None
    bluesky: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("founder name is required")
        return v.strip()


class AnalysisRequest(BaseModel):
    """Input for one analysis run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    subject_name: str
    website: str | None = None
    social_accounts: dict[str, str] = {}
    founders: list[Founder] = []
    keywords: list[str] = []
    competitors: list[str] = []

    @field_validator("subject_name")
    @classmethod
    def subject_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("subject_name is required")
        return v.strip()

    @field_validator("keywords", "competitors")
    @classmethod
    def drop_blank_entries(cls, v: list[str]) -> list[str]:
        return [item.strip() for item in v if item and item.strip()]


class AnalysisResult(BaseModel):
    """Merged output of an analysis run."""

    workflow_id: str
    subject_name: str
    website: str | None = None
    social_accounts: dict[str, str] = {}
    founders: list[Founder] = []
    analyzed_at: datetime
    status: WorkflowStatus
    data_sources: dict[str, Any] = {}
    sentiment: AggregatedSentiment | None = None
    sentiment_error: str | None = None
    persisted: bool = False
    report: str = ""

    @property
    def failed_sources(self) -> list[str]:
        return [k for k, v in self.data_sources.items() if is_error_payload(v)]


ERROR_PREFIX = "Error: "


def error_payload(error: str) -> str:
    """Slot value recorded when a task exhausts its retries."""
    return f"{ERROR_PREFIX}{error}"


def is_error_payload(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(ERROR_PREFIX)
