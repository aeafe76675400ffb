"""Models package."""

from startup_pulse.models.analysis import (
    AnalysisRequest,
    AnalysisResult,
    Founder,
    error_payload,
    is_error_payload,
)
from startup_pulse.models.sentiment import (
    AggregatedSentiment,
    AspectSentiment,
    AspectSummary,
    BatchSentimentResult,
    BatchSummary,
    SentimentCategory,
    SentimentRecord,
    TextItem,
    placeholder_record,
)
from startup_pulse.models.state import (
    PhaseState,
    RetryPolicy,
    TaskState,
    TaskStatus,
    WorkflowEvent,
    WorkflowState,
    WorkflowStatus,
)

__all__ = [
    "AggregatedSentiment",
    "AnalysisRequest",
    "AnalysisResult",
    "AspectSentiment",
    "AspectSummary",
    "BatchSentimentResult",
    "BatchSummary",
    "Founder",
    "PhaseState",
    "RetryPolicy",
    "SentimentCategory",
    "SentimentRecord",
    "TaskState",
    "TaskStatus",
    "TextItem",
    "WorkflowEvent",
    "WorkflowState",
    "WorkflowStatus",
    "error_payload",
    "is_error_payload",
    "placeholder_record",
]
