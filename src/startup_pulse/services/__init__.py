# Services package

from startup_pulse.services.batch_sentiment import BatchSentimentEngine, BatchSizeLimits
from startup_pulse.services.cache import SentimentCaches, TTLCache, create_sentiment_caches
from startup_pulse.services.connectors import (
    Connector,
    ConnectorError,
    HttpSourceConnector,
    SourceSpec,
    build_http_connectors,
)
from startup_pulse.services.document_store import DocumentStore, RedisDocumentStore
from startup_pulse.services.durations import ConfigurationError, parse_duration
from startup_pulse.services.inference import (
    ErrorKind,
    HttpInferenceProvider,
    InferenceError,
    InferenceProvider,
)
from startup_pulse.services.log_service import SizeAndTimeRotatingHandler, configure_logging
from startup_pulse.services.provider_rotator import ProviderRotator, ProviderStats
from startup_pulse.services.rate_limiter import QueueClearedError, RateLimitedQueue
from startup_pulse.services.report import generate_report
from startup_pulse.services.scheduler import PeriodicScheduler
from startup_pulse.services.sentiment_aggregator import SentimentAggregator
from startup_pulse.services.sentiment_parser import SentimentParseError
from startup_pulse.services.state_store import RedisStateStore, WorkflowNotFoundError
from startup_pulse.services.workflow import AnalysisWorkflow, WorkflowConfig
from startup_pulse.services.workflow_engine import WorkflowEngine

__all__ = [
    "AnalysisWorkflow",
    "BatchSentimentEngine",
    "BatchSizeLimits",
    "ConfigurationError",
    "Connector",
    "ConnectorError",
    "DocumentStore",
    "ErrorKind",
    "HttpInferenceProvider",
    "HttpSourceConnector",
    "InferenceError",
    "InferenceProvider",
    "PeriodicScheduler",
    "ProviderRotator",
    "ProviderStats",
    "QueueClearedError",
    "RateLimitedQueue",
    "RedisDocumentStore",
    "RedisStateStore",
    "SentimentAggregator",
    "SentimentCaches",
    "SentimentParseError",
    "SizeAndTimeRotatingHandler",
    "SourceSpec",
    "TTLCache",
    "WorkflowConfig",
    "WorkflowEngine",
    "WorkflowNotFoundError",
    "build_http_connectors",
    "configure_logging",
    "create_sentiment_caches",
    "generate_report",
    "parse_duration",
]
