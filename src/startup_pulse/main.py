"""Main entry point for the analysis API server."""

import argparse
import logging
import os
import sys

import redis.asyncio as redis
import uvicorn
from fastapi import FastAPI

from startup_pulse.api.app import StartupPulseAPI
from startup_pulse.config import LOG_LEVELS, Settings
from startup_pulse.services.batch_sentiment import BatchSentimentEngine
from startup_pulse.services.cache import create_sentiment_caches
from startup_pulse.services.connectors import build_http_connectors
from startup_pulse.services.document_store import RedisDocumentStore
from startup_pulse.services.durations import ConfigurationError
from startup_pulse.services.inference import HttpInferenceProvider
from startup_pulse.services.log_service import configure_logging
from startup_pulse.services.provider_rotator import ProviderRotator
from startup_pulse.services.rate_limiter import RateLimitedQueue
from startup_pulse.services.scheduler import PeriodicScheduler
from startup_pulse.services.sentiment_aggregator import SentimentAggregator
from startup_pulse.services.state_store import RedisStateStore
from startup_pulse.services.workflow import AnalysisWorkflow
from startup_pulse.services.workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)


def get_redis_client(settings: Settings) -> redis.Redis:
    """Create Redis client from settings."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create FastAPI application with all dependencies."""
    settings = settings or Settings.from_env()
    redis_client = get_redis_client(settings)
    scheduler = PeriodicScheduler()

    caches = create_sentiment_caches()
    caches.attach(scheduler)
    rotator = ProviderRotator(list(settings.model_ids))
    rotator.attach(scheduler)
    queue = RateLimitedQueue(
        max_per_second=settings.rate_limit_per_second,
        max_per_minute=settings.rate_limit_per_minute,
        max_retries=settings.rate_limit_max_retries,
        retry_delay=settings.rate_limit_retry_delay,
        backoff_multiplier=settings.rate_limit_backoff,
        name="inference",
    )
    engine = BatchSentimentEngine(
        HttpInferenceProvider(settings.inference_base_url, timeout=settings.inference_timeout),
        rotator,
        queue,
        caches,
        timeout=settings.inference_timeout,
        batch_limits=settings.batch_limits,
    )

    document_store = RedisDocumentStore(redis_client)
    state_store = RedisStateStore(redis_client)
    aggregator = SentimentAggregator(engine, cache=caches.analysis, store=document_store)
    workflow = AnalysisWorkflow(
        build_http_connectors(settings.connector_base_url),
        aggregator,
        document_store,
        recorder=state_store,
    )

    api = StartupPulseAPI(WorkflowEngine(workflow, state_store), scheduler)
    return api.create_app()


def main() -> int:
    """Run the analysis API server."""
    parser = argparse.ArgumentParser(description="Startup Pulse API Server")
    parser.add_argument(
        "--host",
        default=os.environ.get("HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", "8000")),
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        default=None,
        help="Log level (default: LOG_LEVEL or info)",
    )
    args = parser.parse_args()

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})

    configure_logging(settings)

    logger.info("Starting analysis API server")
    logger.info(f"Redis: {settings.redis_url}")
    logger.info(f"Models: {', '.join(settings.model_ids)}")

    app = create_app(settings)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level)
    return 0


def get_app() -> FastAPI:
    """Get or create the FastAPI application (for uvicorn import)."""
    return create_app()


if __name__ == "__main__":
    sys.exit(main())
