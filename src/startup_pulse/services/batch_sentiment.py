"""Batched sentiment analysis with provider rotation and fallback."""

import asyncio
import logging
import math
from dataclasses import dataclass

from startup_pulse.models.sentiment import (
    BatchSentimentResult,
    BatchSummary,
    SentimentRecord,
    placeholder_record,
)
from startup_pulse.services.cache import SentimentCaches, fingerprint
from startup_pulse.services.inference import (
    ErrorKind,
    InferenceError,
    InferenceProvider,
)
from startup_pulse.services.provider_rotator import ProviderRotator
from startup_pulse.services.rate_limiter import RateLimitedQueue
from startup_pulse.services.sentiment_parser import (
    SentimentParseError,
    parse_batch_response,
    parse_single_response,
)

logger = logging.getLogger(__name__)

TARGET_TOKENS_PER_BATCH = 10_000
CHARS_PER_TOKEN = 4
MAX_TEXT_CHARS = 500
BATCH_CACHE_TTL = 600.0


@dataclass(frozen=True)
class BatchSizeLimits:
    """Clamp range for batch sizes."""

    min_size: int = 5
    max_size: int = 25

    def __post_init__(self):
        if self.min_size < 1:
            raise ValueError("min_size must be at least 1")
        if self.max_size < self.min_size:
            raise ValueError("max_size must be >= min_size")


STANDARD_LIMITS = BatchSizeLimits(min_size=5, max_size=25)
# Smaller batches when long outputs risk truncation
STRICT_LIMITS = BatchSizeLimits(min_size=5, max_size=10)

BATCH_PROFILES = {"standard": STANDARD_LIMITS, "strict": STRICT_LIMITS}


def get_optimal_batch_size(
    texts: list[str],
    limits: BatchSizeLimits = STANDARD_LIMITS,
    target_tokens: int = TARGET_TOKENS_PER_BATCH,
) -> int:
    """Texts per batch so one batch stays near target_tokens."""
    if not texts:
        return limits.min_size
    average_length = sum(len(t) for t in texts) / len(texts)
    tokens_per_text = math.ceil(average_length / CHARS_PER_TOKEN)
    if tokens_per_text == 0:
        return limits.max_size
    size = target_tokens // tokens_per_text
    return max(limits.min_size, min(limits.max_size, size))


def _truncate(text: str) -> str:
    if len(text) > MAX_TEXT_CHARS:
        return text[:MAX_TEXT_CHARS] + "..."
    return text


def build_batch_prompt(texts: list[str]) -> str:
    formatted = "\n\n".join(
        f'[Text {index}]: "{_truncate(text)}"' for index, text in enumerate(texts)
    )
    return f"""You are a sentiment analysis API. Analyze these {len(texts)} texts and return ONLY valid JSON with no additional text or explanation.

{formatted}

Return JSON in exactly this format, with one entry per text using the text's number as "index":
{{
  "results": [
    {{
      "index": 0,
      "sentiment": "positive",
      "score": 0.85,
      "confidence": 0.92,
      "aspects": [
        {{"aspect": "product quality", "sentiment": "positive", "score": 0.9}}
      ],
      "themes": ["innovation", "pricing"]
    }}
  ],
  "summary": {{
    "overall_sentiment": "mostly positive",
    "key_themes": ["AI technology", "customer satisfaction"],
    "business_implications": "Strong positive reception with some pricing sensitivity"
  }}
}}

sentiment must be one of: positive, negative, neutral, mixed.
IMPORTANT: Return ONLY the JSON object. No markdown, no explanations, no additional text."""


def build_single_prompt(text: str) -> str:
    return f"""Analyze this text for deep sentiment insights. Provide:
1. Overall sentiment with nuanced understanding (not just positive/negative)
2. Key themes and aspects being discussed
3. Underlying emotions and concerns
4. Business implications for a startup

Text: "{text}"

Respond in JSON format:
{{
  "sentiment": "positive|negative|neutral|mixed",
  "score": 0.85,
  "confidence": 0.92,
  "nuance": "Excited but cautious about scalability",
  "aspects": [
    {{"aspect": "product innovation", "sentiment": "positive", "score": 0.9, "insight": "Users love the AI features"}}
  ],
  "themes": ["AI innovation", "enterprise readiness"],
  "business_implications": "Strong product-market fit in enterprise, needs better SMB pricing"
}}"""


def degraded_batch(count: int, reason: str) -> BatchSentimentResult:
    """Placeholder result for every item when no provider succeeded."""
    return BatchSentimentResult(
        per_item=[placeholder_record() for _ in range(count)],
        summary=BatchSummary(
            overall_sentiment="unknown",
            business_implications=f"Analysis unavailable - {reason}",
        ),
        degraded=True,
    )


@dataclass(frozen=True)
class AttemptOutcome:
    provider_id: str
    result: BatchSentimentResult | SentimentRecord | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class BatchSentimentEngine:
    """Analyses batches of texts through rotated, rate-limited providers."""

    def __init__(
        self,
        provider: InferenceProvider,
        rotator: ProviderRotator,
        queue: RateLimitedQueue,
        caches: SentimentCaches,
        timeout: float = 60.0,
        batch_limits: BatchSizeLimits = STANDARD_LIMITS,
        preferred_provider: str | None = None,
    ):
        if provider is None:
            raise ValueError("provider is required")
        if rotator is None:
            raise ValueError("rotator is required")
        if queue is None:
            raise ValueError("queue is required")
        if caches is None:
            raise ValueError("caches is required")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if preferred_provider is not None and preferred_provider not in rotator.provider_ids:
            raise ValueError(f"Unknown preferred provider: {preferred_provider}")

        self._provider = provider
        self._rotator = rotator
        self._queue = queue
        self._caches = caches
        self._timeout = timeout
        self._batch_limits = batch_limits
        self._preferred = preferred_provider or rotator.provider_ids[0]

    @property
    def batch_limits(self) -> BatchSizeLimits:
        return self._batch_limits

    def optimal_batch_size(self, texts: list[str]) -> int:
        return get_optimal_batch_size(texts, self._batch_limits)

    async def analyze_batch(self, texts: list[str]) -> BatchSentimentResult:
        """Analyse texts in one provider call. Never raises for provider failures."""
        if not texts:
            return BatchSentimentResult(per_item=[])

        cache_key = fingerprint(texts, prefix="batch_")
        cached = self._caches.batch.get(cache_key)
        if cached is not None:
            logger.debug("Using cached batch sentiment result")
            return cached

        prompt = build_batch_prompt(texts)
        primary = self._rotator.next_provider()
        errors = []

        for provider_id in self._fallback_chain(primary):
            outcome = await self._attempt_batch(provider_id, prompt, len(texts))
            self._rotator.record_result(provider_id, outcome.ok)
            if outcome.ok:
                self._caches.batch.set(cache_key, outcome.result, BATCH_CACHE_TTL)
                logger.debug(f"Provider stats: {self._rotator.get_stats()}")
                return outcome.result
            errors.append(f"{provider_id}: {outcome.error}")
            logger.warning(f"Batch sentiment via {provider_id} failed: {outcome.error}")

        logger.error(
            f"All providers failed for batch of {len(texts)} texts, "
            f"using degraded placeholders: {'; '.join(errors)}"
        )
        return degraded_batch(len(texts), "all models failed")

    async def analyze_single(self, text: str) -> SentimentRecord:
        """Higher-fidelity analysis of one text. Never raises for provider failures."""
        cache_key = fingerprint([text], prefix="item_")
        cached = self._caches.item.get(cache_key)
        if cached is not None:
            logger.debug("Using cached sentiment result")
            return cached

        prompt = build_single_prompt(text)
        for provider_id in self._fallback_chain(self._preferred):
            outcome = await self._attempt_single(provider_id, prompt)
            self._rotator.record_result(provider_id, outcome.ok)
            if outcome.ok:
                self._caches.item.set(cache_key, outcome.result)
                return outcome.result
            logger.warning(f"Deep sentiment via {provider_id} failed: {outcome.error}")

        logger.error("All providers failed for single-text analysis, using placeholder")
        return placeholder_record()

    def _fallback_chain(self, primary: str) -> list[str]:
        chain = [primary]
        alternate = self._rotator.alternate_for(primary)
        if alternate is not None and alternate != primary:
            chain.append(alternate)
        return chain

    async def _attempt_batch(self, provider_id: str, prompt: str, count: int) -> AttemptOutcome:
        try:
            raw = await self._invoke(provider_id, prompt)
            records, summary, missing = parse_batch_response(raw, count, provider_id)
        except (InferenceError, SentimentParseError) as e:
            return AttemptOutcome(provider_id=provider_id, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error handling output from {provider_id}")
            return AttemptOutcome(provider_id=provider_id, error=f"{type(e).__name__}: {e}")

        if missing:
            logger.warning(f"{provider_id} omitted {missing} of {count} results")
        result = BatchSentimentResult(
            per_item=records,
            summary=summary,
            provider_id=provider_id,
        )
        return AttemptOutcome(provider_id=provider_id, result=result)

    async def _attempt_single(self, provider_id: str, prompt: str) -> AttemptOutcome:
        try:
            raw = await self._invoke(provider_id, prompt)
            record = parse_single_response(raw, provider_id)
        except (InferenceError, SentimentParseError) as e:
            return AttemptOutcome(provider_id=provider_id, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error handling output from {provider_id}")
            return AttemptOutcome(provider_id=provider_id, error=f"{type(e).__name__}: {e}")
        return AttemptOutcome(provider_id=provider_id, result=record)

    async def _invoke(self, provider_id: str, prompt: str) -> str:
        return await self._queue.execute(lambda: self._call(provider_id, prompt))

    async def _call(self, provider_id: str, prompt: str) -> str:
        try:
            return await asyncio.wait_for(
                self._provider.invoke(prompt, provider_id), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise InferenceError(
                f"No response within {self._timeout}s",
                kind=ErrorKind.TIMEOUT,
                provider_id=provider_id,
            ) from e
