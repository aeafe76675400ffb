"""Unit tests for BatchSentimentEngine."""

import asyncio
import json

import pytest

from startup_pulse.models.sentiment import SentimentCategory
from startup_pulse.services.batch_sentiment import (
    STANDARD_LIMITS,
    STRICT_LIMITS,
    BatchSentimentEngine,
    BatchSizeLimits,
    build_batch_prompt,
    get_optimal_batch_size,
)
from startup_pulse.services.cache import create_sentiment_caches
from startup_pulse.services.inference import ErrorKind, InferenceError
from startup_pulse.services.provider_rotator import ProviderRotator
from startup_pulse.services.rate_limiter import RateLimitedQueue


class FakeProvider:
    """Replies per model id; exceptions are raised."""

    def __init__(self, replies: dict):
        self.replies = replies
        self.calls: list[str] = []

    async def invoke(self, prompt: str, model_id: str) -> str:
        self.calls.append(model_id)
        reply = self.replies[model_id]
        if isinstance(reply, Exception):
            raise reply
        return reply


def batch_reply(*categories: str) -> str:
    return json.dumps(
        {
            "results": [
                {"index": i, "sentiment": c, "score": 0.7, "confidence": 0.9}
                for i, c in enumerate(categories)
            ],
            "summary": {"overall_sentiment": "ok", "key_themes": ["ai"], "business_implications": "fine"},
        }
    )


SINGLE_REPLY = json.dumps(
    {"sentiment": "positive", "score": 0.9, "confidence": 0.95, "nuance": "Enthusiastic"}
)


def make_engine(clock, replies, **kwargs):
    provider = FakeProvider(replies)
    rotator = ProviderRotator(["model-a", "model-b"], clock=clock)
    queue = RateLimitedQueue(max_per_second=2, max_per_minute=100, clock=clock, sleep=clock.sleep)
    engine = BatchSentimentEngine(provider, rotator, queue, create_sentiment_caches(clock), **kwargs)
    return engine, provider, rotator


class TestBatchSizing:
    """Tests for get_optimal_batch_size."""

    def test_empty_input_uses_min(self):
        assert get_optimal_batch_size([]) == 5

    def test_short_texts_clamp_to_max(self):
        assert get_optimal_batch_size(["x" * 400] * 3) == 25

    def test_long_texts_clamp_to_min(self):
        assert get_optimal_batch_size(["x" * 8000]) == 5

    def test_mid_size(self):
        assert get_optimal_batch_size(["x" * 2000]) == 20

    def test_strict_profile(self):
        assert get_optimal_batch_size(["x" * 400], STRICT_LIMITS) == 10

    def test_blank_texts_use_max(self):
        assert get_optimal_batch_size(["", ""], STANDARD_LIMITS) == 25

    def test_invalid_limits(self):
        with pytest.raises(ValueError, match="max_size must be >= min_size"):
            BatchSizeLimits(min_size=10, max_size=5)


class TestPrompts:
    """Tests for prompt construction."""

    def test_batch_prompt_labels_and_truncates(self):
        prompt = build_batch_prompt(["short", "y" * 600])
        assert '[Text 0]: "short"' in prompt
        assert "[Text 1]" in prompt
        assert "y" * 500 + '..."' in prompt
        assert "y" * 501 not in prompt


class TestAnalyzeBatch:
    """Tests for analyze_batch."""

    @pytest.mark.asyncio
    async def test_primary_success_is_cached(self, clock):
        engine, provider, _ = make_engine(
            clock, {"model-a": batch_reply("positive", "negative"), "model-b": batch_reply("neutral", "neutral")}
        )

        result = await engine.analyze_batch(["great", "awful"])
        again = await engine.analyze_batch(["great", "awful"])

        assert [r.category for r in result.per_item] == [SentimentCategory.POSITIVE, SentimentCategory.NEGATIVE]
        assert result.provider_id == "model-a"
        assert not result.degraded
        assert again == result
        assert provider.calls == ["model-a"]

    @pytest.mark.asyncio
    async def test_falls_back_to_alternate(self, clock):
        engine, provider, rotator = make_engine(
            clock, {"model-a": InferenceError("down"), "model-b": batch_reply("mixed")}
        )

        result = await engine.analyze_batch(["meh"])

        assert provider.calls == ["model-a", "model-b"]
        assert result.provider_id == "model-b"
        assert rotator.stats_for("model-a").recent_errors == 1
        assert rotator.stats_for("model-b").recent_errors == 0

    @pytest.mark.asyncio
    async def test_unparseable_output_falls_back(self, clock):
        engine, provider, _ = make_engine(
            clock, {"model-a": "I cannot comply", "model-b": batch_reply("positive")}
        )

        result = await engine.analyze_batch(["nice"])

        assert result.provider_id == "model-b"

    @pytest.mark.asyncio
    async def test_mistyped_fields_do_not_escape(self, clock):
        mistyped = json.dumps(
            {
                "results": [{"index": 0, "sentiment": "positive", "score": 0.9, "confidence": 0.9, "themes": 5}],
                "summary": {"key_themes": 7},
            }
        )
        engine, provider, _ = make_engine(clock, {"model-a": mistyped, "model-b": batch_reply("positive")})

        result = await engine.analyze_batch(["great product"])

        assert provider.calls == ["model-a"]
        assert result.per_item[0].category == SentimentCategory.POSITIVE
        assert result.per_item[0].themes == []

    @pytest.mark.asyncio
    async def test_unexpected_error_falls_back(self, clock):
        engine, provider, rotator = make_engine(
            clock, {"model-a": RuntimeError("decoder crashed"), "model-b": batch_reply("neutral")}
        )

        result = await engine.analyze_batch(["fine"])

        assert provider.calls == ["model-a", "model-b"]
        assert result.provider_id == "model-b"
        assert rotator.stats_for("model-a").recent_errors == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_in_single_falls_back(self, clock):
        engine, provider, _ = make_engine(
            clock, {"model-a": RuntimeError("decoder crashed"), "model-b": SINGLE_REPLY}
        )

        record = await engine.analyze_single("love it")

        assert provider.calls == ["model-a", "model-b"]
        assert record.category == SentimentCategory.POSITIVE

    @pytest.mark.asyncio
    async def test_all_providers_fail_degrades(self, clock):
        engine, provider, _ = make_engine(
            clock,
            {
                "model-a": InferenceError("down"),
                "model-b": InferenceError("slow", kind=ErrorKind.TIMEOUT),
            },
        )

        result = await engine.analyze_batch(["a", "b", "c"])

        assert result.degraded
        assert len(result.per_item) == 3
        assert all(r.degraded and r.score == 0.5 for r in result.per_item)
        assert result.summary.overall_sentiment == "unknown"

        await engine.analyze_batch(["a", "b", "c"])
        assert len(provider.calls) == 4

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, clock):
        class SlowProvider(FakeProvider):
            async def invoke(self, prompt, model_id):
                if model_id == "model-a":
                    await asyncio.sleep(1)
                return await super().invoke(prompt, model_id)

        provider = SlowProvider({"model-a": batch_reply("negative"), "model-b": batch_reply("positive")})
        rotator = ProviderRotator(["model-a", "model-b"], clock=clock)
        queue = RateLimitedQueue(clock=clock, sleep=clock.sleep)
        engine = BatchSentimentEngine(provider, rotator, queue, create_sentiment_caches(clock), timeout=0.01)

        result = await engine.analyze_batch(["x"])

        assert result.provider_id == "model-b"
        assert rotator.stats_for("model-a").recent_errors == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, clock):
        engine, provider, _ = make_engine(clock, {})
        result = await engine.analyze_batch([])
        assert result.per_item == []
        assert provider.calls == []


class TestAnalyzeSingle:
    """Tests for analyze_single."""

    @pytest.mark.asyncio
    async def test_uses_preferred_provider_and_caches(self, clock):
        engine, provider, _ = make_engine(
            clock, {"model-a": "nope", "model-b": SINGLE_REPLY}, preferred_provider="model-b"
        )

        record = await engine.analyze_single("love it")
        again = await engine.analyze_single("love it")

        assert record.category == SentimentCategory.POSITIVE
        assert record.nuance == "Enthusiastic"
        assert record.provider_id == "model-b"
        assert again == record
        assert provider.calls == ["model-b"]

    @pytest.mark.asyncio
    async def test_falls_back_then_placeholder(self, clock):
        engine, provider, _ = make_engine(
            clock, {"model-a": InferenceError("down"), "model-b": InferenceError("down")}
        )

        record = await engine.analyze_single("hmm")

        assert record.degraded
        assert record.category == SentimentCategory.NEUTRAL
        assert provider.calls == ["model-a", "model-b"]

    def test_unknown_preferred_provider_raises(self, clock):
        with pytest.raises(ValueError, match="Unknown preferred provider"):
            make_engine(clock, {}, preferred_provider="model-z")
