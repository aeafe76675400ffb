"""Sentiment aggregation over arbitrary text sets."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

from startup_pulse.models.sentiment import (
    CATEGORY_ORDER,
    AggregatedSentiment,
    AspectSummary,
    BatchSummary,
    SentimentCategory,
    SentimentRecord,
    TextItem,
    placeholder_record,
)
from startup_pulse.services.batch_sentiment import BatchSentimentEngine
from startup_pulse.services.cache import TTLCache, fingerprint
from startup_pulse.services.document_store import DocumentStore

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = 0.6
MAX_DEEP_ITEMS = 10
MAX_DEEP_TEXTS = 5
TOP_ASPECTS = 5
MAX_THEMES = 10
INTER_BATCH_DELAY = 0.5
SENTIMENT_COLLECTION = "sentiment_analysis"


def to_text_item(value: str | TextItem) -> TextItem:
    if isinstance(value, TextItem):
        return value
    return TextItem(text=value)


def select_high_impact(items: Sequence[TextItem], records: Sequence[SentimentRecord]) -> list[int]:
    """Indexes worth a second, higher-fidelity pass."""
    limit = MAX_DEEP_ITEMS if any(i.has_metadata for i in items) else MAX_DEEP_TEXTS
    selected = []
    for index, (item, record) in enumerate(zip(items, records)):
        if len(selected) >= limit:
            break
        if item.is_high_engagement or item.is_influential or record.confidence < LOW_CONFIDENCE:
            selected.append(index)
    return selected


def _majority(counts: dict[SentimentCategory, int]) -> SentimentCategory:
    # max() keeps the first maximum, so ties resolve in CATEGORY_ORDER
    return max(CATEGORY_ORDER, key=lambda c: counts[c])


def aggregate_records(
    records: Sequence[SentimentRecord],
    summaries: Sequence[BatchSummary] = (),
    deep_analyzed: int = 0,
) -> AggregatedSentiment:
    """Pure reduction of per-item records into an aggregate."""
    distribution = {c: 0 for c in CATEGORY_ORDER}
    if not records:
        return AggregatedSentiment(
            texts_analyzed=0,
            dominant_category=SentimentCategory.NEUTRAL,
            mean_score=0.0,
            mean_confidence=0.0,
            distribution=distribution,
        )

    aspect_counts: dict[str, dict[SentimentCategory, int]] = {}
    for record in records:
        distribution[record.category] += 1
        for aspect in record.aspects:
            counts = aspect_counts.setdefault(aspect.aspect, {c: 0 for c in CATEGORY_ORDER})
            counts[aspect.sentiment] += 1

    aspects = [
        AspectSummary(aspect=name, sentiment=_majority(counts), count=sum(counts.values()))
        for name, counts in aspect_counts.items()
    ]
    aspects.sort(key=lambda a: a.count, reverse=True)

    themes: list[str] = []
    for theme in [t for s in summaries for t in s.key_themes] + [t for r in records for t in r.themes]:
        if theme not in themes:
            themes.append(theme)

    implications: list[str] = []
    for text in [s.business_implications for s in summaries] + [r.business_context for r in records]:
        if text and text not in implications:
            implications.append(text)

    return AggregatedSentiment(
        texts_analyzed=len(records),
        dominant_category=_majority(distribution),
        mean_score=sum(r.score for r in records) / len(records),
        mean_confidence=sum(r.confidence for r in records) / len(records),
        distribution=distribution,
        top_aspects=aspects[:TOP_ASPECTS],
        key_themes=themes[:MAX_THEMES],
        business_implications="\n".join(implications),
        deep_analyzed=deep_analyzed,
        degraded_items=sum(1 for r in records if r.degraded),
    )


def format_sentiment_report(aggregate: AggregatedSentiment) -> str:
    """Human-readable block for the final report."""
    total = aggregate.texts_analyzed
    if total == 0:
        return "No texts were available for sentiment analysis.\n"

    lines = ["Sentiment Analysis Results:"]
    analyzed = f"Analyzed {total} text(s)"
    if aggregate.deep_analyzed:
        analyzed += f" ({aggregate.deep_analyzed} with deep analysis)"
    lines.append(analyzed)
    lines.append("")
    lines.append(
        f"Overall Sentiment: {aggregate.dominant_category.value.upper()} "
        f"(score {aggregate.mean_score:.2f}, confidence {aggregate.mean_confidence * 100:.1f}%)"
    )
    lines.append("")
    lines.append("Distribution:")
    for category in CATEGORY_ORDER:
        count = aggregate.distribution.get(category, 0)
        lines.append(f"- {category.value.capitalize()}: {count} ({count / total * 100:.1f}%)")

    if aggregate.degraded_items:
        lines.append("")
        lines.append(f"Note: {aggregate.degraded_items} item(s) could not be analyzed and were scored neutral.")

    if aggregate.top_aspects:
        lines.append("")
        lines.append("Top Aspects:")
        for aspect in aggregate.top_aspects:
            lines.append(f"- {aspect.aspect}: {aspect.sentiment.value} (mentioned {aspect.count} times)")

    if aggregate.key_themes:
        lines.append("")
        lines.append("Key Themes Identified:")
        lines.extend(f"- {theme}" for theme in aggregate.key_themes)

    if aggregate.business_implications:
        lines.append("")
        lines.append("Business Implications:")
        for index, text in enumerate(aggregate.business_implications.split("\n"), start=1):
            lines.append(f"{index}. {text}")

    return "\n".join(lines) + "\n"


class SentimentAggregator:
    """Drives the batch engine over a text set and aggregates the results."""

    def __init__(
        self,
        engine: BatchSentimentEngine,
        cache: TTLCache | None = None,
        store: DocumentStore | None = None,
        inter_batch_delay: float = INTER_BATCH_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if engine is None:
            raise ValueError("engine is required")
        if inter_batch_delay < 0:
            raise ValueError("inter_batch_delay must be non-negative")

        self._engine = engine
        self._cache = cache
        self._store = store
        self._inter_batch_delay = inter_batch_delay
        self._sleep = sleep

    async def analyze(
        self,
        texts: Sequence[str | TextItem],
        deep_analysis: bool = False,
        subject: str | None = None,
    ) -> AggregatedSentiment:
        """Score every text and return the aggregate with its report."""
        items = [to_text_item(t) for t in texts]
        if not items:
            aggregate = aggregate_records([])
            return aggregate.model_copy(update={"report": format_sentiment_report(aggregate)})

        cache_key = fingerprint(
            [i.text for i in items] + [f"deep={deep_analysis}"], prefix="analysis_"
        )
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Using cached sentiment aggregate")
                return cached

        logger.info(f"Analyzing sentiment of {len(items)} texts")
        records, summaries = await self._score(items)

        deep_analyzed = 0
        if deep_analysis:
            deep_analyzed = await self._deepen(items, records)

        aggregate = aggregate_records(records, summaries, deep_analyzed)
        aggregate = aggregate.model_copy(update={"report": format_sentiment_report(aggregate)})

        if self._cache is not None:
            self._cache.set(cache_key, aggregate)
        await self._persist(aggregate, subject)
        return aggregate

    async def _score(
        self, items: list[TextItem]
    ) -> tuple[list[SentimentRecord], list[BatchSummary]]:
        texts = [i.text for i in items]
        size = self._engine.optimal_batch_size(texts)
        logger.debug(f"Using batch size {size}")

        records: list[SentimentRecord | None] = [None] * len(texts)
        summaries: list[BatchSummary] = []

        for start in range(0, len(texts), size):
            batch = texts[start:start + size]
            try:
                result = await self._engine.analyze_batch(batch)
                if len(result.per_item) != len(batch):
                    raise ValueError(
                        f"Expected {len(batch)} results, got {len(result.per_item)}"
                    )
            except Exception:
                logger.exception("Batch sentiment analysis failed, falling back to individual analysis")
                for offset, text in enumerate(batch):
                    records[start + offset] = await self._analyze_individually(text)
            else:
                records[start:start + len(batch)] = result.per_item
                if not result.degraded:
                    summaries.append(result.summary)

            if start + size < len(texts):
                await self._sleep(self._inter_batch_delay)

        return [r if r is not None else placeholder_record() for r in records], summaries

    async def _analyze_individually(self, text: str) -> SentimentRecord:
        try:
            return await self._engine.analyze_single(text)
        except Exception:
            logger.exception("Individual sentiment analysis failed")
            return placeholder_record()

    async def _deepen(self, items: list[TextItem], records: list[SentimentRecord]) -> int:
        selected = select_high_impact(items, records)
        if not selected:
            return 0

        logger.info(f"Running deep analysis on {len(selected)} high-impact texts")
        deepened = 0
        for index in selected:
            record = await self._analyze_individually(items[index].text)
            if record.degraded:
                continue
            records[index] = record
            deepened += 1
        return deepened

    async def _persist(self, aggregate: AggregatedSentiment, subject: str | None) -> None:
        if self._store is None:
            return
        document = aggregate.model_dump(mode="json", exclude={"report"})
        document["subject"] = subject
        document["analyzed_at"] = datetime.now(timezone.utc).isoformat()
        await self._store.save(SENTIMENT_COLLECTION, document)
