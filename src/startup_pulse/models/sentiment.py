"""Sentiment result models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SentimentCategory(str, Enum):
    """Sentiment categories in tie-breaking order."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


CATEGORY_ORDER = tuple(SentimentCategory)


def _unit_interval(v: float) -> float:
    return min(1.0, max(0.0, float(v)))


def _count(v) -> int:
    """Engagement count from an opaque connector value; 0 when unreadable."""
    if isinstance(v, bool):
        return 0
    try:
        return max(0, int(float(v)))
    except (TypeError, ValueError, OverflowError):
        return 0


def text_list(v) -> list[str]:
    """Normalise a loosely typed list of labels; a bare string is one label."""
    if isinstance(v, str):
        v = [v]
    if not isinstance(v, (list, tuple)):
        return []
    return [str(t).strip() for t in v if t is not None and str(t).strip()]


class AspectSentiment(BaseModel):
    """Sentiment expressed about one aspect of the subject."""

    model_config = ConfigDict(frozen=True)

    aspect: str
    sentiment: SentimentCategory = SentimentCategory.NEUTRAL
    score: float = 0.5
    insight: str | None = None

    @field_validator("aspect")
    @classmethod
    def aspect_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("aspect is required")
        return v.strip()

    @field_validator("sentiment", mode="before")
    @classmethod
    def normalize_sentiment(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        return _unit_interval(v)


class SentimentRecord(BaseModel):
    """Per-text sentiment result."""

    category: SentimentCategory = Field(alias="sentiment")
    score: float
    confidence: float
    aspects: list[AspectSentiment] = []
    themes: list[str] = []
    nuance: str | None = None
    business_context: str | None = None
    provider_id: str | None = None
    degraded: bool = False

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("score", "confidence")
    @classmethod
    def clamp_unit(cls, v: float) -> float:
        return _unit_interval(v)

    @field_validator("themes", mode="before")
    @classmethod
    def drop_blank_themes(cls, v):
        return text_list(v)

    @field_validator("aspects", mode="before")
    @classmethod
    def default_aspects(cls, v):
        return [] if v is None else v


def placeholder_record(provider_id: str | None = None) -> SentimentRecord:
    """Neutral record substituted when no provider produced a result."""
    return SentimentRecord(
        category=SentimentCategory.NEUTRAL,
        score=0.5,
        confidence=0.5,
        provider_id=provider_id,
        degraded=True,
    )


class BatchSummary(BaseModel):
    """Batch-level summary returned by the model."""

    model_config = ConfigDict(frozen=True)

    overall_sentiment: str = "unknown"
    key_themes: list[str] = []
    business_implications: str = ""


class BatchSentimentResult(BaseModel):
    """Result of analysing one batch of texts."""

    model_config = ConfigDict(frozen=True)

    per_item: list[SentimentRecord]
    summary: BatchSummary = BatchSummary()
    provider_id: str | None = None
    degraded: bool = False


class TextItem(BaseModel):
    """Text to analyse plus optional engagement metadata."""

    model_config = ConfigDict(frozen=True)

    text: str
    likes: int = 0
    shares: int = 0
    views: int = 0
    author_verified: bool = False
    has_metadata: bool = False

    @classmethod
    def from_record(cls, record: dict) -> "TextItem | None":
        """Build from a connector record; None when it carries no text."""
        text = record.get("content") or record.get("text") or ""
        if not isinstance(text, str) or not text.strip():
            return None
        engagement = record.get("engagement")
        if not isinstance(engagement, dict):
            engagement = {}
        return cls(
            text=text.strip(),
            likes=_count(engagement.get("likes")),
            shares=_count(engagement.get("shares")),
            views=_count(engagement.get("views")),
            author_verified=bool(record.get("author_verified")),
            has_metadata=True,
        )

    @property
    def is_high_engagement(self) -> bool:
        return self.likes + self.shares > 1000

    @property
    def is_influential(self) -> bool:
        return self.author_verified or self.views > 10000


class AspectSummary(BaseModel):
    """Ranked aspect entry."""

    model_config = ConfigDict(frozen=True)

    aspect: str
    sentiment: SentimentCategory
    count: int


class AggregatedSentiment(BaseModel):
    """Aggregate over every analysed text."""

    model_config = ConfigDict(frozen=True)

    texts_analyzed: int
    dominant_category: SentimentCategory
    mean_score: float
    mean_confidence: float
    distribution: dict[SentimentCategory, int]
    top_aspects: list[AspectSummary] = []
    key_themes: list[str] = []
    business_implications: str = ""
    deep_analyzed: int = 0
    degraded_items: int = 0
    report: str = ""
