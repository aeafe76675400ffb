"""Extraction of structured sentiment from free-text model output."""

import json
import logging
import re
from typing import Any, Callable

from pydantic import ValidationError

from startup_pulse.models.sentiment import (
    AspectSentiment,
    BatchSummary,
    SentimentRecord,
    placeholder_record,
    text_list,
)

logger = logging.getLogger(__name__)

_BRACES = re.compile(r"\{[\s\S]*\}")
_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class SentimentParseError(Exception):
    """Raised when no extraction strategy yields the expected shape."""

    pass


def _whole(text: str) -> str | None:
    return text.strip() or None


def _largest_braces(text: str) -> str | None:
    match = _BRACES.search(text)
    return match.group(0) if match else None


def _fenced_block(text: str) -> str | None:
    match = _FENCE.search(text)
    return match.group(1) if match else None


EXTRACTION_STRATEGIES: list[tuple[str, Callable[[str], str | None]]] = [
    ("whole", _whole),
    ("braces", _largest_braces),
    ("fenced", _fenced_block),
]


def extract_json_object(text: str, required_key: str | None = None) -> dict[str, Any]:
    """Try each strategy in order until one yields a JSON object."""
    if not text:
        raise SentimentParseError("Empty model output")

    for name, strategy in EXTRACTION_STRATEGIES:
        candidate = strategy(text)
        if candidate is None:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue
        if required_key is not None and required_key not in data:
            continue
        logger.debug(f"Parsed model output using {name} strategy")
        return data

    preview = text[:200].replace("\n", " ")
    raise SentimentParseError(f"No JSON object found in model output: {preview}")


def parse_batch_response(
    text: str,
    expected_count: int,
    provider_id: str | None = None,
) -> tuple[list[SentimentRecord], BatchSummary, int]:
    """Parse a batch response into exactly expected_count records.

    Returns (records, summary, missing) where missing counts items the
    model skipped or returned malformed; those become degraded placeholders.
    """
    data = extract_json_object(text, required_key="results")
    results = data.get("results")
    if not isinstance(results, list):
        raise SentimentParseError("Invalid result structure: results is not an array")

    records: dict[int, SentimentRecord] = {}
    for position, raw in enumerate(results):
        if not isinstance(raw, dict):
            continue
        index = raw.get("index", position)
        if not isinstance(index, int) or not 0 <= index < expected_count:
            continue
        if index in records:
            continue
        record = _coerce_record(raw, provider_id)
        if record is not None:
            records[index] = record

    if not records and expected_count:
        raise SentimentParseError("Model output contained no usable results")

    ordered = []
    missing = 0
    for index in range(expected_count):
        if index in records:
            ordered.append(records[index])
        else:
            missing += 1
            ordered.append(placeholder_record(provider_id))

    return ordered, _coerce_summary(data.get("summary")), missing


def parse_single_response(text: str, provider_id: str | None = None) -> SentimentRecord:
    """Parse a single-item deep analysis response."""
    data = extract_json_object(text, required_key="sentiment")
    record = _coerce_record(data, provider_id)
    if record is None:
        raise SentimentParseError("Model output did not match the sentiment shape")
    return record


def _coerce_record(raw: dict[str, Any], provider_id: str | None) -> SentimentRecord | None:
    payload = {
        "sentiment": raw.get("sentiment"),
        "score": raw.get("score", 0.5),
        "confidence": raw.get("confidence", 0.5),
        "aspects": _coerce_aspects(raw.get("aspects")),
        "themes": raw.get("themes"),
        "nuance": raw.get("nuance"),
        "business_context": raw.get("business_implications"),
        "provider_id": provider_id,
    }
    try:
        return SentimentRecord.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"Discarding malformed result item: {e.error_count()} errors")
        return None


def _coerce_aspects(raw: Any) -> list[AspectSentiment]:
    if not isinstance(raw, list):
        return []
    aspects = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            aspects.append(AspectSentiment.model_validate(item))
        except ValidationError:
            continue
    return aspects


def _coerce_summary(raw: Any) -> BatchSummary:
    if not isinstance(raw, dict):
        return BatchSummary()
    try:
        return BatchSummary.model_validate(
            {
                "overall_sentiment": raw.get("overall_sentiment") or "unknown",
                "key_themes": text_list(raw.get("key_themes")),
                "business_implications": raw.get("business_implications") or "",
            }
        )
    except ValidationError:
        return BatchSummary()
