"""Final report rendering over collected slots. Pure, no I/O."""

from typing import Any

from startup_pulse.models.analysis import AnalysisResult, is_error_payload
from startup_pulse.models.state import WorkflowStatus

SOCIAL_SLOTS = ("twitter", "reddit", "bluesky", "youtube", "tiktok", "instagram")


def describe_payload(value: Any) -> str:
    """One-line description of a successful slot payload."""
    if isinstance(value, list):
        return f"{len(value)} records"
    if isinstance(value, str):
        for line in value.splitlines():
            if line.strip():
                return line.strip()
        return "(empty)"
    return type(value).__name__


def _has_data(value: Any) -> bool:
    if value is None or is_error_payload(value):
        return False
    if isinstance(value, (str, list)):
        return bool(value)
    return True


def generate_report(result: AnalysisResult) -> str:
    """Markdown executive summary with explicit per-slot error annotations."""
    sources = result.data_sources
    lines = [f"# Comprehensive Analysis: {result.subject_name}", ""]

    if result.website:
        lines.extend([f"Website: {result.website}", ""])

    lines.append("## Data Collection Summary")
    lines.append(f"Analysis ID: {result.workflow_id}")
    lines.append(f"Status: {result.status.value}")
    lines.append(f"Analyzed at: {result.analyzed_at.isoformat()}")
    lines.append("")

    succeeded = [k for k, v in sources.items() if not is_error_payload(v)]
    failed = [k for k, v in sources.items() if is_error_payload(v)]

    lines.append(f"Successfully collected data from {len(succeeded)} of {len(sources)} sources:")
    for slot in succeeded:
        lines.append(f"- {slot}: {describe_payload(sources[slot])}")

    if failed:
        lines.append("")
        lines.append("Sources with errors:")
        for slot in failed:
            lines.append(f"- {slot}: {sources[slot]}")

    lines.append("")
    lines.append("## Sentiment Analysis")
    if result.sentiment is not None:
        lines.append(result.sentiment.report.rstrip("\n"))
    elif result.sentiment_error:
        lines.append(result.sentiment_error)
    else:
        lines.append("Sentiment analysis pending or failed.")

    active_social = [s for s in SOCIAL_SLOTS if _has_data(sources.get(s))]
    lines.append("")
    lines.append("## Key Insights")
    lines.append(f"1. Social Media Presence: Active on {len(active_social)} platforms")
    lines.append(
        "2. News Coverage: "
        + ("Found recent news articles" if _has_data(sources.get("news")) else "Limited news coverage")
    )
    lines.append(
        "3. Tech Community: "
        + (
            "Discussed in tech forums"
            if _has_data(sources.get("tech_community"))
            else "Limited tech community presence"
        )
    )

    founders = [k for k in sources if k.startswith("founder:")]
    competitors = [k for k in sources if k.startswith("competitor:")]
    if founders:
        found = sum(1 for k in founders if _has_data(sources[k]))
        lines.append(f"4. Founders: profiles found for {found} of {len(founders)}")
    if competitors:
        found = sum(1 for k in competitors if _has_data(sources[k]))
        lines.append(f"5. Competitors: comparisons found for {found} of {len(competitors)}")

    if result.status == WorkflowStatus.COMPLETED and not result.persisted:
        lines.append("")
        lines.append("Note: this analysis could not be saved to storage.")

    return "\n".join(lines) + "\n"
