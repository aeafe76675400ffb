"""Unit tests for report generation."""

from datetime import datetime, timezone

from startup_pulse.models.analysis import AnalysisResult
from startup_pulse.models.state import WorkflowStatus
from startup_pulse.services.report import describe_payload, generate_report
from startup_pulse.services.sentiment_aggregator import aggregate_records, format_sentiment_report


def make_result(**kwargs) -> AnalysisResult:
    defaults = dict(
        workflow_id="startup-analysis-acme-123",
        subject_name="Acme",
        analyzed_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        status=WorkflowStatus.COMPLETED,
        persisted=True,
    )
    defaults.update(kwargs)
    return AnalysisResult(**defaults)


class TestDescribePayload:
    """Tests for describe_payload."""

    def test_records(self):
        assert describe_payload([{}, {}]) == "2 records"

    def test_text_first_line(self):
        assert describe_payload("\n  Headline  \nbody") == "Headline"

    def test_blank_text(self):
        assert describe_payload("   ") == "(empty)"


class TestGenerateReport:
    """Tests for generate_report."""

    def test_error_slots_annotated(self):
        report = generate_report(
            make_result(
                data_sources={
                    "twitter": [{"content": "hi"}],
                    "tiktok": "Error: Timed out after 300s",
                }
            )
        )
        assert "# Comprehensive Analysis: Acme" in report
        assert "Successfully collected data from 1 of 2 sources:" in report
        assert "- twitter: 1 records" in report
        assert "Sources with errors:" in report
        assert "- tiktok: Error: Timed out after 300s" in report

    def test_includes_sentiment_report(self):
        aggregate = aggregate_records([])
        aggregate = aggregate.model_copy(update={"report": format_sentiment_report(aggregate)})
        report = generate_report(make_result(sentiment=aggregate))
        assert "## Sentiment Analysis" in report
        assert "No texts were available" in report

    def test_sentiment_error_shown(self):
        report = generate_report(make_result(sentiment_error="Error: provider down"))
        assert "Error: provider down" in report

    def test_key_insights(self):
        report = generate_report(
            make_result(
                data_sources={
                    "twitter": [{"content": "a"}],
                    "reddit": [],
                    "news": "Acme raises Series A",
                    "tech_community": "Error: down",
                    "founder:Jane": "Jane Doe - CEO",
                    "competitor:Globex": "Error: down",
                }
            )
        )
        assert "Active on 1 platforms" in report
        assert "Found recent news articles" in report
        assert "Limited tech community presence" in report
        assert "profiles found for 1 of 1" in report
        assert "comparisons found for 0 of 1" in report

    def test_unsaved_note(self):
        assert "could not be saved" in generate_report(make_result(persisted=False))
        assert "could not be saved" not in generate_report(make_result())

    def test_status_line(self):
        assert "Status: completed" in generate_report(make_result())
        assert "Status: cancelled" in generate_report(make_result(status=WorkflowStatus.CANCELLED))

    def test_unsaved_note_only_for_completed_runs(self):
        for status in (WorkflowStatus.CANCELLED, WorkflowStatus.FAILED):
            report = generate_report(make_result(status=status, persisted=False))
            assert "could not be saved" not in report
            assert f"Status: {status.value}" in report

    def test_deterministic(self):
        result = make_result(data_sources={"news": "x", "twitter": "Error: y"})
        assert generate_report(result) == generate_report(result)
