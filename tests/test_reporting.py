from __future__ import annotations

from datetime import datetime, timedelta, timezone

from scaplog.models import CaptureRecord, StoreStatistics
from scaplog.reporting import format_record, records_report, statistics_report

NOW = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


def test_statistics_report_lists_top_applications() -> None:
    stats = StoreStatistics(
        total_count=20,
        today_count=3,
        per_application=[("Editor", 12), ("Browser", 8)],
        first_recorded_at=NOW - timedelta(days=10),
        last_recorded_at=NOW,
    )
    text = statistics_report(stats, now=NOW).render_text()
    assert text.startswith("Capture statistics\n------------------")
    assert "Total captures: 20" in text
    assert "Today: 3" in text
    assert "Days since first capture: 10" in text
    assert "Average per day: 2.0" in text
    assert "- Editor: 12" in text


def test_statistics_report_empty() -> None:
    report = statistics_report(StoreStatistics(), now=NOW)
    assert report.summary_lines == ["No captures recorded."]


def test_records_report_previews_long_summaries() -> None:
    record = CaptureRecord("word " * 100, recorded_at=NOW, application_name="Editor", window_title="a.txt", id=7)
    header, summary = format_record(record)
    assert header.startswith("#7 [")
    assert header.endswith("Editor - a.txt")
    assert len(summary) <= 202
    assert summary.endswith("...")
    report = records_report("Recent captures", [record])
    assert report.summary_lines[-1] == "1 capture(s)"


def test_records_report_empty() -> None:
    assert records_report("Today", []).summary_lines == ["No captures recorded."]
