"""Plain-text reports over stored captures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List

from .models import CaptureRecord, StoreStatistics, utcnow

SUMMARY_PREVIEW = 200


@dataclass(slots=True)
class Report:
    title: str
    summary_lines: List[str]

    def render_text(self) -> str:
        return "\n".join([self.title, "-" * len(self.title), *self.summary_lines])


def _local(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_record(record: CaptureRecord, *, preview: int = SUMMARY_PREVIEW) -> List[str]:
    app = record.application_name or "unknown"
    header = f"#{record.id} [{_local(record.recorded_at)}] {app}"
    if record.window_title:
        header += f" - {record.window_title}"
    summary = " ".join(record.summary_text.split())
    if preview and len(summary) > preview:
        summary = summary[: preview - 3].rstrip() + "..."
    return [header, f"  {summary}"]


def records_report(title: str, records: Iterable[CaptureRecord]) -> Report:
    records = list(records)
    if not records:
        return Report(title=title, summary_lines=["No captures recorded."])
    lines: List[str] = []
    for record in records:
        lines.extend(format_record(record))
    lines.append(f"{len(records)} capture(s)")
    return Report(title=title, summary_lines=lines)


def statistics_report(stats: StoreStatistics, *, now: datetime | None = None) -> Report:
    now = now or utcnow()
    title = "Capture statistics"
    if stats.total_count == 0:
        return Report(title=title, summary_lines=["No captures recorded."])
    lines = [
        f"Total captures: {stats.total_count}",
        f"Today: {stats.today_count}",
        f"Days since first capture: {stats.days_since_first(now)}",
        f"Average per day: {stats.average_per_day(now):.1f}",
    ]
    if stats.first_recorded_at is not None:
        lines.append(f"First capture: {_local(stats.first_recorded_at)}")
    if stats.last_recorded_at is not None:
        lines.append(f"Last capture: {_local(stats.last_recorded_at)}")
    if stats.per_application:
        lines.append("Top applications:")
        for name, count in stats.per_application:
            lines.append(f"- {name}: {count}")
    return Report(title=title, summary_lines=lines)
