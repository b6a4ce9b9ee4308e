from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from scaplog.errors import StoreError, StoreValidationError
from scaplog.models import CaptureRecord
from scaplog.store import CaptureStore, build_match_query

BASE = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(summary: str, *, minutes: int = 0, app: str | None = "Editor", title: str | None = None, path=None):
    at = BASE + timedelta(minutes=minutes)
    return CaptureRecord(
        summary_text=summary,
        observed_at=at,
        recorded_at=at,
        application_name=app,
        window_title=title,
        screenshot_path=path,
    )


@pytest.fixture()
def store(tmp_path: Path):
    store = CaptureStore(tmp_path / "db" / "scaplog.sqlite")
    yield store
    store.close()


def test_insert_and_fetch_round_trip(store: CaptureStore, tmp_path: Path) -> None:
    shot = tmp_path / "shot.jpg"
    record = _record("Writing unit tests", title="test_store.py", path=shot)
    record_id = asyncio.run(store.insert(record))
    fetched = asyncio.run(store.fetch(record_id))
    assert fetched is not None
    assert fetched.id == record_id
    assert fetched.summary_text == "Writing unit tests"
    assert fetched.screenshot_path == shot
    assert fetched.application_name == "Editor"
    assert fetched.window_title == "test_store.py"
    assert fetched.recorded_at == record.recorded_at
    assert asyncio.run(store.fetch(record_id + 100)) is None


def test_empty_app_and_title_round_trip(store: CaptureStore) -> None:
    record_id = asyncio.run(store.insert(_record("Blank window", app="", title="")))
    fetched = asyncio.run(store.fetch(record_id))
    assert fetched.application_name == ""
    assert fetched.window_title == ""
    missing = asyncio.run(store.fetch(asyncio.run(store.insert(_record("No window", app=None)))))
    assert missing.application_name is None
    assert missing.window_title is None


def test_ids_increase_and_recent_is_newest_first(store: CaptureStore) -> None:
    ids = [asyncio.run(store.insert(_record(f"capture {i}", minutes=-i))) for i in range(5)]
    assert ids == sorted(ids)
    recent = asyncio.run(store.fetch_recent(limit=3))
    assert [r.id for r in recent] == list(reversed(ids))[:3]
    page = asyncio.run(store.fetch_recent(limit=3, offset=3))
    assert [r.id for r in page] == list(reversed(ids))[3:]


def test_empty_summary_rejected(store: CaptureStore) -> None:
    with pytest.raises(StoreValidationError):
        asyncio.run(store.insert(_record("")))


def test_negative_paging_rejected(store: CaptureStore) -> None:
    with pytest.raises(StoreValidationError):
        asyncio.run(store.fetch_recent(limit=-1))


def test_fetch_in_range_is_inclusive(store: CaptureStore) -> None:
    for minutes in (0, 10, 20, 30):
        asyncio.run(store.insert(_record(f"at {minutes}", minutes=minutes)))
    found = asyncio.run(store.fetch_in_range(BASE + timedelta(minutes=10), BASE + timedelta(minutes=20)))
    assert sorted(r.summary_text for r in found) == ["at 10", "at 20"]


def test_fetch_in_range_rejects_inverted_bounds(store: CaptureStore) -> None:
    with pytest.raises(StoreValidationError):
        asyncio.run(store.fetch_in_range(BASE, BASE - timedelta(seconds=1)))


def test_fetch_today_uses_local_midnight(store: CaptureStore) -> None:
    now = datetime.now(timezone.utc)
    asyncio.run(store.insert(CaptureRecord("today", recorded_at=now, observed_at=now)))
    old = now - timedelta(days=2)
    asyncio.run(store.insert(CaptureRecord("before", recorded_at=old, observed_at=old)))
    assert [r.summary_text for r in asyncio.run(store.fetch_today(now))] == ["today"]


def test_search_matches_prefixes_and_fields(store: CaptureStore) -> None:
    asyncio.run(store.insert(_record("Reviewing the quarterly budget", app="Sheets")))
    asyncio.run(store.insert(_record("Chatting with the team", app="Slack", title="general")))
    asyncio.run(store.insert(_record("Compiling the kernel", app="Terminal")))
    assert [r.application_name for r in asyncio.run(store.search("budg"))] == ["Sheets"]
    assert [r.application_name for r in asyncio.run(store.search("slack"))] == ["Slack"]
    assert {r.application_name for r in asyncio.run(store.search("budget kernel"))} == {"Sheets", "Terminal"}
    assert asyncio.run(store.search("   ")) == []


def test_search_handles_quotes_and_operators(store: CaptureStore) -> None:
    asyncio.run(store.insert(_record('said "hello" AND left')))
    assert len(asyncio.run(store.search('"hello"'))) == 1
    assert len(asyncio.run(store.search("AND NOT"))) == 1


def test_build_match_query() -> None:
    assert build_match_query('foo "bar') == '"foo"* OR """bar"*'
    assert build_match_query("  ") == ""


def test_deleted_records_leave_the_index(store: CaptureStore) -> None:
    record_id = asyncio.run(store.insert(_record("ephemeral secret note")))
    removed = asyncio.run(store.delete(record_id))
    assert removed is not None and removed.id == record_id
    assert asyncio.run(store.search("ephemeral")) == []
    assert asyncio.run(store.delete(record_id)) is None


def test_delete_many_returns_removed_records(store: CaptureStore) -> None:
    ids = [asyncio.run(store.insert(_record(f"note {i}"))) for i in range(3)]
    removed = asyncio.run(store.delete_many([ids[0], ids[2], 999]))
    assert sorted(r.id for r in removed) == [ids[0], ids[2]]
    assert [r.id for r in asyncio.run(store.fetch_recent())] == [ids[1]]
    assert asyncio.run(store.delete_many([])) == []


def test_delete_older_than_keeps_cutoff_boundary(store: CaptureStore) -> None:
    for minutes in (-10, 0, 10):
        asyncio.run(store.insert(_record(f"at {minutes}", minutes=minutes)))
    removed = asyncio.run(store.delete_older_than(BASE))
    assert [r.summary_text for r in removed] == ["at -10"]
    remaining = sorted(r.summary_text for r in asyncio.run(store.fetch_recent()))
    assert remaining == ["at 0", "at 10"]


def test_statistics(store: CaptureStore) -> None:
    for app, count in (("Editor", 3), ("Browser", 2), ("Mail", 2)):
        for i in range(count):
            asyncio.run(store.insert(_record(f"{app} {i}", app=app, minutes=i)))
    asyncio.run(store.insert(_record("no app", app=None)))
    stats = asyncio.run(store.statistics(now=BASE + timedelta(days=4)))
    assert stats.total_count == 8
    assert stats.per_application == [("Editor", 3), ("Browser", 2), ("Mail", 2)]
    assert stats.first_recorded_at == BASE
    assert stats.last_recorded_at == BASE + timedelta(minutes=2)
    assert stats.days_since_first(BASE + timedelta(days=4)) == 4
    assert stats.average_per_day(BASE + timedelta(days=4)) == 2.0


def test_statistics_on_empty_store(store: CaptureStore) -> None:
    stats = asyncio.run(store.statistics())
    assert stats.total_count == 0
    assert stats.per_application == []
    assert stats.first_recorded_at is None


def test_index_rebuilt_on_reopen(tmp_path: Path) -> None:
    path = tmp_path / "scaplog.sqlite"
    first = CaptureStore(path)
    asyncio.run(first.insert(_record("persistent searchable entry")))
    first.close()
    second = CaptureStore(path)
    try:
        assert len(asyncio.run(second.search("searchable"))) == 1
    finally:
        second.close()


def test_closed_store_raises(tmp_path: Path) -> None:
    store = CaptureStore(tmp_path / "scaplog.sqlite")
    store.close()
    with pytest.raises(StoreError):
        asyncio.run(store.fetch_recent())
