from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from src.services.raid_models import CandidateRecord, FilterCriteria
from src.services.raid_store import DuplicateRecordError, InMemoryRaidStore, RaidStore, SQLiteRaidStore


def make_candidate(url: str, state: str = "TX", category: str = "Workplace", day: int = 1) -> CandidateRecord:
    return CandidateRecord(
        title=f"Raid reported at {url}",
        description="ICE officers arrested workers.",
        location=f"Austin, {state}",
        state=state,
        category=category,
        source_type="News",
        source_url=url,
        source_name="ICE News Releases",
        occurred_at=date(2025, 3, day),
        detainee_count=5,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> RaidStore:
    if request.param == "memory":
        return InMemoryRaidStore()
    return SQLiteRaidStore(tmp_path / "raids.sqlite")


def test_create_assigns_ids_and_marks_verified(store: RaidStore) -> None:
    first = store.create(make_candidate("https://a.example/news/1"), "30.26", "-97.74")
    second = store.create(make_candidate("https://a.example/news/2"), "30.26", "-97.74")

    assert first.id != second.id
    assert first.verified is True
    assert first.latitude == "30.26"
    assert store.exists("https://a.example/news/1")
    assert not store.exists("https://a.example/news/3")
    fetched = store.get(first.id)
    assert fetched is not None
    assert fetched.source_url == "https://a.example/news/1"
    assert fetched.occurred_at == date(2025, 3, 1)
    assert fetched.detainee_count == 5


def test_create_rejects_duplicate_source_url(store: RaidStore) -> None:
    store.create(make_candidate("https://a.example/news/1"), "1", "2")

    with pytest.raises(DuplicateRecordError):
        store.create(make_candidate("https://a.example/news/1"), "1", "2")
    assert len(store.all()) == 1


def test_query_filters_and_sorts_most_recent_first(store: RaidStore) -> None:
    store.create(make_candidate("https://a.example/news/1", state="TX", day=1), "1", "2")
    store.create(make_candidate("https://a.example/news/2", state="CA", day=5), "1", "2")
    store.create(make_candidate("https://a.example/news/3", state="TX", category="Residential", day=9), "1", "2")

    everything = store.query(FilterCriteria(state="All States"))
    assert [record.source_url for record in everything] == [
        "https://a.example/news/3",
        "https://a.example/news/2",
        "https://a.example/news/1",
    ]

    texas = store.query(FilterCriteria(state="tx"))
    assert {record.source_url for record in texas} == {"https://a.example/news/1", "https://a.example/news/3"}

    windowed = store.query(FilterCriteria(start_date=date(2025, 3, 2), end_date=date(2025, 3, 8)))
    assert [record.source_url for record in windowed] == ["https://a.example/news/2"]

    workplace = store.query(FilterCriteria(categories=["Workplace"]))
    assert {record.source_url for record in workplace} == {"https://a.example/news/1", "https://a.example/news/2"}


def test_sqlite_store_persists_across_connections(tmp_path: Path) -> None:
    path = tmp_path / "raids.sqlite"
    store = SQLiteRaidStore(path)
    store.create(make_candidate("https://a.example/news/1"), "1", "2")
    store.close()

    reopened = SQLiteRaidStore(path)
    assert reopened.exists("https://a.example/news/1")
    reopened.close()
