from __future__ import annotations

from pathlib import Path

import pytest

from src.services.config import DEFAULT_LISTING_URL, load_settings

RAID_KEYS = (
    "RAID_LISTING_URL",
    "RAID_FEED_URLS",
    "RAID_DB_PATH",
    "RAID_GEOCODE_CACHE",
    "RAID_CANDIDATE_LOG",
    "RAID_EXTRACTOR",
    "RAID_LLM_PROVIDER",
    "RAID_LLM_MODEL",
    "RAID_USER_AGENT",
    "RAID_CONCURRENCY",
    "RAID_INTERVAL_HOURS",
    "RAID_STARTUP_DELAY",
    "RAID_CENTROID_FALLBACK",
    "GEMINI_API_KEY",
    "GOOGLE_ACC_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so monkeypatch unsets each key again after load_dotenv writes it.
    for key in RAID_KEYS:
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)


def test_defaults_without_environment(tmp_path: Path) -> None:
    config = load_settings(dotenv_path=tmp_path / "missing.env")

    assert config.listing_url == DEFAULT_LISTING_URL
    assert config.extractor == "heuristic"
    assert config.concurrency == 3
    assert config.interval_seconds == 6 * 60 * 60
    assert config.startup_delay == 5.0
    assert config.delay_range == (1.0, 3.0)
    assert config.centroid_fallback is False
    assert config.feed_urls == ()
    assert config.geocode_cache_path == Path("datasets/raids/geocache.sqlite")


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAID_FEED_URLS", "https://a.example/rss, https://b.example/rss")
    monkeypatch.setenv("RAID_DB_PATH", str(tmp_path / "raids.sqlite"))
    monkeypatch.setenv("RAID_EXTRACTOR", "LLM")
    monkeypatch.setenv("RAID_CONCURRENCY", "5")
    monkeypatch.setenv("RAID_INTERVAL_HOURS", "not-a-number")
    monkeypatch.setenv("RAID_CENTROID_FALLBACK", "yes")
    monkeypatch.setenv("GEMINI_API_KEY", "secret")

    config = load_settings(dotenv_path=tmp_path / "missing.env")

    assert config.feed_urls == ("https://a.example/rss", "https://b.example/rss")
    assert config.db_path == tmp_path / "raids.sqlite"
    assert config.geocode_cache_path == tmp_path / "geocache.sqlite"
    assert config.extractor == "llm"
    assert config.concurrency == 5
    assert config.interval_hours == 6.0
    assert config.centroid_fallback is True
    assert config.gemini_api_key == "secret"
    assert "secret" not in repr(config)


def test_dotenv_file_is_loaded(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("RAID_STARTUP_DELAY=0.5\nRAID_LISTING_URL=https://example.org/news\n", encoding="utf-8")

    config = load_settings(dotenv_path=env_file)

    assert config.startup_delay == 0.5
    assert config.listing_url == "https://example.org/news"
