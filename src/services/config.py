"""
Runtime settings for the raid ingestion service, read from the environment (and an optional
`.env` file at the repository root).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from src.services.geocoding import DEFAULT_USER_AGENT

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_LISTING_URL = "https://www.ice.gov/newsroom"
DEFAULT_DB_PATH = Path("datasets/raids/raids.sqlite")
DEFAULT_INTERVAL_HOURS = 6.0
DEFAULT_STARTUP_DELAY = 5.0
DEFAULT_CONCURRENCY = 3
FETCH_TIMEOUT_SECONDS = 10.0
DELAY_RANGE_SECONDS = (1.0, 3.0)


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _list_env(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class IngestionConfig:
    listing_url: str = DEFAULT_LISTING_URL
    feed_urls: Tuple[str, ...] = ()
    db_path: Path = DEFAULT_DB_PATH
    geocode_cache_path: Optional[Path] = None
    candidate_log_path: Optional[Path] = None
    extractor: str = "heuristic"
    llm_provider: str = "gemini"
    llm_model: Optional[str] = None
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    google_api_key: Optional[str] = field(default=None, repr=False)
    geocoder_user_agent: str = DEFAULT_USER_AGENT
    concurrency: int = DEFAULT_CONCURRENCY
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    delay_range: Tuple[float, float] = DELAY_RANGE_SECONDS
    interval_hours: float = DEFAULT_INTERVAL_HOURS
    startup_delay: float = DEFAULT_STARTUP_DELAY
    centroid_fallback: bool = False

    @property
    def interval_seconds(self) -> float:
        return self.interval_hours * 60 * 60


def load_settings(dotenv_path: Path | None = None) -> IngestionConfig:
    dotenv_loaded = load_dotenv(dotenv_path=dotenv_path or REPO_ROOT / ".env")
    if dotenv_loaded:
        LOGGER.debug("Loaded environment variables from .env file.")
    db_path = Path(os.getenv("RAID_DB_PATH") or DEFAULT_DB_PATH)
    cache_raw = os.getenv("RAID_GEOCODE_CACHE")
    log_raw = os.getenv("RAID_CANDIDATE_LOG")
    return IngestionConfig(
        listing_url=os.getenv("RAID_LISTING_URL") or DEFAULT_LISTING_URL,
        feed_urls=_list_env("RAID_FEED_URLS"),
        db_path=db_path,
        geocode_cache_path=Path(cache_raw) if cache_raw else db_path.parent / "geocache.sqlite",
        candidate_log_path=Path(log_raw) if log_raw else None,
        extractor=(os.getenv("RAID_EXTRACTOR") or "heuristic").lower(),
        llm_provider=(os.getenv("RAID_LLM_PROVIDER") or "gemini").lower(),
        llm_model=os.getenv("RAID_LLM_MODEL") or None,
        gemini_api_key=os.getenv("GEMINI_API_KEY"),
        google_api_key=os.getenv("GOOGLE_ACC_KEY"),
        geocoder_user_agent=os.getenv("RAID_USER_AGENT") or DEFAULT_USER_AGENT,
        concurrency=max(1, int(_float_env("RAID_CONCURRENCY", DEFAULT_CONCURRENCY))),
        interval_hours=_float_env("RAID_INTERVAL_HOURS", DEFAULT_INTERVAL_HOURS),
        startup_delay=_float_env("RAID_STARTUP_DELAY", DEFAULT_STARTUP_DELAY),
        centroid_fallback=_bool_env("RAID_CENTROID_FALLBACK"),
    )
