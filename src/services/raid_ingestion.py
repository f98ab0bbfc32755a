"""
Pipeline that discovers newsroom articles, extracts raid records, geocodes them and stores
the new ones.

Usage:
    python3 scripts/run_ingestion.py --once --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
import sys
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Iterable, Optional, Sequence, Set, Tuple

from src.services.config import IngestionConfig, load_settings
from src.services.content_fetcher import ContentFetcher, FetchError
from src.services.geocoding import GeocodeResult, NominatimGeocoder, approximate_geocode_us_location
from src.services.llm_clients import build_generator
from src.services.raid_extraction import RaidExtractor, build_extractor, is_valid_candidate
from src.services.raid_models import DEFAULT_SOURCE_TYPE, CandidateRecord, IngestionSummary
from src.services.raid_store import DuplicateRecordError, RaidStore, SQLiteRaidStore
from src.services.relevance import is_relevant
from src.services.scheduler import IngestionScheduler

LOGGER = logging.getLogger(__name__)

FEED_SOURCE_TYPE = DEFAULT_SOURCE_TYPE


class IngestionState:
    IDLE = "Idle"
    DISCOVERING = "Discovering"
    PROCESSING = "Processing"
    REPORTING = "Reporting"


class LinkOutcome:
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    IRRELEVANT = "irrelevant"
    GEOCODE_FAILED = "geocode_failed"
    ERROR = "error"


@dataclass(frozen=True)
class ArticleLink:
    url: str
    source_name: Optional[str] = None
    source_type: Optional[str] = None


class CandidateLog:
    """Append-only JSONL record of every valid candidate seen, one line per source_url."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._seen: Set[str] = set()
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self._seen.add(json.loads(line)["source_url"])
                    except (json.JSONDecodeError, KeyError, TypeError):
                        LOGGER.warning("Skipping malformed line in %s", self.path)

    def __contains__(self, source_url: object) -> bool:
        return source_url in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def append(self, candidate: CandidateRecord) -> bool:
        """Write the candidate unless its source_url is already logged; returns True if written."""
        with self._lock:
            if candidate.source_url in self._seen:
                return False
            payload = candidate.to_serializable()
            payload["logged_at"] = datetime.now(timezone.utc).isoformat()
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
            self._seen.add(candidate.source_url)
        return True


class RaidIngestor:
    def __init__(
        self,
        fetcher: ContentFetcher,
        extractor: RaidExtractor,
        geocoder: NominatimGeocoder,
        store: RaidStore,
        listing_url: str,
        feed_urls: Sequence[str] = (),
        concurrency: int = 3,
        delay_range: Tuple[float, float] = (1.0, 3.0),
        candidate_log: Optional[CandidateLog] = None,
        centroid_fallback: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.fetcher = fetcher
        self.extractor = extractor
        self.geocoder = geocoder
        self.store = store
        self.listing_url = listing_url
        self.feed_urls = tuple(feed_urls)
        self.concurrency = concurrency
        self.delay_range = delay_range
        self.candidate_log = candidate_log
        self.centroid_fallback = centroid_fallback
        self._sleep = sleep
        self.state = IngestionState.IDLE

    def close(self) -> None:
        """Release the store connection and the geocoder's cache."""
        self.store.close()
        close_geocoder = getattr(self.geocoder, "close", None)
        if close_geocoder is not None:
            close_geocoder()

    async def run(self) -> IngestionSummary:
        summary = IngestionSummary()
        try:
            self.state = IngestionState.DISCOVERING
            links = await self._discover()
            if not links:
                LOGGER.info("No article links found; nothing to ingest.")
                return summary
            self.state = IngestionState.PROCESSING
            summary.total = len(links)
            await self._process_all(links, summary)
            self.state = IngestionState.REPORTING
            LOGGER.info("Ingestion complete: %s", summary.log_line())
            return summary
        finally:
            summary.finished_at = summary.finished_at or datetime.now(timezone.utc)
            self.state = IngestionState.IDLE

    async def _discover(self) -> list[ArticleLink]:
        try:
            listing_links = await self.fetcher.discover_links(self.listing_url)
        except FetchError as exc:
            LOGGER.error("Failed to fetch article listing %s: %s", self.listing_url, exc)
            return []
        # Listing links carry no source of their own; the extractor's defaults name them.
        links = [ArticleLink(url) for url in sorted(listing_links)]
        seen = set(listing_links)
        for feed_url in self.feed_urls:
            try:
                feed_links = await self.fetcher.discover_feed_links(feed_url)
            except Exception:  # noqa: BLE001
                LOGGER.warning("Feed discovery failed for %s", feed_url, exc_info=True)
                continue
            for url in sorted(feed_links):
                if url not in seen:
                    seen.add(url)
                    links.append(ArticleLink(url, source_name=feed_links[url], source_type=FEED_SOURCE_TYPE))
        LOGGER.info("Discovered %s unique article links", len(links))
        return links

    async def _process_all(self, links: Iterable[ArticleLink], summary: IngestionSummary) -> None:
        queue: Deque[ArticleLink] = deque(links)
        in_flight: Set[asyncio.Task[str]] = set()
        while queue or in_flight:
            while queue and len(in_flight) < self.concurrency:
                link = queue.popleft()
                in_flight.add(asyncio.create_task(self._guarded_process(link), name=link.url))
            done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                self._tally(summary, task.result())

    @staticmethod
    def _tally(summary: IngestionSummary, outcome: str) -> None:
        if outcome == LinkOutcome.SUCCESS:
            summary.successes += 1
        elif outcome == LinkOutcome.DUPLICATE:
            summary.duplicates += 1
        elif outcome == LinkOutcome.INVALID:
            summary.invalid += 1
        elif outcome == LinkOutcome.IRRELEVANT:
            summary.irrelevant += 1
        elif outcome == LinkOutcome.GEOCODE_FAILED:
            summary.geocode_failures += 1
            summary.errors += 1
        else:
            summary.errors += 1

    async def _guarded_process(self, link: ArticleLink) -> str:
        try:
            return await self.process_link(link.url, link.source_name, link.source_type)
        except FetchError as exc:
            LOGGER.warning("Error fetching content from %s: %s", link.url, exc)
            return LinkOutcome.ERROR
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected error processing %s", link.url)
            return LinkOutcome.ERROR

    async def process_link(
        self,
        url: str,
        source_name: Optional[str] = None,
        source_type: Optional[str] = None,
    ) -> str:
        low, high = self.delay_range
        if high > 0:
            await self._sleep(random.uniform(low, high))
        page = await self.fetcher.fetch_article(url)
        if not is_relevant(page.text):
            LOGGER.debug("Content not relevant: %s", url)
            return LinkOutcome.IRRELEVANT
        candidate = await self.extractor.extract(
            page.text,
            url,
            headline=page.headline,
            source_name=source_name,
            source_type=source_type,
        )
        if not is_valid_candidate(candidate):
            LOGGER.info("Skipping invalid raid data from %s", url)
            return LinkOutcome.INVALID
        if self.candidate_log is not None:
            self.candidate_log.append(candidate)
        return await self.store_candidate(candidate)

    async def store_candidate(self, candidate: CandidateRecord) -> str:
        if self.store.exists(candidate.source_url):
            LOGGER.info("Raid from %s already exists, skipping", candidate.source_url)
            return LinkOutcome.DUPLICATE
        result = await self._geocode(candidate)
        if result is None:
            LOGGER.warning("Could not geocode location %r for %s", candidate.location, candidate.source_url)
            return LinkOutcome.GEOCODE_FAILED
        try:
            record = self.store.create(candidate, result.latitude, result.longitude, verified=True)
        except DuplicateRecordError:
            LOGGER.info("Raid from %s stored concurrently, skipping", candidate.source_url)
            return LinkOutcome.DUPLICATE
        LOGGER.info("Stored raid %s: %s (%s)", record.id, record.title, record.location)
        return LinkOutcome.SUCCESS

    async def _geocode(self, candidate: CandidateRecord) -> Optional[GeocodeResult]:
        result = await self.geocoder.geocode(candidate.location)
        if result is None and self.centroid_fallback:
            city = candidate.location.split(",", 1)[0].strip()
            result = approximate_geocode_us_location(city, candidate.state)
            if result is not None:
                LOGGER.info("Using state centroid for %s", candidate.location)
        return result


def build_ingestor(config: IngestionConfig) -> RaidIngestor:
    generator = None
    if config.extractor == "llm":
        generator = build_generator(config.llm_provider, api_key=config.gemini_api_key, model=config.llm_model)
    extractor = build_extractor(config.extractor, generator=generator)
    return RaidIngestor(
        fetcher=ContentFetcher(timeout=config.fetch_timeout),
        extractor=extractor,
        geocoder=NominatimGeocoder(
            cache_path=config.geocode_cache_path,
            user_agent=config.geocoder_user_agent,
            google_api_key=config.google_api_key,
        ),
        store=SQLiteRaidStore(config.db_path),
        listing_url=config.listing_url,
        feed_urls=config.feed_urls,
        concurrency=config.concurrency,
        delay_range=config.delay_range,
        candidate_log=CandidateLog(config.candidate_log_path) if config.candidate_log_path else None,
        centroid_fallback=config.centroid_fallback,
    )


def _apply_cli_overrides(config: IngestionConfig, args: argparse.Namespace) -> IngestionConfig:
    overrides: dict[str, Any] = {}
    if args.extractor:
        overrides["extractor"] = args.extractor
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.listing_url:
        overrides["listing_url"] = args.listing_url
    if args.feed_url:
        overrides["feed_urls"] = tuple(args.feed_url)
    if args.concurrency:
        overrides["concurrency"] = max(1, args.concurrency)
    if args.interval_hours:
        overrides["interval_hours"] = args.interval_hours
    if args.startup_delay is not None:
        overrides["startup_delay"] = args.startup_delay
    if args.centroid_fallback:
        overrides["centroid_fallback"] = True
    return replace(config, **overrides) if overrides else config


async def _serve(ingestor: RaidIngestor, config: IngestionConfig) -> None:
    scheduler = IngestionScheduler(
        ingestor.run,
        interval_seconds=config.interval_seconds,
        startup_delay=config.startup_delay,
    )
    await scheduler.serve_forever()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest ICE enforcement actions from newsroom articles.")
    parser.add_argument("--once", action="store_true", help="Run a single ingestion pass and exit.")
    parser.add_argument(
        "--extractor",
        choices=("heuristic", "llm"),
        default=None,
        help="Extraction strategy (default: RAID_EXTRACTOR or heuristic).",
    )
    parser.add_argument("--db-path", type=Path, default=None, help="SQLite database for stored raids.")
    parser.add_argument("--listing-url", default=None, help="Newsroom page to scan for article links.")
    parser.add_argument(
        "--feed-url",
        action="append",
        default=None,
        help="RSS/Atom feed to scan for additional links (repeatable).",
    )
    parser.add_argument("--concurrency", type=int, default=None, help="Articles processed at once (default: 3).")
    parser.add_argument("--interval-hours", type=float, default=None, help="Hours between scheduled runs.")
    parser.add_argument(
        "--startup-delay",
        type=float,
        default=None,
        help="Seconds before the first scheduled run (default: 5).",
    )
    parser.add_argument(
        "--centroid-fallback",
        action="store_true",
        help="Place records at the state centroid when the geocoder finds nothing.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )

    config = _apply_cli_overrides(load_settings(), args)
    try:
        ingestor = build_ingestor(config)
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    try:
        if args.once:
            asyncio.run(ingestor.run())
        else:
            asyncio.run(_serve(ingestor, config))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down.")
    finally:
        ingestor.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
