"""
Geocoding for raid locations: OpenStreetMap's Nominatim API behind a SQLite cache, with an
optional Google fallback and a static state-centroid table for coarse placement.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ICE-Raid-Tracker/1.0"


@dataclass
class GeocodeResult:
    latitude: str
    longitude: str
    query: str = ""
    source: str = "unknown"


STATE_CENTROIDS: Dict[str, tuple[float, float]] = {
    "AL": (32.806671, -86.791130),
    "AK": (61.370716, -152.404419),
    "AZ": (33.729759, -111.431221),
    "AR": (34.969704, -92.373123),
    "CA": (36.116203, -119.681564),
    "CO": (39.059811, -105.311104),
    "CT": (41.597782, -72.755371),
    "DE": (39.318523, -75.507141),
    "FL": (27.766279, -81.686783),
    "GA": (33.040619, -83.643074),
    "HI": (21.094318, -157.498337),
    "ID": (44.240459, -114.478828),
    "IL": (40.349457, -88.986137),
    "IN": (39.849426, -86.258278),
    "IA": (42.011539, -93.210526),
    "KS": (38.526600, -96.726486),
    "KY": (37.668140, -84.670067),
    "LA": (31.169546, -91.867805),
    "ME": (44.693947, -69.381927),
    "MD": (39.063946, -76.802101),
    "MA": (42.230171, -71.530106),
    "MI": (43.326618, -84.536095),
    "MN": (45.694454, -93.900192),
    "MS": (32.741646, -89.678696),
    "MO": (38.456085, -92.288368),
    "MT": (46.921925, -110.454353),
    "NE": (41.125370, -98.268082),
    "NV": (38.313515, -117.055374),
    "NH": (43.452492, -71.563896),
    "NJ": (40.298904, -74.521011),
    "NM": (34.840515, -106.248482),
    "NY": (42.165726, -74.948051),
    "NC": (35.630066, -79.806419),
    "ND": (47.528912, -99.784012),
    "OH": (40.388783, -82.764915),
    "OK": (35.565342, -96.928917),
    "OR": (44.572021, -122.070938),
    "PA": (40.590752, -77.209755),
    "RI": (41.680893, -71.511780),
    "SC": (33.856892, -80.945007),
    "SD": (44.299782, -99.438828),
    "TN": (35.747845, -86.692345),
    "TX": (31.054487, -97.563461),
    "UT": (40.150032, -111.862434),
    "VT": (44.045876, -72.710686),
    "VA": (37.769337, -78.169968),
    "WA": (47.400902, -121.490494),
    "WV": (38.491226, -80.954453),
    "WI": (44.268543, -89.616508),
    "WY": (42.755966, -107.302490),
}


def approximate_geocode_us_location(city: str | None, state: str | None) -> Optional[GeocodeResult]:
    """Return the fixed centre of a state; `city` is accepted but not used for placement."""
    if not state:
        return None
    code = state.strip().upper()
    coords = STATE_CENTROIDS.get(code)
    if not coords:
        return None
    lat, lon = coords
    query = ", ".join(part for part in (city, code) if part)
    return GeocodeResult(latitude=str(lat), longitude=str(lon), query=query, source="centroid")


class SQLiteCache:
    """Lightweight cache that stores query -> coordinates mappings."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS geocache (
                query TEXT PRIMARY KEY,
                latitude TEXT,
                longitude TEXT,
                source TEXT,
                raw_response TEXT,
                fetched_at TEXT
            )
            """
        )
        self.conn.commit()
        self.lock = threading.Lock()

    def get(self, query: str) -> Optional[tuple[str | None, str | None, str | None, str | None]]:
        with self.lock:
            row = self.conn.execute(
                "SELECT latitude, longitude, source, fetched_at FROM geocache WHERE query = ?",
                (query,),
            ).fetchone()
        if not row:
            return None
        return (row[0], row[1], row[2], row[3])

    def set(
        self,
        query: str,
        latitude: str | None,
        longitude: str | None,
        source: str | None,
        raw: dict[str, object] | None = None,
    ) -> None:
        raw_blob = json.dumps(raw) if raw else None
        with self.lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO geocache (query, latitude, longitude, source, raw_response, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    query,
                    latitude,
                    longitude,
                    source,
                    raw_blob,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self.conn.commit()

    def close(self) -> None:
        with self.lock:
            self.conn.close()


class GeocoderUnavailable(RuntimeError):
    """The lookup service could not answer (transport error, HTTP error or garbled reply)."""


class NominatimGeocoder:
    """Resolve free-text places with Nominatim, caching hits and recent misses."""

    endpoint = "https://nominatim.openstreetmap.org/search"
    google_endpoint = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(
        self,
        cache_path: Path | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        min_interval: float = 1.1,
        timeout: int = 25,
        failure_ttl_days: int = 7,
        google_api_key: str | None = None,
        ignore_failures: bool = False,
    ) -> None:
        self.cache = SQLiteCache(cache_path) if cache_path else None
        self.user_agent = user_agent
        self.min_interval = min_interval
        self.timeout = timeout
        self.failure_ttl_days = failure_ttl_days
        self.google_api_key = google_api_key
        self.ignore_failures = ignore_failures
        self._last_request = 0.0
        self._throttle_lock = threading.Lock()
        self.stats: dict[str, int] = {
            "cache_hits": 0,
            "nominatim_hits": 0,
            "google_hits": 0,
            "failures": 0,
        }

    def close(self) -> None:
        if self.cache:
            self.cache.close()
            self.cache = None

    async def geocode(self, address: str) -> Optional[GeocodeResult]:
        """Resolve `address` without blocking the loop; failures come back as None."""
        try:
            return await asyncio.to_thread(self.lookup, address)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Unexpected geocoding failure for '%s'", address)
            return None

    def lookup(self, query: str) -> Optional[GeocodeResult]:
        query = (query or "").strip()
        if not query:
            return None
        cached = self._from_cache(query)
        if cached is not None:
            return cached or None
        unavailable = False
        source = None
        try:
            payload = self._fetch(query)
            source = "nominatim" if payload else None
        except GeocoderUnavailable as exc:
            LOGGER.warning("Nominatim unavailable for '%s': %s", query, exc)
            payload, unavailable = None, True
        if not payload and self.google_api_key:
            try:
                payload = self._fetch_google(query)
                source = "google" if payload else None
            except GeocoderUnavailable as exc:
                LOGGER.warning("Google geocoding unavailable for '%s': %s", query, exc)
                payload, unavailable = None, True
        if not payload or source is None:
            self.stats["failures"] += 1
            # Only a definite "no match" is remembered; outages are retried on the next run.
            if self.cache and not unavailable:
                self.cache.set(query, None, None, None)
            LOGGER.info("Geocode failed for '%s'", query)
            return None
        result = GeocodeResult(
            latitude=str(payload["lat"]),
            longitude=str(payload["lon"]),
            query=query,
            source=source,
        )
        if self.cache:
            self.cache.set(query, result.latitude, result.longitude, source, payload)
        self.stats[f"{source}_hits"] += 1
        LOGGER.debug("Geocode resolved via %s: '%s' -> %s,%s", source, query, result.latitude, result.longitude)
        return result

    def _from_cache(self, query: str) -> Optional[GeocodeResult | bool]:
        """Cached hit, False for a recent cached miss, None when the network should be tried."""
        if not self.cache:
            return None
        cached = self.cache.get(query)
        if not cached:
            return None
        lat, lon, _source, fetched_at = cached
        if lat is not None and lon is not None:
            self.stats["cache_hits"] += 1
            return GeocodeResult(latitude=lat, longitude=lon, query=query, source="cache")
        if not fetched_at or self.ignore_failures:
            return None
        try:
            ts = datetime.fromisoformat(fetched_at)
        except ValueError:
            return None
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - ts < timedelta(days=self.failure_ttl_days):
            LOGGER.debug("Skipping geocode for '%s' due to recent failure cache.", query)
            return False
        return None

    def _throttle(self) -> None:
        with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                time.sleep(self.min_interval - elapsed)
            self._last_request = time.monotonic()

    def _fetch(self, query: str) -> Optional[dict[str, object]]:
        self._throttle()
        params = {
            "q": query,
            "format": "json",
            "limit": 1,
        }
        headers = {"User-Agent": self.user_agent}
        try:
            response = requests.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            results = response.json()
        except requests.RequestException as exc:
            raise GeocoderUnavailable(f"Nominatim request failed: {exc}") from exc
        except ValueError as exc:
            raise GeocoderUnavailable("Nominatim returned a non-JSON payload") from exc
        if not isinstance(results, list) or not results:
            return None
        candidate = results[0]
        if not isinstance(candidate, dict) or "lat" not in candidate or "lon" not in candidate:
            return None
        return candidate

    def _fetch_google(self, query: str) -> Optional[dict[str, object]]:
        try:
            response = requests.get(
                self.google_endpoint,
                params={"address": query, "key": self.google_api_key},
                timeout=15,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise GeocoderUnavailable(f"Google geocoding request failed: {exc}") from exc
        status = payload.get("status")
        if status == "ZERO_RESULTS":
            return None
        if status != "OK" or not payload.get("results"):
            raise GeocoderUnavailable(f"Google geocoding returned status {status}")
        location = payload["results"][0].get("geometry", {}).get("location", {})
        if location.get("lat") is None or location.get("lng") is None:
            return None
        return {"lat": location["lat"], "lon": location["lng"]}
