"""
Persistence for ingested raids.

The pipeline only needs `exists(source_url)` and `create(...)`; `get`, `all` and `query`
serve the read side of the map API.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from src.services.raid_models import CandidateRecord, FilterCriteria, PersistedRecord

LOGGER = logging.getLogger(__name__)


class DuplicateRecordError(ValueError):
    """A record with the same source URL is already stored."""


class RaidStore:
    def exists(self, source_url: str) -> bool:
        raise NotImplementedError

    def create(
        self,
        candidate: CandidateRecord,
        latitude: str,
        longitude: str,
        verified: bool = True,
    ) -> PersistedRecord:
        raise NotImplementedError

    def get(self, record_id: int) -> Optional[PersistedRecord]:
        raise NotImplementedError

    def all(self) -> List[PersistedRecord]:
        raise NotImplementedError

    def query(self, criteria: FilterCriteria) -> List[PersistedRecord]:
        results = [record for record in self.all() if criteria.matches(record)]
        results.sort(key=lambda record: record.occurred_at, reverse=True)
        return results

    def close(self) -> None:
        return None


class InMemoryRaidStore(RaidStore):
    def __init__(self) -> None:
        self._records: Dict[int, PersistedRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def exists(self, source_url: str) -> bool:
        with self._lock:
            return any(record.source_url == source_url for record in self._records.values())

    def create(
        self,
        candidate: CandidateRecord,
        latitude: str,
        longitude: str,
        verified: bool = True,
    ) -> PersistedRecord:
        with self._lock:
            if any(record.source_url == candidate.source_url for record in self._records.values()):
                raise DuplicateRecordError(candidate.source_url)
            record = PersistedRecord.from_candidate(
                candidate,
                record_id=self._next_id,
                latitude=latitude,
                longitude=longitude,
                verified=verified,
            )
            self._records[record.id] = record
            self._next_id += 1
        return record

    def get(self, record_id: int) -> Optional[PersistedRecord]:
        with self._lock:
            return self._records.get(record_id)

    def all(self) -> List[PersistedRecord]:
        with self._lock:
            return list(self._records.values())


class SQLiteRaidStore(RaidStore):
    """SQLite table keyed by an autoincrement id with a unique index on source_url."""

    _columns = (
        "id, title, description, location, state, latitude, longitude, category, source_type, "
        "source_url, source_name, occurred_at, detainee_count, verified, created_at"
    )

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS raids (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                location TEXT NOT NULL,
                state TEXT NOT NULL,
                latitude TEXT NOT NULL,
                longitude TEXT NOT NULL,
                category TEXT NOT NULL,
                source_type TEXT NOT NULL,
                source_url TEXT NOT NULL,
                source_name TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                detainee_count INTEGER,
                verified INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """
        )
        self.conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_raids_source_url ON raids(source_url)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_raids_occurred ON raids(occurred_at)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_raids_state ON raids(state)")
        self.conn.commit()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PersistedRecord:
        return PersistedRecord(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            state=row["state"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            category=row["category"],
            source_type=row["source_type"],
            source_url=row["source_url"],
            source_name=row["source_name"],
            occurred_at=date.fromisoformat(row["occurred_at"]),
            detainee_count=row["detainee_count"],
            verified=bool(row["verified"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def exists(self, source_url: str) -> bool:
        with self._lock:
            row = self.conn.execute("SELECT 1 FROM raids WHERE source_url = ? LIMIT 1", (source_url,)).fetchone()
        return row is not None

    def create(
        self,
        candidate: CandidateRecord,
        latitude: str,
        longitude: str,
        verified: bool = True,
    ) -> PersistedRecord:
        created_at = datetime.now(timezone.utc)
        try:
            with self._lock, self.conn:
                cursor = self.conn.execute(
                    """
                    INSERT INTO raids (
                        title, description, location, state, latitude, longitude, category,
                        source_type, source_url, source_name, occurred_at, detainee_count,
                        verified, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        candidate.title,
                        candidate.description,
                        candidate.location,
                        candidate.state,
                        latitude,
                        longitude,
                        candidate.category,
                        candidate.source_type,
                        candidate.source_url,
                        candidate.source_name,
                        candidate.occurred_at.isoformat(),
                        candidate.detainee_count,
                        int(verified),
                        created_at.isoformat(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateRecordError(candidate.source_url) from exc
        return PersistedRecord.from_candidate(
            candidate,
            record_id=int(cursor.lastrowid),
            latitude=latitude,
            longitude=longitude,
            verified=verified,
            created_at=created_at,
        )

    def get(self, record_id: int) -> Optional[PersistedRecord]:
        with self._lock:
            row = self.conn.execute(f"SELECT {self._columns} FROM raids WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def all(self) -> List[PersistedRecord]:
        with self._lock:
            rows = self.conn.execute(f"SELECT {self._columns} FROM raids ORDER BY id").fetchall()
        return [self._row_to_record(row) for row in rows]

    def query(self, criteria: FilterCriteria) -> List[PersistedRecord]:
        sql = f"SELECT {self._columns} FROM raids WHERE 1 = 1"
        params: list[object] = []
        if criteria.start_date:
            sql += " AND occurred_at >= ?"
            params.append(criteria.start_date.isoformat())
        if criteria.end_date:
            sql += " AND occurred_at <= ?"
            params.append(criteria.end_date.isoformat())
        if criteria.state:
            sql += " AND state = ?"
            params.append(criteria.state)
        if criteria.categories:
            placeholders = ", ".join("?" for _ in criteria.categories)
            sql += f" AND category IN ({placeholders})"
            params.extend(criteria.categories)
        sql += " ORDER BY occurred_at DESC, id DESC"
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self.conn.close()
