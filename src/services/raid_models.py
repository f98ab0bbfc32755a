"""
Record types shared by the raid ingestion pipeline and its storage adapters.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator

NOT_FOUND = "NOT FOUND"

WORKPLACE = "Workplace"
RESIDENTIAL = "Residential"
CHECKPOINT = "Checkpoint"
OTHER = "Other"
RAID_CATEGORIES = (WORKPLACE, RESIDENTIAL, CHECKPOINT, OTHER)

SOURCE_TYPES = (
    "News",
    "Social Media",
    "Community Alert",
    "Legal Aid Organization",
    "Other",
)

DEFAULT_SOURCE_NAME = "ICE News Releases"
DEFAULT_SOURCE_TYPE = "News"


@dataclass
class CandidateRecord:
    title: str
    description: str
    location: str
    state: str
    category: str
    source_type: str
    source_url: str
    source_name: str
    occurred_at: date
    detainee_count: int | None = None

    @classmethod
    def not_found(
        cls,
        source_url: str,
        source_name: str = DEFAULT_SOURCE_NAME,
        source_type: str = DEFAULT_SOURCE_TYPE,
    ) -> "CandidateRecord":
        return cls(
            title=NOT_FOUND,
            description=NOT_FOUND,
            location=NOT_FOUND,
            state=NOT_FOUND,
            category=OTHER,
            source_type=source_type,
            source_url=source_url,
            source_name=source_name,
            occurred_at=datetime.now(timezone.utc).date(),
        )

    @property
    def is_valid(self) -> bool:
        if not self.title or not self.location:
            return False
        return self.title != NOT_FOUND and self.location != NOT_FOUND

    def to_serializable(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload


@dataclass
class PersistedRecord:
    id: int
    title: str
    description: str
    location: str
    state: str
    latitude: str
    longitude: str
    category: str
    source_type: str
    source_url: str
    source_name: str
    occurred_at: date
    detainee_count: int | None
    verified: bool
    created_at: datetime

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateRecord,
        record_id: int,
        latitude: str,
        longitude: str,
        verified: bool = True,
        created_at: datetime | None = None,
    ) -> "PersistedRecord":
        return cls(
            id=record_id,
            title=candidate.title,
            description=candidate.description,
            location=candidate.location,
            state=candidate.state,
            latitude=latitude,
            longitude=longitude,
            category=candidate.category,
            source_type=candidate.source_type,
            source_url=candidate.source_url,
            source_name=candidate.source_name,
            occurred_at=candidate.occurred_at,
            detainee_count=candidate.detainee_count,
            verified=verified,
            created_at=created_at or datetime.now(timezone.utc),
        )

    def to_serializable(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        payload["created_at"] = self.created_at.isoformat()
        return payload


class FilterCriteria(BaseModel):
    """Read-side filters used by the map API; ingestion never builds these."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    state: Optional[str] = None
    categories: Optional[List[str]] = None

    @field_validator("state")
    @classmethod
    def _normalize_state(cls, value: Optional[str]) -> Optional[str]:
        if not value or value == "All States":
            return None
        return value.strip().upper()

    def matches(self, record: PersistedRecord) -> bool:
        if self.start_date and record.occurred_at < self.start_date:
            return False
        if self.end_date and record.occurred_at > self.end_date:
            return False
        if self.state and record.state != self.state:
            return False
        if self.categories and record.category not in self.categories:
            return False
        return True


@dataclass
class IngestionSummary:
    total: int = 0
    successes: int = 0
    duplicates: int = 0
    invalid: int = 0
    irrelevant: int = 0
    geocode_failures: int = 0
    errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def skips(self) -> int:
        return self.duplicates + self.invalid + self.irrelevant

    def log_line(self) -> str:
        return (
            f"total={self.total} successes={self.successes} skips={self.skips} "
            f"(duplicates={self.duplicates}, invalid={self.invalid}, irrelevant={self.irrelevant}) "
            f"errors={self.errors} (geocode_failures={self.geocode_failures})"
        )
