"""
Keyword heuristics that infer a raid category and detainee count from report text.
"""

from __future__ import annotations

import re
from typing import Pattern, Sequence

from src.services.raid_models import CHECKPOINT, OTHER, RESIDENTIAL, WORKPLACE

# Checked in order; the first category with a hit wins.
CATEGORY_KEYWORDS: Sequence[tuple[str, Sequence[str]]] = (
    (WORKPLACE, ("workplace", "work site", "business", "factory", "restaurant")),
    (RESIDENTIAL, ("home", "house", "apartment", "residential")),
    (CHECKPOINT, ("checkpoint", "highway", "traffic", "road", "interstate")),
)

DETAINEE_NOUNS = (
    r"(?:individuals|people|persons|immigrants|migrants|workers|undocumented|illegal aliens)"
)
DETAINEE_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(
        rf"(\d+)\s+{DETAINEE_NOUNS}\s+(?:were|was)\s+(?:arrested|detained|taken into custody)",
        re.IGNORECASE,
    ),
    re.compile(rf"arrested\s+(\d+)\s+{DETAINEE_NOUNS}", re.IGNORECASE),
    re.compile(rf"detained\s+(\d+)\s+{DETAINEE_NOUNS}", re.IGNORECASE),
)


def _combine(title: str | None, description: str | None) -> str:
    return " ".join(part for part in (title, description) if part)


def classify_category(title: str | None, description: str | None) -> str:
    blob = _combine(title, description).lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in blob for keyword in keywords):
            return category
    return OTHER


def extract_detainee_count(title: str | None, description: str | None) -> int | None:
    blob = _combine(title, description)
    for pattern in DETAINEE_PATTERNS:
        match = pattern.search(blob)
        if match:
            return int(match.group(1))
    return None
