"""
Cheap pre-filter deciding whether fetched text is worth a full extraction pass.
"""

from __future__ import annotations

import re
from typing import List, Pattern, Sequence

ENFORCEMENT_KEYWORDS = (
    "ICE",
    "Immigration and Customs Enforcement",
    "arrest",
    "operation",
    "enforcement",
    "detain",
    "removal",
    "apprehend",
    "deportation",
    "custody",
)

ARREST_COUNT_PATTERN = re.compile(
    r"\d+\s+(?:individuals|people|persons|foreign nationals|aliens|migrants|immigrants)\s+(?:(?:were|was)\s+)?"
    r"(?:arrested|detained|apprehended|in custody|removed)",
    re.IGNORECASE,
)


def _build_keyword_patterns(keywords: Sequence[str]) -> list[tuple[str, Pattern[str]]]:
    return [(kw, re.compile(rf"\b{re.escape(kw)}\b", re.IGNORECASE)) for kw in keywords if kw.strip()]


KEYWORD_PATTERNS = _build_keyword_patterns(ENFORCEMENT_KEYWORDS)


def matched_keywords(text: str | None) -> List[str]:
    if not text:
        return []
    return [kw for kw, pattern in KEYWORD_PATTERNS if pattern.search(text)]


def is_relevant(clean_text: str | None) -> bool:
    if not clean_text or not clean_text.strip():
        return False
    if any(pattern.search(clean_text) for _, pattern in KEYWORD_PATTERNS):
        return True
    return bool(ARREST_COUNT_PATTERN.search(clean_text))
