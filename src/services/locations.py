"""
"City, State" detection for free-form article text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

STATE_ABBREVIATIONS: Dict[str, str] = {
    "AL": "Alabama",
    "AK": "Alaska",
    "AZ": "Arizona",
    "AR": "Arkansas",
    "CA": "California",
    "CO": "Colorado",
    "CT": "Connecticut",
    "DE": "Delaware",
    "FL": "Florida",
    "GA": "Georgia",
    "HI": "Hawaii",
    "ID": "Idaho",
    "IL": "Illinois",
    "IN": "Indiana",
    "IA": "Iowa",
    "KS": "Kansas",
    "KY": "Kentucky",
    "LA": "Louisiana",
    "ME": "Maine",
    "MD": "Maryland",
    "MA": "Massachusetts",
    "MI": "Michigan",
    "MN": "Minnesota",
    "MS": "Mississippi",
    "MO": "Missouri",
    "MT": "Montana",
    "NE": "Nebraska",
    "NV": "Nevada",
    "NH": "New Hampshire",
    "NJ": "New Jersey",
    "NM": "New Mexico",
    "NY": "New York",
    "NC": "North Carolina",
    "ND": "North Dakota",
    "OH": "Ohio",
    "OK": "Oklahoma",
    "OR": "Oregon",
    "PA": "Pennsylvania",
    "RI": "Rhode Island",
    "SC": "South Carolina",
    "SD": "South Dakota",
    "TN": "Tennessee",
    "TX": "Texas",
    "UT": "Utah",
    "VT": "Vermont",
    "VA": "Virginia",
    "WA": "Washington",
    "WV": "West Virginia",
    "WI": "Wisconsin",
    "WY": "Wyoming",
}

STATE_NAME_TO_CODE: Dict[str, str] = {name.lower(): code for code, name in STATE_ABBREVIATIONS.items()}

# Left side: any run of words since the last punctuation mark; the city is trimmed from its tail.
CITY_STATE_PATTERN = re.compile(
    r"(?P<city>[A-Za-z][A-Za-z.'-]*(?:[ \t]+[A-Za-z][A-Za-z.'-]*)*)[ \t]*,[ \t]*"
    r"(?P<state>[A-Za-z]+(?:[ \t]+[A-Za-z]+)*)"
)

CITY_BOUNDARY_WORDS = frozenset(
    {"in", "at", "near", "from", "of", "the", "and", "to", "on", "outside", "across", "around"}
)
# Dotted words that belong to a place name rather than ending a sentence.
CITY_ABBREVIATIONS = frozenset({"st.", "ste.", "ft.", "mt.", "pt."})
MAX_CITY_WORDS = 3


@dataclass(frozen=True)
class LocationMatch:
    city: str
    state: str

    @property
    def location(self) -> str:
        return f"{self.city}, {self.state}"


def normalize_state(token: str | None) -> str | None:
    """Return the 2-letter code for an abbreviation or full state name, else None."""
    if not token:
        return None
    cleaned = re.sub(r"\s+", " ", token.strip().rstrip(".")).strip()
    if len(cleaned) == 2:
        code = cleaned.upper()
        return code if code in STATE_ABBREVIATIONS else None
    return STATE_NAME_TO_CODE.get(cleaned.lower())


def _trim_city(raw: str) -> str | None:
    """Take the capitalized run just before the comma, stopping at filler words and sentence ends."""
    tail: List[str] = []
    for word in reversed(raw.split()):
        if not word[0].isupper() or word.lower() in CITY_BOUNDARY_WORDS:
            break
        if tail and word.endswith(".") and word.lower() not in CITY_ABBREVIATIONS:
            break
        tail.insert(0, word)
    if not tail:
        return None
    tail = tail[-MAX_CITY_WORDS:]
    city = " ".join(tail).strip(".-'")
    if city.isupper() and len(city) > 2:
        city = city.title()
    return city or None


def _resolve_state(raw: str) -> str | None:
    words = raw.split()
    if len(words) >= 2:
        code = STATE_NAME_TO_CODE.get(f"{words[0]} {words[1]}".lower())
        if code:
            return code
    first = words[0]
    if len(first) > 2:
        return STATE_NAME_TO_CODE.get(first.lower())
    # A bare lower-case "in"/"or"/"me" followed by more words is prose, not a state code.
    if len(words) > 1 and not first.isupper():
        return None
    return normalize_state(first)


def extract_location(text: str | None) -> LocationMatch | None:
    """Return the first "City, State" mention whose state is a real US state."""
    if not text:
        return None
    pos = 0
    while True:
        match = CITY_STATE_PATTERN.search(text, pos)
        if not match:
            return None
        state = _resolve_state(match.group("state"))
        city = _trim_city(match.group("city")) if state else None
        if state and city:
            return LocationMatch(city=city, state=state)
        # Re-scan from the right-hand side so it can serve as the next city.
        pos = match.start("state")
