"""
Turn cleaned article text into a `CandidateRecord`.

Two interchangeable strategies share the `RaidExtractor.extract` contract: a rule-based
extractor built on the location/category heuristics and an LLM extractor that asks a
text-generation backend for a JSON object. Both report failure the same way, by returning a
record whose title/location carry the NOT_FOUND sentinel.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.services.llm_clients import TextGenerator
from src.services.locations import extract_location, normalize_state
from src.services.raid_classifier import classify_category, extract_detainee_count
from src.services.raid_models import (
    DEFAULT_SOURCE_NAME,
    DEFAULT_SOURCE_TYPE,
    NOT_FOUND,
    RAID_CATEGORIES,
    CandidateRecord,
)

LOGGER = logging.getLogger(__name__)

LLM_EXCERPT_CHARS = 10_000
MAX_TITLE_CHARS = 160
MAX_DESCRIPTION_CHARS = 500

MONTH_PATTERN = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|"
    r"Aug(?:ust)?|Sep(?:t|tember)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)
LONG_DATE_PATTERN = re.compile(rf"\b({MONTH_PATTERN})\.?\s+(\d{{1,2}}),\s+(\d{{4}})\b", re.IGNORECASE)
ISO_DATE_PATTERN = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]?")
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


class ParseError(ValueError):
    """The generation backend returned text that is not a usable JSON object."""


def is_valid_candidate(record: CandidateRecord) -> bool:
    return record.is_valid


def _today() -> date:
    return datetime.now(timezone.utc).date()


def extract_date(text: str | None) -> date | None:
    if not text:
        return None
    match = LONG_DATE_PATTERN.search(text)
    if match:
        month, day, year = match.groups()
        try:
            return datetime.strptime(f"{month[:3].title()} {day} {year}", "%b %d %Y").date()
        except ValueError:
            LOGGER.debug("Unable to parse date %s", match.group(0))
    match = ISO_DATE_PATTERN.search(text)
    if match:
        try:
            return date(*(int(part) for part in match.groups()))
        except ValueError:
            return None
    return None


def _bounded_title(text: str) -> str:
    if len(text) > MAX_TITLE_CHARS:
        return text[:MAX_TITLE_CHARS].rsplit(" ", 1)[0].rstrip(",;:") + "..."
    return text


def _first_sentence(text: str) -> str | None:
    for match in SENTENCE_PATTERN.finditer(text):
        sentence = match.group(0).strip()
        if len(sentence.split()) >= 4:
            return _bounded_title(sentence)
    return None


def _excerpt(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rsplit(" ", 1)[0] + "..."


class RaidExtractor:
    """Interface for extraction strategies."""

    name = "base"

    def __init__(self, source_name: str = DEFAULT_SOURCE_NAME, source_type: str = DEFAULT_SOURCE_TYPE) -> None:
        self.source_name = source_name
        self.source_type = source_type

    async def extract(
        self,
        clean_text: str,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> CandidateRecord:
        raise NotImplementedError

    def _source(self, source_name: str | None, source_type: str | None) -> tuple[str, str]:
        return source_name or self.source_name, source_type or self.source_type

    def _sentinel(self, source_url: str, source_name: str | None = None, source_type: str | None = None) -> CandidateRecord:
        name, kind = self._source(source_name, source_type)
        return CandidateRecord.not_found(source_url, name, kind)


class HeuristicRaidExtractor(RaidExtractor):
    """Regex and keyword rules only; never raises."""

    name = "heuristic"

    async def extract(
        self,
        clean_text: str,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> CandidateRecord:
        return self.extract_sync(clean_text, source_url, headline, source_name, source_type)

    def extract_sync(
        self,
        clean_text: str,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> CandidateRecord:
        text = (clean_text or "").strip()
        headline = (headline or "").strip()
        if not text and not headline:
            return self._sentinel(source_url, source_name, source_type)
        match = extract_location(headline) or extract_location(text)
        location = match.location if match else NOT_FOUND
        state = match.state if match else NOT_FOUND
        title = _bounded_title(headline) if headline else _first_sentence(text)
        if not title:
            title = f"Enforcement action in {location}" if match else NOT_FOUND
        name, kind = self._source(source_name, source_type)
        return CandidateRecord(
            title=title,
            description=_excerpt(text or headline, MAX_DESCRIPTION_CHARS),
            location=location,
            state=state,
            category=classify_category(title, text),
            source_type=kind,
            source_url=source_url,
            source_name=name,
            occurred_at=extract_date(text) or extract_date(headline) or _today(),
            detainee_count=extract_detainee_count(title, text),
        )


class LlmRaidPayload(BaseModel):
    """Shape the model is asked to return; every field is optional because models drift."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    state: Optional[str] = None
    raid_type: Optional[str] = Field(default=None, alias="raidType")
    raid_date: Optional[str] = Field(default=None, alias="raidDate")
    detainee_count: Optional[int] = Field(default=None, alias="detaineeCount")
    is_about_ice_raids: Optional[bool] = Field(default=None, alias="isAboutICERaids")

    @field_validator("detainee_count", mode="before")
    @classmethod
    def _lenient_count(cls, value: Any) -> Any:
        # "dozens", "" and similar become null rather than failing the whole record.
        if isinstance(value, str):
            digits = re.search(r"\d+", value.replace(",", ""))
            return int(digits.group(0)) if digits else None
        if isinstance(value, float):
            return int(value)
        return value

    @field_validator("title", "description", "location", "state", "raid_type", "raid_date", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_PATTERN.sub("", text or "").strip()


def parse_llm_payload(text: str) -> LlmRaidPayload:
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Models sometimes add chatter around the object; fall back to the outermost braces.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ParseError("No JSON object found in model output.") from None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON in model output: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("Expected a JSON object.")
    try:
        return LlmRaidPayload.model_validate(data)
    except ValidationError as exc:
        raise ParseError(f"Model output failed validation: {exc}") from exc


class LlmRaidExtractor(RaidExtractor):
    """Ask a generation backend for the record; every failure becomes the sentinel."""

    name = "llm"

    def __init__(
        self,
        generator: TextGenerator,
        source_name: str = DEFAULT_SOURCE_NAME,
        source_type: str = DEFAULT_SOURCE_TYPE,
        excerpt_chars: int = LLM_EXCERPT_CHARS,
    ) -> None:
        super().__init__(source_name=source_name, source_type=source_type)
        self.generator = generator
        self.excerpt_chars = excerpt_chars

    def build_prompt(
        self,
        article_text: str,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> str:
        name, kind = self._source(source_name, source_type)
        headline_line = f"Headline: {headline}\n" if headline else ""
        return (
            "Analyze the following ICE news release text and extract specific information "
            "about enforcement actions.\n"
            "Return a single JSON object with exactly this structure:\n"
            "{\n"
            '  "title": "<title of the article>",\n'
            '  "description": "<summary of the enforcement action>",\n'
            '  "location": "<City, ST>",\n'
            '  "state": "<two-letter state abbreviation>",\n'
            '  "raidType": "<Workplace | Residential | Checkpoint | Other>",\n'
            f'  "sourceType": "{kind}",\n'
            f'  "sourceUrl": "{source_url}",\n'
            f'  "sourceName": "{name}",\n'
            '  "raidDate": "<date of the enforcement action, ISO 8601>",\n'
            '  "detaineeCount": <number of people detained, or null>\n'
            "}\n"
            "Rules:\n"
            '- For location, give both city and state (e.g., "Los Angeles, CA").\n'
            "- For raidDate, use the date in the article or the publication date.\n"
            '- raidType is "Workplace" for business raids, "Residential" for home raids, '
            '"Checkpoint" for traffic stops and "Other" otherwise.\n'
            '- If the text is not about an ICE enforcement action or raid, respond with '
            '{"isAboutICERaids": false} and nothing else.\n'
            "- Output JSON only; no commentary.\n\n"
            f"{headline_line}Article text:\n{article_text[: self.excerpt_chars]}\n"
        )

    async def extract(
        self,
        clean_text: str,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> CandidateRecord:
        try:
            prompt = self.build_prompt(clean_text or "", source_url, headline, source_name, source_type)
            LOGGER.debug("Sending %s chars to %s for %s", len(prompt), self.generator.model, source_url)
            raw = await asyncio.to_thread(self.generator.generate, prompt)
            payload = parse_llm_payload(raw)
        except ParseError:
            LOGGER.warning("Failed to parse model response for %s", source_url, exc_info=True)
            return self._sentinel(source_url, source_name, source_type)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Text generation failed for %s", source_url, exc_info=True)
            return self._sentinel(source_url, source_name, source_type)
        if payload.is_about_ice_raids is False:
            LOGGER.info("Model determined content is not about an enforcement action: %s", source_url)
            return self._sentinel(source_url, source_name, source_type)
        return self._to_candidate(payload, source_url, headline, source_name, source_type)

    def _to_candidate(
        self,
        payload: LlmRaidPayload,
        source_url: str,
        headline: str | None = None,
        source_name: str | None = None,
        source_type: str | None = None,
    ) -> CandidateRecord:
        title = (payload.title or "").strip() or (headline or "").strip() or NOT_FOUND
        description = (payload.description or "").strip() or NOT_FOUND
        location = (payload.location or "").strip() or NOT_FOUND
        state = normalize_state(payload.state)
        if not state and location != NOT_FOUND:
            match = extract_location(location)
            state = match.state if match else None
        category = self._normalize_category(payload.raid_type)
        if not category:
            category = classify_category(title, description)
        occurred_at = _parse_iso_date(payload.raid_date) or extract_date(payload.raid_date) or _today()
        detainee_count = payload.detainee_count
        if detainee_count is not None and detainee_count < 0:
            detainee_count = None
        name, kind = self._source(source_name, source_type)
        return CandidateRecord(
            title=title,
            description=description,
            location=location,
            state=state or NOT_FOUND,
            category=category,
            source_type=kind,
            source_url=source_url,
            source_name=name,
            occurred_at=occurred_at,
            detainee_count=detainee_count,
        )

    @staticmethod
    def _normalize_category(value: str | None) -> str | None:
        if not value:
            return None
        lowered = value.strip().lower()
        for category in RAID_CATEGORIES:
            if category.lower() == lowered:
                return category
        return None


def _parse_iso_date(value: str | None) -> date | None:
    if not value:
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def build_extractor(kind: str, generator: TextGenerator | None = None, **kwargs: Any) -> RaidExtractor:
    kind = (kind or "heuristic").lower()
    if kind == "heuristic":
        return HeuristicRaidExtractor(**kwargs)
    if kind == "llm":
        if generator is None:
            raise ValueError("The LLM extractor needs a text generator.")
        return LlmRaidExtractor(generator, **kwargs)
    raise ValueError(f"Unknown extractor '{kind}' (expected 'heuristic' or 'llm').")
