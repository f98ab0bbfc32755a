from __future__ import annotations

from src.services.locations import STATE_ABBREVIATIONS, extract_location, normalize_state


def test_extract_location_finds_city_and_abbreviation() -> None:
    match = extract_location("ICE officers arrested 50 workers at a factory in Houston, TX on Monday.")

    assert match is not None
    assert match.city == "Houston"
    assert match.state == "TX"
    assert match.location == "Houston, TX"


def test_extract_location_converts_full_state_name() -> None:
    match = extract_location("The operation took place in Los Angeles, California last week.")

    assert match is not None
    assert match.location == "Los Angeles, CA"


def test_extract_location_handles_two_word_state() -> None:
    match = extract_location("Agents arrived in Albuquerque, New Mexico early Tuesday.")

    assert match is not None
    assert match.location == "Albuquerque, NM"


def test_extract_location_skips_non_state_matches() -> None:
    text = "Officers, agents and analysts met in Phoenix, Arizona to plan the operation."
    match = extract_location(text)

    assert match is not None
    assert match.location == "Phoenix, AZ"


def test_extract_location_rejects_prose_commas() -> None:
    assert extract_location("Agents went to Chicago, or so the report said.") is None


def test_extract_location_returns_none_without_pattern() -> None:
    assert extract_location("No location is mentioned anywhere in this text.") is None
    assert extract_location("") is None
    assert extract_location(None) is None


def test_normalize_state_accepts_codes_and_names() -> None:
    assert normalize_state("tx") == "TX"
    assert normalize_state("Texas") == "TX"
    assert normalize_state("north carolina") == "NC"
    assert normalize_state("ZZ") is None
    assert normalize_state("Narnia") is None
    assert normalize_state(None) is None


def test_state_table_covers_fifty_states() -> None:
    assert len(STATE_ABBREVIATIONS) == 50


def test_extract_location_trims_title_case_headlines() -> None:
    match = extract_location("ERO Chicago Arrests Illegal Alien In Joliet, Illinois")

    assert match is not None
    assert match.location == "Joliet, IL"


def test_extract_location_trims_upper_case_headlines() -> None:
    match = extract_location("ICE ARRESTS 12 IN MIAMI, FL")

    assert match is not None
    assert match.location == "Miami, FL"


def test_extract_location_stops_at_sentence_boundary() -> None:
    match = extract_location("Officers worked in Houston. Dallas, TX officials said")

    assert match is not None
    assert match.location == "Dallas, TX"


def test_extract_location_keeps_dotted_place_names() -> None:
    match = extract_location("Agents detained two men in St. Louis, Missouri on Friday.")

    assert match is not None
    assert match.location == "St. Louis, MO"
