from __future__ import annotations

from src.services.relevance import is_relevant, matched_keywords


def test_is_relevant_matches_keywords_case_insensitively() -> None:
    assert is_relevant("ICE agents conducted a sweep")
    assert is_relevant("immigration and customs enforcement said Tuesday")
    assert is_relevant("The person remains in custody.")


def test_is_relevant_requires_whole_words() -> None:
    assert not is_relevant("The cooperation meeting reviewed preenforcement budgets")
    assert not is_relevant("Police made arrests downtown")


def test_is_relevant_matches_arrest_count_pattern() -> None:
    assert is_relevant("Officials said 14 individuals apprehended near the border.")
    assert is_relevant("50 people were arrested at a workplace in Austin, TX")


def test_is_relevant_rejects_empty_and_unrelated_text() -> None:
    assert not is_relevant("")
    assert not is_relevant("   ")
    assert not is_relevant(None)
    assert not is_relevant("The city council approved a new park budget.")


def test_matched_keywords_lists_hits() -> None:
    hits = matched_keywords("ICE removal operation")

    assert "ICE" in hits
    assert "removal" in hits
    assert "operation" in hits
    assert "custody" not in hits
