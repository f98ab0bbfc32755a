from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
import requests

from src.services import content_fetcher
from src.services.content_fetcher import (
    ContentFetcher,
    FetchError,
    clean_html,
    extract_headline,
    extract_links,
    feed_source_name,
)


LISTING_HTML = """
<html><body>
  <nav><a href="/news/releases/from-the-menu">Menu item</a></nav>
  <main>
    <a href="/news/releases/ice-arrests-50-in-austin">ICE arrests 50</a>
    <a href="/about">About</a>
    <a href="https://example.org/2024/05/local-story#comments">Local story</a>
    <a href="mailto:press@example.org">Press</a>
  </main>
  <div class="news-item"><a href="/news/releases/ice-arrests-50-in-austin#top">Duplicate</a></div>
</body></html>
"""


class FakeResponse:
    def __init__(self, text: str, status_code: int = 200) -> None:
        self.text = text
        self.status_code = status_code

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def test_extract_links_resolves_and_filters() -> None:
    links = extract_links(LISTING_HTML, "https://www.ice.gov/newsroom")

    assert links == {
        "https://www.ice.gov/news/releases/ice-arrests-50-in-austin",
        "https://example.org/2024/05/local-story",
    }


def test_extract_links_returns_empty_set_for_unexpected_layout() -> None:
    assert extract_links("<html><body><p>No links here</p></body></html>", "https://www.ice.gov/") == set()


def test_clean_html_prefers_content_containers() -> None:
    html = (
        "<html><head><style>.x { color: red; }</style></head><body>"
        "<nav>Menu</nav><main><article><p>ICE  arrested</p><script>var x = 1;</script></article>"
        "<p>Footer   note</p></main></body></html>"
    )

    assert clean_html(html) == "ICE arrested Footer note"


def test_clean_html_falls_back_to_body_text() -> None:
    assert clean_html("<html><body><div>Just   body\n text</div></body></html>") == "Just body text"


def test_fetch_clean_text_raises_fetch_error_on_http_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(content_fetcher.requests, "get", lambda *args, **kwargs: FakeResponse("", 404))
    fetcher = ContentFetcher()

    with pytest.raises(FetchError) as excinfo:
        asyncio.run(fetcher.fetch_clean_text("https://www.ice.gov/news/releases/missing"))

    assert excinfo.value.url == "https://www.ice.gov/news/releases/missing"
    assert "404" in str(excinfo.value)


def test_fetch_clean_text_raises_fetch_error_on_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_get(*args: Any, **kwargs: Any) -> FakeResponse:
        raise requests.Timeout("slow")

    monkeypatch.setattr(content_fetcher.requests, "get", fake_get)

    with pytest.raises(FetchError):
        asyncio.run(ContentFetcher(timeout=0.1).fetch_clean_text("https://www.ice.gov/news/releases/slow"))


def test_discover_links_uses_listing_page(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    def fake_get(url: str, headers: dict[str, str], timeout: float, allow_redirects: bool) -> FakeResponse:
        seen["url"] = url
        seen["timeout"] = timeout
        seen["user_agent"] = headers["User-Agent"]
        return FakeResponse(LISTING_HTML)

    monkeypatch.setattr(content_fetcher.requests, "get", fake_get)

    links = asyncio.run(ContentFetcher().discover_links("https://www.ice.gov/newsroom"))

    assert "https://www.ice.gov/news/releases/ice-arrests-50-in-austin" in links
    assert seen["url"] == "https://www.ice.gov/newsroom"
    assert seen["timeout"] == 10.0
    assert "Mozilla" in seen["user_agent"]


def test_discover_feed_links_drops_fragments(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_parse(url: str, agent: str) -> SimpleNamespace:
        return SimpleNamespace(
            bozo=False,
            feed=SimpleNamespace(title="  ICE News\n Releases "),
            entries=[
                SimpleNamespace(link="https://www.ice.gov/news/releases/a#top"),
                SimpleNamespace(link=""),
            ],
        )

    monkeypatch.setattr(content_fetcher.feedparser, "parse", fake_parse)

    links = asyncio.run(ContentFetcher().discover_feed_links("https://www.ice.gov/feeds/news.rss"))

    assert links == {"https://www.ice.gov/news/releases/a": "ICE News Releases"}


def test_feed_source_name_falls_back_to_host() -> None:
    parsed = SimpleNamespace(bozo=True, entries=[])

    assert feed_source_name(parsed, "https://unitedwedream.org/feed/") == "unitedwedream.org"


def test_extract_headline_prefers_article_heading() -> None:
    html = (
        "<html><head><title>Newsroom | ICE</title></head><body>"
        "<h1>Site banner</h1><article><h1>ICE  arrests 14 in\n Houston, TX</h1><p>Body</p></article>"
        "</body></html>"
    )

    assert extract_headline(html) == "ICE arrests 14 in Houston, TX"


def test_extract_headline_strips_site_suffix_from_title() -> None:
    html = "<html><head><title>ERO Chicago arrests 3 in Joliet, IL | ICE</title></head><body><p>x</p></body></html>"

    assert extract_headline(html) == "ERO Chicago arrests 3 in Joliet, IL"
    assert extract_headline("<html><body><p>No heading</p></body></html>") is None


def test_fetch_article_returns_text_and_headline(monkeypatch: pytest.MonkeyPatch) -> None:
    html = "<html><body><main><h1>Worksite operation in Austin, TX</h1><p>ICE arrested 50.</p></main></body></html>"
    monkeypatch.setattr(content_fetcher.requests, "get", lambda *args, **kwargs: FakeResponse(html))

    page = asyncio.run(ContentFetcher().fetch_article("https://www.ice.gov/news/releases/austin"))

    assert page.url == "https://www.ice.gov/news/releases/austin"
    assert page.headline == "Worksite operation in Austin, TX"
    assert page.text == "Worksite operation in Austin, TX ICE arrested 50."
