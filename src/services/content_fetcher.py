"""
Page retrieval for the raid pipeline: article-link discovery on listing pages and feeds,
and cleaned article text for the extractors.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

LOGGER = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

LINK_CONTAINER_SELECTORS = ("main a", ".news-item a", ".newsroom-content a", "article a")
CONTENT_CONTAINER_SELECTORS = ("article", ".content", "main", ".news-content")
ARTICLE_PATH_MARKERS = ("/news/", "/releases/", "/newsroom/")
DATE_PATH_PATTERN = re.compile(r"/\d{4}/\d{2}/")
HEADLINE_SELECTORS = ("article h1", "main h1", ".field--name-node-title", "h1")
TITLE_SUFFIX_PATTERN = re.compile(r"\s+\|\s+[^|]+$")
MAX_HEADLINE_CHARS = 300


class FetchError(RuntimeError):
    """Raised when a page cannot be retrieved (transport error, timeout or non-2xx)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


def is_article_url(url: str) -> bool:
    return any(marker in url for marker in ARTICLE_PATH_MARKERS) or bool(DATE_PATH_PATTERN.search(url))


def extract_links(html: str, base_url: str) -> Set[str]:
    """Return absolute article-looking links found in the listing page's content areas."""
    soup = BeautifulSoup(html, "html.parser")
    links: Set[str] = set()
    for selector in LINK_CONTAINER_SELECTORS:
        for tag in soup.select(selector):
            href = (tag.get("href") or "").strip()
            if not href or href.startswith(("mailto:", "tel:", "javascript:")):
                continue
            full_url, _fragment = urldefrag(urljoin(base_url, href))
            if urlparse(full_url).scheme not in {"http", "https"}:
                continue
            if is_article_url(full_url):
                links.add(full_url)
    return links


def clean_html(html: str) -> str:
    """Strip non-content markup and return whitespace-collapsed article text."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    matched: list[Any] = []
    for selector in CONTENT_CONTAINER_SELECTORS:
        for node in soup.select(selector):
            if not any(node is other for other in matched):
                matched.append(node)
    # Nested containers (e.g. <main><article>) contribute their text once, via the outermost.
    outermost = [
        node for node in matched if not any(parent is other for other in matched for parent in node.parents)
    ]
    text = " ".join(node.get_text(" ", strip=True) for node in outermost)
    if not text.strip():
        root = soup.body or soup
        text = root.get_text(" ", strip=True)
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class ArticlePage:
    url: str
    text: str
    headline: Optional[str] = None


def extract_headline(html: str) -> Optional[str]:
    """Article headline: the first content <h1>, else the <title> minus any "| Site" suffix."""
    soup = BeautifulSoup(html, "html.parser")
    for selector in HEADLINE_SELECTORS:
        node = soup.select_one(selector)
        if node:
            text = re.sub(r"\s+", " ", node.get_text(" ", strip=True)).strip()
            if text:
                return text[:MAX_HEADLINE_CHARS]
    if soup.title and soup.title.string:
        text = TITLE_SUFFIX_PATTERN.sub("", re.sub(r"\s+", " ", soup.title.string).strip())
        if text:
            return text[:MAX_HEADLINE_CHARS]
    return None


def feed_source_name(parsed: Any, feed_url: str) -> str:
    title = getattr(getattr(parsed, "feed", None), "title", "") or ""
    title = re.sub(r"\s+", " ", title).strip()
    return title or urlparse(feed_url).netloc or feed_url


class ContentFetcher:
    """Blocking `requests` calls pushed onto worker threads so callers stay on one loop."""

    def __init__(self, timeout: float = 10.0, user_agent: str = BROWSER_USER_AGENT) -> None:
        self.timeout = timeout
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    def _get(self, url: str) -> str:
        try:
            response = requests.get(url, headers=self._headers, timeout=self.timeout, allow_redirects=True)
        except requests.Timeout as exc:
            raise FetchError(url, f"timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc
        if not response.ok:
            raise FetchError(url, f"HTTP {response.status_code}")
        return response.text

    async def discover_links(self, listing_url: str) -> Set[str]:
        LOGGER.info("Fetching article links from %s", listing_url)
        html = await asyncio.to_thread(self._get, listing_url)
        links = extract_links(html, listing_url)
        LOGGER.info("Found %s candidate article links on %s", len(links), listing_url)
        return links

    async def discover_feed_links(self, feed_url: str) -> Dict[str, str]:
        """Map each feed entry link to the feed's name (its title, else its host)."""
        parsed = await asyncio.to_thread(feedparser.parse, feed_url, agent=self._headers["User-Agent"])
        if parsed.bozo:
            LOGGER.warning("RSS parse issue for %s: %s", feed_url, parsed.bozo_exception)
        feed_name = feed_source_name(parsed, feed_url)
        links: Dict[str, str] = {}
        for entry in getattr(parsed, "entries", []):
            link = getattr(entry, "link", "")
            if link:
                links[urldefrag(link)[0]] = feed_name
        LOGGER.info("Feed %s (%s) yielded %s entry links", feed_url, feed_name, len(links))
        return links

    async def fetch_article(self, article_url: str) -> ArticlePage:
        LOGGER.debug("Fetching article content: %s", article_url)
        html = await asyncio.to_thread(self._get, article_url)
        return ArticlePage(url=article_url, text=clean_html(html), headline=extract_headline(html))

    async def fetch_clean_text(self, article_url: str) -> str:
        page = await self.fetch_article(article_url)
        return page.text
