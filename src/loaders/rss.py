from __future__ import annotations

"""RSS/Atom feed collection producing news articles."""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Sequence

import feedparser
import httpx
from bs4 import BeautifulSoup

from src.rag.types import Article

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_SKIPPED_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript"]
_BLOCK_TAGS = [
    "p", "div", "br", "li", "ul", "ol", "tr", "td", "th", "pre", "blockquote",
    "article", "section", "h1", "h2", "h3", "h4", "h5", "h6",
]
_USER_AGENT = "Mozilla/5.0 (compatible; news-rag-chat/0.1)"


class RSSLoaderError(RuntimeError):
    pass


@dataclass(frozen=True)
class FeedConfig:
    timeout: float = 20.0
    max_items_per_feed: int = 20
    fetch_full_content: bool = False


def _soup(markup: str) -> BeautifulSoup:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(_SKIPPED_TAGS):
        tag.decompose()
    # Block boundaries become whitespace; inline markup joins without gaps.
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before(" ")
        tag.insert_after(" ")
    return soup


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_html(markup: str) -> str:
    """Return the visible text of an HTML fragment."""
    if not markup:
        return ""
    return _collapse(_soup(markup).get_text())


def extract_article_text(markup: str) -> str:
    """Return the text of the page's <article> element, or of the whole page."""
    soup = _soup(markup)
    article = soup.find("article")
    if article is not None:
        text = _collapse(article.get_text())
        if text:
            return text
    return _collapse(soup.get_text())


def _entry_body(entry: Any) -> str:
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description") or ""


def parse_feed(xml_text: str, feed_url: str, max_items: int | None = None) -> list[Article]:
    """Parse RSS 0.9x/1.0/2.0 or Atom markup into articles."""
    parsed = feedparser.parse(xml_text)
    if not parsed.entries and (parsed.bozo or not parsed.version):
        detail = parsed.get("bozo_exception") or "unrecognised feed format"
        raise RSSLoaderError(f"Invalid feed markup from {feed_url}: {detail}")

    source = parsed.feed.get("title") or feed_url
    entries = parsed.entries if max_items is None else parsed.entries[:max_items]
    articles: list[Article] = []
    for entry in entries:
        link = entry.get("link")
        articles.append(
            Article(
                id=entry.get("id") or link,
                title=_collapse(entry.get("title") or ""),
                content=strip_html(_entry_body(entry)),
                source=source,
                link=link,
                pub_date=entry.get("published") or entry.get("updated"),
            )
        )
    return articles


async def fetch_article_text(link: str, client: httpx.AsyncClient) -> str:
    """Download an article page and extract its readable text."""
    try:
        response = await client.get(link, headers={"User-Agent": _USER_AGENT})
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise RSSLoaderError(str(exc)) from exc
    return extract_article_text(response.text)


async def collect_articles(
    feed_urls: Sequence[str],
    config: FeedConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[Article]:
    """Collect articles from every feed; failing feeds are logged and skipped."""
    config = config or FeedConfig()
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=config.timeout, follow_redirects=True)
    articles: list[Article] = []
    try:
        for feed_url in feed_urls:
            try:
                response = await client.get(feed_url, headers={"User-Agent": _USER_AGENT})
                response.raise_for_status()
                feed_articles = parse_feed(
                    response.text, feed_url, max_items=config.max_items_per_feed
                )
            except (httpx.HTTPError, RSSLoaderError) as exc:
                logger.warning(
                    "rss_feed_failed",
                    extra={"feed": feed_url, "detail": type(exc).__name__},
                )
                continue
            if config.fetch_full_content:
                feed_articles = [
                    await _with_full_text(article, client) for article in feed_articles
                ]
            logger.info(
                "rss_feed_collected",
                extra={"feed": feed_url, "articles": len(feed_articles)},
            )
            articles.extend(feed_articles)
    finally:
        if owns_client and client is not None:
            await client.aclose()
    return articles


async def _with_full_text(article: Article, client: httpx.AsyncClient) -> Article:
    if not article.link:
        return article
    try:
        text = await fetch_article_text(article.link, client)
    except RSSLoaderError as exc:
        logger.warning(
            "rss_article_fetch_failed",
            extra={"link": article.link, "detail": type(exc).__name__},
        )
        return article
    if not text:
        return article
    return replace(article, content=text)
