"""
RSS news provider.

Fetches per-symbol headline feeds (Yahoo Finance, Google News search),
parses them with feedparser, cleans summaries with BeautifulSoup, then
deduplicates by URL and sorts newest first.
"""

import asyncio
from datetime import datetime
from typing import Any
from urllib.parse import quote_plus, urlparse

import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from loguru import logger

from folio.datasource.base import ProviderAdapter
from folio.datasource.models import NewsArticle
from folio.services.client import ProviderHttpClient
from folio.services.errors import InvalidResponseError

YAHOO_STOCK_NEWS = "https://finance.yahoo.com/rss/headline?s={symbol}"
GOOGLE_NEWS_SEARCH = (
    "https://news.google.com/rss/search?q={query}&hl=en-US&gl=US&ceid=US:en"
)

KNOWN_SOURCES = {
    "yahoo": "Yahoo Finance",
    "google": "Google News",
    "seekingalpha": "Seeking Alpha",
    "marketwatch": "MarketWatch",
    "investing": "Investing.com",
}


def clean_html_content(html: str | None) -> str:
    """Strip tags and decode entities; non-breaking spaces become spaces."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    text = soup.get_text(separator=" ").replace("\xa0", " ")
    return " ".join(text.split())


def parse_date(date_str: str | None) -> datetime:
    """Parse a feed date into a naive local datetime, defaulting to now."""
    if not date_str:
        return datetime.now()
    try:
        dt = date_parser.parse(date_str)
    except (ValueError, OverflowError):
        return datetime.now()
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def source_from_url(url: str) -> str:
    hostname = urlparse(url).hostname or ""
    for needle, name in KNOWN_SOURCES.items():
        if needle in hostname:
            return name
    return hostname or "RSS Feed"


def normalize_url(url: str) -> str:
    return url.strip().lower()


def deduplicate_by_url(articles: list[NewsArticle]) -> list[NewsArticle]:
    """Drop articles whose normalised link was already seen; first wins."""
    seen: set[str] = set()
    unique = []
    for article in articles:
        key = normalize_url(article.link)
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique


def filter_by_keywords(
    articles: list[NewsArticle], keywords: list[str] | None
) -> list[NewsArticle]:
    """Keep articles mentioning any keyword in headline or summary."""
    if not keywords:
        return articles
    needles = [k.lower() for k in keywords]
    return [
        a
        for a in articles
        if any(n in f"{a.headline} {a.summary}".lower() for n in needles)
    ]


def parse_feed(
    xml: str | bytes, source: str, symbol: str | None = None
) -> list[NewsArticle]:
    """
    Parse an RSS/Atom document into NewsArticle models.

    Entries without a title or link are skipped. Raises InvalidResponseError
    when the document is not a feed at all.
    """
    parsed = feedparser.parse(xml)
    if parsed.bozo and not parsed.entries:
        raise InvalidResponseError(
            f"Unparseable feed from {source}: {parsed.get('bozo_exception')}",
            service_id=RSSNewsProvider.SERVICE_ID,
        )

    articles = []
    for entry in parsed.entries:
        headline = clean_html_content(entry.get("title"))
        link = (entry.get("link") or "").strip()
        if not headline or not link:
            continue

        published = entry.get("published") or entry.get("updated")
        articles.append(
            NewsArticle(
                headline=headline,
                summary=clean_html_content(
                    entry.get("summary") or entry.get("description")
                )[:1000],
                link=link,
                published_at=parse_date(published),
                source=source or source_from_url(link),
                related_symbols=[symbol] if symbol else [],
            )
        )
    return articles


class RSSNewsProvider(ProviderAdapter[list[NewsArticle]]):
    """
    Company news from free RSS feeds.

    Context keys:
        limit: maximum number of articles returned (default 100)
        keywords: optional keyword filter
    """

    SERVICE_ID = "rss"
    DEFAULT_LIMIT = 100

    priority = 1
    timeout = 15.0

    def __init__(
        self,
        client: ProviderHttpClient | None = None,
        timeout: float | None = None,
        priority: int | None = None,
        enabled: bool = True,
    ):
        super().__init__(client, timeout=timeout, priority=priority)
        self.enabled = enabled

    @property
    def name(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return self.enabled

    def feed_urls(self, symbol: str) -> dict[str, str]:
        return {
            "Yahoo Finance": YAHOO_STOCK_NEWS.format(symbol=quote_plus(symbol)),
            "Google News": GOOGLE_NEWS_SEARCH.format(
                query=quote_plus(f"{symbol} stock")
            ),
        }

    async def _fetch_feed(self, url: str, source: str, symbol: str) -> list[NewsArticle]:
        xml = await self.client.get_text(self.SERVICE_ID, url, timeout=self.timeout)
        articles = parse_feed(xml, source, symbol)
        logger.debug(f"Parsed {len(articles)} articles from {source} for {symbol}")
        return articles

    async def _fetch(self, key: str, context: dict[str, Any]) -> list[NewsArticle]:
        symbol = key.upper()
        feeds = self.feed_urls(symbol)

        results = await asyncio.gather(
            *(self._fetch_feed(url, source, symbol) for source, url in feeds.items()),
            return_exceptions=True,
        )

        articles: list[NewsArticle] = []
        failures: list[BaseException] = []
        for source, result in zip(feeds, results):
            if isinstance(result, BaseException):
                logger.warning(f"RSS feed {source} failed for {symbol}: {result}")
                failures.append(result)
            else:
                articles.extend(result)

        # Only a total outage is a provider failure
        if failures and len(failures) == len(feeds):
            raise failures[0]

        articles = deduplicate_by_url(articles)
        articles = filter_by_keywords(articles, context.get("keywords"))
        articles.sort(key=lambda a: a.published_at, reverse=True)

        limit = context.get("limit", self.DEFAULT_LIMIT)
        logger.info(f"Found {len(articles)} RSS articles for {symbol}")
        return articles[:limit]
