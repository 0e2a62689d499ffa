import httpx
import pytest

from folio.datasource.models import NewsArticle
from folio.datasource.rss.rss import (
    RSSNewsProvider,
    clean_html_content,
    deduplicate_by_url,
    filter_by_keywords,
    parse_date,
    parse_feed,
    source_from_url,
)
from folio.services.client import ProviderHttpClient
from folio.services.errors import InvalidResponseError, ProviderHTTPError

YAHOO_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Yahoo! Finance: AAPL News</title>
    <item>
      <title>Apple&#160;beats estimates</title>
      <link>https://finance.yahoo.com/news/apple-beats</link>
      <description>&lt;p&gt;Revenue rose &lt;b&gt;8%&lt;/b&gt;.&lt;/p&gt;</description>
      <pubDate>Mon, 05 Jan 2026 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Untitled link</title>
    </item>
    <item>
      <title>iPhone demand steady</title>
      <link>https://finance.yahoo.com/news/iphone-demand</link>
      <pubDate>Mon, 05 Jan 2026 08:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
"""

GOOGLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>AAPL stock - Google News</title>
    <item>
      <title>Apple services hit record</title>
      <link>https://news.example.com/services</link>
      <pubDate>Mon, 05 Jan 2026 12:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Apple beats estimates (syndicated)</title>
      <link>HTTPS://FINANCE.YAHOO.COM/news/apple-beats</link>
      <pubDate>Mon, 05 Jan 2026 11:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>
"""


def _provider(yahoo=YAHOO_FEED, google=GOOGLE_FEED) -> RSSNewsProvider:
    def handler(request: httpx.Request) -> httpx.Response:
        body = yahoo if request.url.host == "finance.yahoo.com" else google
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, text=body)

    client = ProviderHttpClient(transport=httpx.MockTransport(handler))
    return RSSNewsProvider(client=client)


def test_clean_html_content() -> None:
    assert clean_html_content("<p>Hello&nbsp;<b>world</b></p>") == "Hello world"
    assert clean_html_content("<script>x()</script>Text") == "Text"
    assert clean_html_content(None) == ""


def test_parse_date_returns_naive_datetime() -> None:
    parsed = parse_date("Mon, 05 Jan 2026 10:00:00 +0000")

    assert parsed.tzinfo is None
    assert parse_date("not a date").tzinfo is None


def test_source_from_url() -> None:
    assert source_from_url("https://www.marketwatch.com/story/x") == "MarketWatch"
    assert source_from_url("https://news.example.com/a") == "news.example.com"


def test_parse_feed_cleans_entries_and_skips_linkless() -> None:
    articles = parse_feed(YAHOO_FEED, "Yahoo Finance", "AAPL")

    assert [a.headline for a in articles] == ["Apple beats estimates", "iPhone demand steady"]
    assert articles[0].summary == "Revenue rose 8% ."
    assert articles[0].related_symbols == ["AAPL"]
    assert articles[0].published_at.tzinfo is None


def test_parse_feed_rejects_non_feed() -> None:
    with pytest.raises(InvalidResponseError):
        parse_feed("<html><body>Service unavailable", "Yahoo Finance")


def test_deduplicate_by_url_keeps_first() -> None:
    first = NewsArticle(
        headline="a", link="https://x.com/A", published_at=parse_date(None), source="x"
    )
    second = NewsArticle(
        headline="b", link=" https://X.com/a ", published_at=parse_date(None), source="y"
    )

    assert deduplicate_by_url([first, second]) == [first]


def test_filter_by_keywords() -> None:
    article = NewsArticle(
        headline="Apple earnings", link="https://x.com", published_at=parse_date(None), source="x"
    )

    assert filter_by_keywords([article], ["EARNINGS"]) == [article]
    assert filter_by_keywords([article], ["tesla"]) == []
    assert filter_by_keywords([article], None) == [article]


@pytest.mark.asyncio
async def test_provider_merges_feeds_newest_first() -> None:
    articles = await _provider().fetch("aapl")

    assert [a.headline for a in articles] == [
        "Apple services hit record",
        "Apple beats estimates",
        "iPhone demand steady",
    ]
    assert articles[1].source == "Yahoo Finance"


@pytest.mark.asyncio
async def test_provider_applies_limit_and_keywords() -> None:
    provider = _provider()

    limited = await provider.fetch("AAPL", {"limit": 1})
    filtered = await provider.fetch("AAPL", {"keywords": ["iphone"]})

    assert len(limited) == 1
    assert [a.headline for a in filtered] == ["iPhone demand steady"]


@pytest.mark.asyncio
async def test_one_failing_feed_is_tolerated() -> None:
    articles = await _provider(google=503).fetch("AAPL")

    assert len(articles) == 2


@pytest.mark.asyncio
async def test_all_feeds_failing_raises() -> None:
    with pytest.raises(ProviderHTTPError):
        await _provider(yahoo=503, google=503).fetch("AAPL")


def test_disabled_provider_is_not_configured() -> None:
    assert not RSSNewsProvider(client=ProviderHttpClient(), enabled=False).is_configured()
