from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from folio.api import create_app, status_for_result
from folio.datasource.base import ProviderAdapter
from folio.datasource.models import (
    CommodityPrice,
    CompanyFilings,
    Filing,
    NewsArticle,
    StockQuote,
)
from folio.services.classifier import ErrorKind
from folio.services.errors import AuthenticationError, ProviderHTTPError, RateLimitError
from folio.services.orchestrator import FetchError, FetchResult
from folio.settings import Settings


def _quote(symbol: str) -> StockQuote:
    return StockQuote(
        symbol=symbol,
        price=190.5,
        timestamp=datetime(2026, 1, 5, 15, 0),
        source="tiingo",
    )


class StubSources:
    """Fixed provider groups in place of a SourceManager."""

    def __init__(self, **groups):
        self.groups = groups
        self.reloads = 0

    def get_providers(self, group: str):
        return list(self.groups.get(group, []))

    def reload(self) -> None:
        self.reloads += 1

    def get_status(self):
        return {"groups": {g: [p.name for p in ps] for g, ps in self.groups.items()}}


@pytest.fixture
def make_client(orchestrator):
    clients = []

    def factory(**groups) -> TestClient:
        app = create_app(Settings(), orchestrator=orchestrator, sources=StubSources(**groups))
        # Entering runs the lifespan and keeps one event loop for all requests
        client = TestClient(app).__enter__()
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


def test_quote_ok(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", _quote, priority=1)
    client = make_client(quotes=[tiingo])

    response = client.get("/api/quote/aapl")

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["symbol"] == "AAPL"
    assert body["data"]["price"] == 190.5
    assert body["source"] == "tiingo"
    assert body["cached"] is False
    assert body["errors"] == []
    assert body["metadata"]["providers_attempted"] == ["tiingo"]


def test_quote_served_from_cache_on_second_call(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", _quote)
    client = make_client(quotes=[tiingo])

    client.get("/api/quote/MSFT")
    response = client.get("/api/quote/MSFT")

    assert response.json()["source"] == "cache"
    assert tiingo.calls == ["MSFT"]


def test_refresh_bypasses_cache(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", _quote)
    client = make_client(quotes=[tiingo])

    client.get("/api/quote/NVDA")
    response = client.get("/api/quote/NVDA", params={"refresh": True})

    assert response.json()["source"] == "tiingo"
    assert len(tiingo.calls) == 2


def test_rate_limited_everywhere_is_429(make_client, make_provider) -> None:
    client = make_client(
        quotes=[
            make_provider("tiingo", RateLimitError("tiingo"), priority=1),
            make_provider("finnhub", ProviderHTTPError("finnhub", 500), priority=2),
        ]
    )

    response = client.get("/api/quote/AAPL")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["detail"]["errors"] == [
        {"provider": "tiingo", "code": "RATE_LIMIT"},
        {"provider": "finnhub", "code": "HTTP_ERROR"},
    ]


def test_total_outage_is_503_without_raw_messages(make_client, make_provider) -> None:
    client = make_client(
        quotes=[
            make_provider(
                "tiingo", AuthenticationError("token=secret-token rejected", "tiingo")
            ),
        ]
    )

    response = client.get("/api/quote/AAPL")

    assert response.status_code == 503
    assert "secret-token" not in response.text
    assert response.json()["detail"]["errors"] == [{"provider": "tiingo", "code": "AUTH_ERROR"}]


def test_invalid_symbol_is_422(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", _quote)
    client = make_client(quotes=[tiingo])

    response = client.get("/api/quote/AAPL;DROP")

    assert response.status_code == 422
    assert tiingo.calls == []


def test_unknown_commodity_is_404(make_client, make_provider) -> None:
    client = make_client(commodities=[make_provider("alphaVantage", "unused")])

    assert client.get("/api/commodities/unobtainium").status_code == 404


def test_commodity_ok(make_client, make_provider) -> None:
    price = CommodityPrice(
        commodity="WTI", name="WTI Crude Oil", price=71.3, unit="USD per barrel",
        as_of="2026-01-02", source="alphaVantage",
    )
    client = make_client(commodities=[make_provider("alphaVantage", price)])

    response = client.get("/api/commodities/wti")

    assert response.status_code == 200
    assert response.json()["data"]["price"] == 71.3


def test_news_merges_providers_and_applies_limit(make_client, make_provider) -> None:
    def article(link: str, hour: int) -> NewsArticle:
        return NewsArticle(
            headline=link, link=link, published_at=datetime(2026, 1, 5, hour), source="x"
        )

    client = make_client(
        news=[
            make_provider("rss", [article("https://a.com/1", 9), article("https://a.com/2", 7)], priority=1),
            make_provider("finnhub", [article("https://A.com/1", 10), article("https://b.com/3", 8)], priority=2),
        ]
    )

    response = client.get("/api/news/AAPL", params={"limit": 2})

    body = response.json()
    assert response.status_code == 200
    assert body["source"] == "merged"
    assert [a["link"] for a in body["data"]] == ["https://A.com/1", "https://b.com/3"]


def test_stats_and_health(make_client, make_provider, orchestrator) -> None:
    client = make_client(quotes=[make_provider("tiingo", _quote)])
    client.get("/api/quote/AAPL")

    stats = client.get("/api/data-sources/stats").json()
    assert stats["providers"]["tiingo"]["successes"] == 1
    assert stats["sources"]["groups"]["quotes"] == ["tiingo"]
    assert client.get("/health").json() == {"status": "ok", "open_circuits": []}

    for _ in range(3):
        orchestrator.breakers.get("finnhub").record_failure()
    assert client.get("/health").json() == {"status": "degraded", "open_circuits": ["finnhub"]}


def _result(data=None, *codes: ErrorKind) -> FetchResult:
    return FetchResult(
        data=data,
        source="none" if data is None else "tiingo",
        cached=False,
        timestamp=datetime(2026, 1, 5),
        age=None if data is None else 0.0,
        errors=tuple(FetchError("p", code, "boom") for code in codes),
    )


def test_status_for_result() -> None:
    assert status_for_result(_result(1.0, ErrorKind.RATE_LIMIT)) == 200
    assert status_for_result(_result(None, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT)) == 429
    assert status_for_result(_result(None, ErrorKind.TIMEOUT)) == 503
    assert status_for_result(_result(None)) == 503


def _article(link: str, hour: int) -> NewsArticle:
    return NewsArticle(headline=link, link=link, published_at=datetime(2026, 1, 5, hour), source="x")


class LimitedNews(ProviderAdapter):
    """Honours a `limit` context key the way the RSS provider does."""

    name = "rss"

    def __init__(self, articles):
        super().__init__(client=object())
        self.articles = articles
        self.contexts = []

    async def _fetch(self, key, context):
        self.contexts.append(dict(context))
        return self.articles[: context.get("limit", len(self.articles))]


def test_news_limit_trims_the_response_not_the_cached_list(make_client) -> None:
    news = LimitedNews([_article(f"https://a.com/{i}", 10 - i) for i in range(3)])
    client = make_client(news=[news])

    first = client.get("/api/news/AAPL", params={"limit": 1}).json()
    second = client.get("/api/news/AAPL", params={"limit": 3}).json()

    assert [a["link"] for a in first["data"]] == ["https://a.com/0"]
    assert second["source"] == "cache"
    assert len(second["data"]) == 3
    assert news.contexts == [{}]


def test_quotes_batch_falls_back_per_symbol(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", lambda s: None if s == "BRK.A" else _quote(s), priority=1)
    finnhub = make_provider("finnhub", _quote, priority=2)
    client = make_client(quotes=[tiingo, finnhub])

    response = client.get("/api/quotes", params={"symbols": "aapl, BRK.A,AAPL"})

    assert response.status_code == 200
    body = response.json()
    assert list(body["data"]) == ["AAPL", "BRK.A"]
    assert body["data"]["AAPL"]["source"] == "tiingo"
    assert body["data"]["BRK.A"]["source"] == "finnhub"
    assert body["data"]["BRK.A"]["errors"] == [{"provider": "tiingo", "code": "INVALID_RESPONSE"}]
    assert finnhub.calls == ["BRK.A"]
    assert body["errors"] == {}
    assert body["summary"] == {"total": 2, "successful": 2, "failed": 0}


def test_quotes_batch_reports_failed_symbols(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", lambda s: None if s == "NOPE" else _quote(s))
    client = make_client(quotes=[tiingo])

    body = client.get("/api/quotes", params={"symbols": "AAPL,NOPE"}).json()

    assert list(body["data"]) == ["AAPL"]
    assert body["errors"] == {"NOPE": [{"provider": "tiingo", "code": "INVALID_RESPONSE"}]}


def test_quotes_batch_total_failure_is_503(make_client, make_provider) -> None:
    client = make_client(quotes=[make_provider("tiingo", ProviderHTTPError("tiingo", 500))])

    response = client.get("/api/quotes", params={"symbols": "AAPL,MSFT"})

    assert response.status_code == 503
    assert response.json()["detail"]["errors"]["MSFT"] == [
        {"provider": "tiingo", "code": "HTTP_ERROR"}
    ]


def test_quotes_batch_validates_symbols(make_client, make_provider) -> None:
    client = make_client(quotes=[make_provider("tiingo", _quote)])

    assert client.get("/api/quotes", params={"symbols": " , "}).status_code == 422
    assert client.get("/api/quotes", params={"symbols": "AAPL,BAD;"}).status_code == 422
    too_many = ",".join(f"S{i}" for i in range(101))
    assert client.get("/api/quotes", params={"symbols": too_many}).status_code == 422


def test_filings_filtered_by_form(make_client, make_provider) -> None:
    filings = CompanyFilings(
        cik="0000320193",
        entity_name="Apple Inc.",
        tickers=["AAPL"],
        filings=[
            Filing(form="10-K", filing_date="2025-10-31", accession_number="a"),
            Filing(form="8-K", filing_date="2025-08-01", accession_number="b"),
        ],
        source="secEdgar",
    )
    edgar = make_provider("secEdgar", filings)
    client = make_client(filings=[edgar])

    response = client.get("/api/filings/aapl", params={"form": "10-k"})

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "secEdgar"
    assert [f["form"] for f in body["data"]["filings"]] == ["10-K"]
    assert client.get("/api/filings/AAPL").json()["source"] == "cache"
    assert edgar.calls == ["AAPL"]


def test_circuit_reset_reenables_a_disabled_provider(
    make_client, make_provider, orchestrator
) -> None:
    client = make_client(quotes=[make_provider("tiingo", _quote)])
    orchestrator.breakers.disable("tiingo", "bad key")

    response = client.post("/api/data-sources/circuits/tiingo/reset")

    assert response.status_code == 200
    assert response.json()["status"]["state"] == "CLOSED"
    assert client.post("/api/data-sources/circuits/missing/reset").status_code == 404

    orchestrator.breakers.disable("tiingo", "bad key")
    client.post("/api/data-sources/circuits/reset")
    assert client.get("/health").json()["open_circuits"] == []


def test_cache_invalidation_forces_a_refetch(make_client, make_provider) -> None:
    tiingo = make_provider("tiingo", _quote)
    client = make_client(quotes=[tiingo])
    client.get("/api/quote/AAPL")

    response = client.post("/api/data-sources/cache/invalidate", params={"pattern": "quotes:AAPL"})
    client.get("/api/quote/AAPL")

    assert response.json() == {"pattern": "quotes:AAPL", "invalidated": 1}
    assert tiingo.calls == ["AAPL", "AAPL"]


def test_reload_rereads_provider_config(orchestrator) -> None:
    sources = StubSources()
    with TestClient(create_app(Settings(), orchestrator=orchestrator, sources=sources)) as client:
        response = client.post("/api/data-sources/reload")

    assert response.status_code == 200
    assert sources.reloads == 1


def test_shutdown_cancels_in_flight_requests(orchestrator) -> None:
    cancelled = []
    orchestrator.deduplicator.cancel_all = lambda: cancelled.append(True) or 0

    with TestClient(create_app(Settings(), orchestrator=orchestrator, sources=StubSources())):
        assert cancelled == []

    assert cancelled == [True]
