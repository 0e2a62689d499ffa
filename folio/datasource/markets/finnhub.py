"""
Finnhub API providers for quotes, fundamentals, and company news.

API Documentation: https://finnhub.io/docs/api
Free tier: 60 calls/minute
Get API key at: https://finnhub.io/
"""

from datetime import datetime, timedelta
from typing import Any, TypeVar

from loguru import logger

from folio.datasource.base import ProviderAdapter
from folio.datasource.models import CompanyFundamentals, NewsArticle, StockQuote
from folio.services.client import ProviderHttpClient
from folio.services.classifier import (
    ErrorKind,
    body_message,
    mentions_bad_credentials,
    mentions_rate_limit,
)
from folio.services.errors import AuthenticationError, InvalidResponseError

T = TypeVar("T")


def _percent(value: Any) -> float | None:
    """Finnhub reports ratios as percentages (12.5 means 12.5%)."""
    if value is None:
        return None
    return round(float(value) / 100, 6)


class FinnhubProvider(ProviderAdapter[T]):
    """Shared request handling for all Finnhub endpoints."""

    BASE_URL = "https://finnhub.io/api/v1"
    SERVICE_ID = "finnhub"

    def __init__(
        self,
        api_key: str,
        client: ProviderHttpClient | None = None,
        timeout: float | None = None,
        priority: int | None = None,
    ):
        super().__init__(client, timeout=timeout, priority=priority)
        self.api_key = api_key

    @property
    def name(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _request(self, endpoint: str, params: dict[str, Any]) -> Any:
        if not self.is_configured():
            raise AuthenticationError("FINNHUB_API_KEY is not configured", self.name)

        data = await self.client.get_json(
            self.SERVICE_ID,
            f"{self.BASE_URL}/{endpoint}",
            params={**params, "token": self.api_key},
            timeout=self.timeout,
        )
        # Errors sometimes arrive as 200 with {"error": "..."}
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            raise InvalidResponseError(
                f"Finnhub error: {data['error']}", service_id=self.name, body=data
            )
        return data

    def classify_error(self, raw: BaseException) -> ErrorKind:
        if isinstance(raw, InvalidResponseError):
            message = body_message(raw.body)
            if mentions_rate_limit(message):
                return ErrorKind.RATE_LIMIT
            if mentions_bad_credentials(message):
                return ErrorKind.AUTH_ERROR
        return super().classify_error(raw)


class FinnhubQuoteProvider(FinnhubProvider[StockQuote]):
    """Real-time quotes from /quote. Secondary quote provider."""

    priority = 2

    async def _fetch(self, key: str, context: dict[str, Any]) -> StockQuote:
        symbol = key.upper()
        data = await self._request("quote", {"symbol": symbol})

        # Finnhub returns all zeros when symbol not found
        if not data or (data.get("c", 0) == 0 and data.get("pc", 0) == 0):
            raise InvalidResponseError(
                f"No quote data for symbol: {symbol}", service_id=self.name, body=data
            )

        timestamp = data.get("t")
        return StockQuote(
            symbol=symbol,
            price=data["c"],
            change=data.get("d"),
            change_percent=data.get("dp"),
            previous_close=data.get("pc"),
            timestamp=datetime.fromtimestamp(timestamp) if timestamp else datetime.now(),
            source=self.SERVICE_ID,
        )


class FinnhubFundamentalsProvider(FinnhubProvider[CompanyFundamentals]):
    """Basic financials from /stock/metric."""

    priority = 1

    async def _fetch(self, key: str, context: dict[str, Any]) -> CompanyFundamentals:
        symbol = key.upper()
        data = await self._request("stock/metric", {"symbol": symbol, "metric": "all"})

        metric = (data or {}).get("metric") or {}
        if not metric:
            raise InvalidResponseError(
                f"No fundamentals for symbol: {symbol}", service_id=self.name, body=data
            )

        market_cap = metric.get("marketCapitalization")
        return CompanyFundamentals(
            symbol=symbol,
            # Reported in millions
            market_cap=market_cap * 1_000_000 if market_cap is not None else None,
            trailing_pe=metric.get("peTTM") or metric.get("peBasicExclExtraTTM"),
            price_to_book=metric.get("pbAnnual"),
            price_to_sales=metric.get("psTTM"),
            beta=metric.get("beta"),
            dividend_yield=_percent(metric.get("dividendYieldIndicatedAnnual")),
            eps_trailing=metric.get("epsTTM"),
            profit_margins=_percent(metric.get("netProfitMarginTTM")),
            operating_margins=_percent(metric.get("operatingMarginTTM")),
            return_on_assets=_percent(metric.get("roaTTM")),
            return_on_equity=_percent(metric.get("roeTTM")),
            revenue_growth=_percent(metric.get("revenueGrowthTTMYoy")),
            earnings_growth=_percent(metric.get("epsGrowthTTMYoy")),
            week52_high=metric.get("52WeekHigh"),
            week52_low=metric.get("52WeekLow"),
            source=self.SERVICE_ID,
        )


class FinnhubNewsProvider(FinnhubProvider[list[NewsArticle]]):
    """Company news from /company-news."""

    priority = 2
    MAX_ARTICLES = 30

    def __init__(self, *args, days: int = 7, **kwargs):
        super().__init__(*args, **kwargs)
        self.days = days

    async def _fetch(self, key: str, context: dict[str, Any]) -> list[NewsArticle]:
        symbol = key.upper()
        days = context.get("days", self.days)
        to_date = datetime.now()
        from_date = to_date - timedelta(days=days)

        data = await self._request(
            "company-news",
            {
                "symbol": symbol,
                "from": from_date.strftime("%Y-%m-%d"),
                "to": to_date.strftime("%Y-%m-%d"),
            },
        )
        if not isinstance(data, list):
            raise InvalidResponseError(
                "Unexpected company-news payload", service_id=self.name, body=data
            )

        articles = []
        for item in data[: self.MAX_ARTICLES]:
            if not item.get("headline") or not item.get("url"):
                continue
            articles.append(
                NewsArticle(
                    headline=item["headline"],
                    summary=item.get("summary", ""),
                    link=item["url"],
                    published_at=datetime.fromtimestamp(item.get("datetime", 0)),
                    source=item.get("source") or self.SERVICE_ID,
                    related_symbols=[
                        s for s in (item.get("related") or symbol).split(",") if s
                    ],
                )
            )

        logger.info(f"Fetched {len(articles)} Finnhub news items for {symbol}")
        return articles
