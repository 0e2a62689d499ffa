"""
Alpha Vantage providers for quotes, company overview, and commodities.

API Documentation: https://www.alphavantage.co/documentation/
Free tier: 25 requests/day. Throttling and most errors come back as HTTP 200
with a `Note`, `Information` or `Error Message` field instead of data.
"""

from datetime import datetime
from typing import Any, TypeVar

from loguru import logger

from folio.datasource.base import ProviderAdapter
from folio.datasource.models import CommodityPrice, CompanyFundamentals, StockQuote
from folio.services.client import ProviderHttpClient
from folio.services.classifier import ErrorKind, mentions_bad_credentials
from folio.services.errors import AuthenticationError, InvalidResponseError

T = TypeVar("T")

# Fields Alpha Vantage uses in place of data
NOTICE_FIELDS = ("Note", "Information", "Error Message")

COMMODITIES = {
    "WTI": {"name": "WTI Crude Oil", "interval": "daily", "unit": "USD per barrel"},
    "BRENT": {"name": "Brent Crude Oil", "interval": "daily", "unit": "USD per barrel"},
    "NATURAL_GAS": {"name": "Natural Gas", "interval": "daily", "unit": "USD per MMBtu"},
    "COPPER": {"name": "Copper", "interval": "monthly", "unit": "USD per pound"},
}


def _number(value: Any) -> float | None:
    """Parse Alpha Vantage numeric strings; 'None', '-' and '.' mean missing."""
    if value in (None, "", "None", "-", "."):
        return None
    try:
        return float(str(value).rstrip("%"))
    except ValueError:
        return None


class AlphaVantageProvider(ProviderAdapter[T]):
    """Shared request handling for the /query endpoint."""

    BASE_URL = "https://www.alphavantage.co/query"
    SERVICE_ID = "alphaVantage"

    priority = 3

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

    async def _query(self, function: str, **params: Any) -> dict[str, Any]:
        if not self.is_configured():
            raise AuthenticationError("ALPHAVANTAGE_API_KEY is not configured", self.name)

        data = await self.client.get_json(
            self.SERVICE_ID,
            self.BASE_URL,
            params={"function": function, **params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        if not isinstance(data, dict):
            raise InvalidResponseError(
                f"Unexpected {function} payload", service_id=self.name, body=data
            )

        for field in NOTICE_FIELDS:
            if field in data:
                logger.warning(f"Alpha Vantage {function} {field}: {data[field]}")
                raise InvalidResponseError(
                    f"Alpha Vantage {field}: {data[field]}",
                    service_id=self.name,
                    body=data,
                )
        return data

    def classify_error(self, raw: BaseException) -> ErrorKind:
        body = raw.body if isinstance(raw, InvalidResponseError) else None
        if isinstance(body, dict):
            if "Note" in body:
                return ErrorKind.RATE_LIMIT
            if "Information" in body:
                # Also used for demo-key and premium-only notices
                if mentions_bad_credentials(body["Information"]):
                    return ErrorKind.AUTH_ERROR
                return ErrorKind.RATE_LIMIT
            if "Error Message" in body:
                if mentions_bad_credentials(body["Error Message"]):
                    return ErrorKind.AUTH_ERROR
                return ErrorKind.INVALID_RESPONSE
        return super().classify_error(raw)


class AlphaVantageQuoteProvider(AlphaVantageProvider[StockQuote]):
    """GLOBAL_QUOTE. Last-resort quote provider."""

    # No bulk endpoint; a chunk is fetched as parallel single-symbol calls
    max_batch_size = 10

    async def _fetch(self, key: str, context: dict[str, Any]) -> StockQuote:
        symbol = key.upper()
        data = await self._query("GLOBAL_QUOTE", symbol=symbol)

        quote = data.get("Global Quote") or {}
        price = _number(quote.get("05. price"))
        if price is None:
            raise InvalidResponseError(
                f"No quote data for symbol: {symbol}", service_id=self.name, body=data
            )

        trading_day = quote.get("07. latest trading day")
        volume = _number(quote.get("06. volume"))
        return StockQuote(
            symbol=symbol,
            price=price,
            change=_number(quote.get("09. change")),
            change_percent=_number(quote.get("10. change percent")),
            previous_close=_number(quote.get("08. previous close")),
            volume=int(volume) if volume is not None else None,
            timestamp=datetime.fromisoformat(trading_day) if trading_day else datetime.now(),
            source=self.SERVICE_ID,
        )


class AlphaVantageFundamentalsProvider(AlphaVantageProvider[CompanyFundamentals]):
    """Company OVERVIEW."""

    priority = 2

    async def _fetch(self, key: str, context: dict[str, Any]) -> CompanyFundamentals:
        symbol = key.upper()
        data = await self._query("OVERVIEW", symbol=symbol)

        # Unknown symbols come back as {}
        if not data.get("Symbol"):
            raise InvalidResponseError(
                f"No overview for symbol: {symbol}", service_id=self.name, body=data
            )

        return CompanyFundamentals(
            symbol=symbol,
            market_cap=_number(data.get("MarketCapitalization")),
            trailing_pe=_number(data.get("TrailingPE")),
            forward_pe=_number(data.get("ForwardPE")),
            peg_ratio=_number(data.get("PEGRatio")),
            price_to_book=_number(data.get("PriceToBookRatio")),
            price_to_sales=_number(data.get("PriceToSalesRatioTTM")),
            beta=_number(data.get("Beta")),
            dividend_yield=_number(data.get("DividendYield")),
            eps_trailing=_number(data.get("EPS")),
            profit_margins=_number(data.get("ProfitMargin")),
            operating_margins=_number(data.get("OperatingMarginTTM")),
            return_on_assets=_number(data.get("ReturnOnAssetsTTM")),
            return_on_equity=_number(data.get("ReturnOnEquityTTM")),
            revenue_growth=_number(data.get("QuarterlyRevenueGrowthYOY")),
            earnings_growth=_number(data.get("QuarterlyEarningsGrowthYOY")),
            week52_high=_number(data.get("52WeekHigh")),
            week52_low=_number(data.get("52WeekLow")),
            source=self.SERVICE_ID,
        )


class AlphaVantageCommodityProvider(AlphaVantageProvider[CommodityPrice]):
    """Latest point of a commodity series (WTI, BRENT, NATURAL_GAS, COPPER)."""

    priority = 1
    timeout = 15.0

    async def _fetch(self, key: str, context: dict[str, Any]) -> CommodityPrice:
        commodity = key.upper()
        meta = COMMODITIES.get(commodity)
        if meta is None:
            raise ValueError(f"Unsupported commodity: {key}")

        data = await self._query(commodity, interval=meta["interval"])

        # Newest first; holidays are reported as "."
        for point in data.get("data") or []:
            price = _number(point.get("value"))
            if price is not None:
                return CommodityPrice(
                    commodity=commodity,
                    name=data.get("name") or meta["name"],
                    price=price,
                    unit=meta["unit"],
                    as_of=point.get("date", ""),
                    source=self.SERVICE_ID,
                )

        raise InvalidResponseError(
            f"No {meta['name']} data available", service_id=self.name, body=data
        )
