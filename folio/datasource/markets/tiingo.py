"""
Tiingo IEX quote provider.

API Documentation: https://www.tiingo.com/documentation/iex
Primary quote provider: commercial redistribution allowed, batches of up to
500 tickers per request.
"""

from datetime import datetime
from typing import Any

from folio.datasource.base import ProviderAdapter
from folio.datasource.models import StockQuote
from folio.services.client import ProviderHttpClient
from folio.services.classifier import ErrorKind, body_message, mentions_bad_credentials
from folio.services.errors import AuthenticationError, InvalidResponseError


class TiingoQuoteProvider(ProviderAdapter[StockQuote]):
    """Stock quotes from Tiingo's IEX endpoint."""

    BASE_URL = "https://api.tiingo.com/iex"
    SERVICE_ID = "tiingo"

    priority = 1
    max_batch_size = 500

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

    async def _fetch(self, key: str, context: dict[str, Any]) -> StockQuote:
        quotes = await self._fetch_many([key], context)
        quote = quotes.get(key)
        if quote is None:
            raise InvalidResponseError(
                f"No quote data returned for symbol: {key}", service_id=self.name
            )
        return quote

    async def _fetch_many(
        self, keys: list[str], context: dict[str, Any]
    ) -> dict[str, StockQuote]:
        """One request for the whole chunk; symbols Tiingo doesn't know are absent."""
        if not self.is_configured():
            raise AuthenticationError("TIINGO_API_KEY is not configured", self.name)

        data = await self.client.get_json(
            self.SERVICE_ID,
            f"{self.BASE_URL}/",
            params={"tickers": ",".join(keys), "token": self.api_key},
            timeout=self.timeout,
        )
        if not isinstance(data, list):
            raise InvalidResponseError(
                f"Unexpected Tiingo payload: {body_message(data) or type(data).__name__}",
                service_id=self.name,
                body=data,
            )

        by_symbol = {
            quote.symbol: quote for quote in (self._to_quote(item) for item in data)
        }
        return {key: by_symbol[key.upper()] for key in keys if key.upper() in by_symbol}

    def _to_quote(self, item: dict[str, Any]) -> StockQuote:
        symbol = item["ticker"].upper()
        # tngoLast covers hours when 'last' is null
        price = item.get("last") if item.get("last") is not None else item.get("tngoLast")
        if price is None:
            raise InvalidResponseError(f"No price for {symbol}", service_id=self.name)

        prev_close = item.get("prevClose")
        change = change_percent = None
        if prev_close:
            change = round(price - prev_close, 4)
            change_percent = round(change / prev_close * 100, 2)

        timestamp = item.get("timestamp")
        return StockQuote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=change_percent,
            previous_close=prev_close,
            volume=item.get("volume"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
            source=self.SERVICE_ID,
        )

    def classify_error(self, raw: BaseException) -> ErrorKind:
        # Tiingo reports bad tokens as {"detail": "Invalid token."}
        if isinstance(raw, InvalidResponseError) and mentions_bad_credentials(
            body_message(raw.body)
        ):
            return ErrorKind.AUTH_ERROR
        return super().classify_error(raw)
