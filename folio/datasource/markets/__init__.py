"""
Market data providers: quotes, fundamentals, commodities, company news, filings.
"""

from folio.datasource.markets.alpha_vantage import (
    AlphaVantageCommodityProvider,
    AlphaVantageFundamentalsProvider,
    AlphaVantageQuoteProvider,
)
from folio.datasource.markets.finnhub import (
    FinnhubFundamentalsProvider,
    FinnhubNewsProvider,
    FinnhubQuoteProvider,
)
from folio.datasource.markets.sec_edgar import SECEdgarFilingsProvider
from folio.datasource.markets.tiingo import TiingoQuoteProvider

__all__ = [
    "AlphaVantageCommodityProvider",
    "AlphaVantageFundamentalsProvider",
    "AlphaVantageQuoteProvider",
    "FinnhubFundamentalsProvider",
    "FinnhubNewsProvider",
    "FinnhubQuoteProvider",
    "SECEdgarFilingsProvider",
    "TiingoQuoteProvider",
]
