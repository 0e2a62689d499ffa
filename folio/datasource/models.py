"""
Normalised data models shared by all providers of the same data type.
"""

from datetime import date, datetime

from pydantic import BaseModel


class StockQuote(BaseModel):
    """Standard stock quote format used across all quote providers."""

    symbol: str
    price: float
    change: float | None = None
    change_percent: float | None = None
    previous_close: float | None = None
    volume: int | None = None
    timestamp: datetime
    source: str


class CompanyFundamentals(BaseModel):
    """Company fundamentals; fields a provider lacks stay None."""

    symbol: str
    market_cap: float | None = None
    trailing_pe: float | None = None
    forward_pe: float | None = None
    peg_ratio: float | None = None
    price_to_book: float | None = None
    price_to_sales: float | None = None
    beta: float | None = None
    dividend_yield: float | None = None
    eps_trailing: float | None = None
    profit_margins: float | None = None
    operating_margins: float | None = None
    return_on_assets: float | None = None
    return_on_equity: float | None = None
    revenue_growth: float | None = None
    earnings_growth: float | None = None
    week52_high: float | None = None
    week52_low: float | None = None
    source: str


class CommodityPrice(BaseModel):
    """Latest commodity price point."""

    commodity: str
    name: str
    price: float
    unit: str = ""
    as_of: str  # Provider's own date string
    source: str


class NewsArticle(BaseModel):
    """Standard news article format."""

    headline: str
    summary: str = ""
    link: str
    published_at: datetime
    source: str
    related_symbols: list[str] = []


class Filing(BaseModel):
    """One entry from a company's EDGAR filing index."""

    form: str
    filing_date: date
    report_date: date | None = None
    accession_number: str
    primary_document: str = ""
    url: str = ""


class CompanyFilings(BaseModel):
    """Recent regulatory filings for one issuer, newest first."""

    cik: str  # Zero-padded to 10 digits
    entity_name: str
    tickers: list[str] = []
    filings: list[Filing] = []
    source: str


def merge_fundamentals(results: list[CompanyFundamentals]) -> CompanyFundamentals:
    """
    Field-wise merge: the first provider (priority order) with a value wins.

    `source` lists every contributing provider, e.g. "finnhub+alphaVantage".
    """
    merged = results[0].model_dump()
    sources = [results[0].source]
    for other in results[1:]:
        contributed = False
        for name, value in other.model_dump().items():
            if name in ("symbol", "source") or value is None:
                continue
            if merged.get(name) is None:
                merged[name] = value
                contributed = True
        if contributed:
            sources.append(other.source)
    merged["source"] = "+".join(sources)
    return CompanyFundamentals(**merged)


def merge_news(results: list[list[NewsArticle]]) -> list[NewsArticle]:
    """Concatenate article lists, newest first (stable for equal times)."""
    articles = [article for batch in results for article in batch]
    articles.sort(key=lambda a: a.published_at, reverse=True)
    return articles
