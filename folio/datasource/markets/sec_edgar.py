"""
SEC EDGAR filings provider.

API Documentation: https://www.sec.gov/search-filings/edgar-application-programming-interfaces
Free and keyless, but every request must carry a User-Agent naming the
caller and a contact address. EDGAR answers clients above 10 requests/second
with HTTP 403.
"""

import asyncio
from typing import Any

from loguru import logger

from folio.datasource.base import ProviderAdapter
from folio.datasource.models import CompanyFilings, Filing
from folio.services.client import ProviderHttpClient
from folio.services.classifier import ErrorKind
from folio.services.errors import AuthenticationError, InvalidResponseError, ProviderHTTPError


class SECEdgarFilingsProvider(ProviderAdapter[CompanyFilings]):
    """Recent filings from the EDGAR submissions API (US issuers only)."""

    BASE_URL = "https://data.sec.gov"
    TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
    ARCHIVE_URL = "https://www.sec.gov/Archives/edgar/data"
    SERVICE_ID = "secEdgar"
    MAX_FILINGS = 100

    priority = 1

    def __init__(
        self,
        user_agent: str,
        client: ProviderHttpClient | None = None,
        timeout: float | None = None,
        priority: int | None = None,
    ):
        super().__init__(client, timeout=timeout, priority=priority)
        self.user_agent = user_agent
        self._ciks: dict[str, str] | None = None
        self._ciks_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.SERVICE_ID

    def is_configured(self) -> bool:
        return bool(self.user_agent)

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": "application/json"}

    async def _cik_for(self, symbol: str) -> str:
        """Resolve a ticker to its 10-digit CIK; the ticker map is loaded once."""
        if self._ciks is None:
            async with self._ciks_lock:
                if self._ciks is None:
                    self._ciks = await self._load_ciks()

        cik = self._ciks.get(symbol)
        if cik is None:
            raise InvalidResponseError(
                f"No CIK found for ticker: {symbol}", service_id=self.name
            )
        return cik

    async def _load_ciks(self) -> dict[str, str]:
        data = await self.client.get_json(
            self.SERVICE_ID, self.TICKERS_URL, headers=self._headers(), timeout=self.timeout
        )
        if not isinstance(data, dict):
            raise InvalidResponseError(
                "Unexpected company_tickers payload", service_id=self.name, body=data
            )

        ciks = {
            str(entry["ticker"]).upper(): str(entry["cik_str"]).zfill(10)
            for entry in data.values()
            if isinstance(entry, dict) and "ticker" in entry and "cik_str" in entry
        }
        logger.info(f"Loaded {len(ciks)} SEC ticker mappings")
        return ciks

    async def _fetch(self, key: str, context: dict[str, Any]) -> CompanyFilings:
        if not self.is_configured():
            raise AuthenticationError("SEC_USER_AGENT is not configured", self.name)

        symbol = key.upper()
        cik = await self._cik_for(symbol)
        data = await self.client.get_json(
            self.SERVICE_ID,
            f"{self.BASE_URL}/submissions/CIK{cik}.json",
            headers=self._headers(),
            timeout=self.timeout,
        )

        recent = None
        if isinstance(data, dict):
            recent = (data.get("filings") or {}).get("recent")
        if not isinstance(recent, dict):
            raise InvalidResponseError(
                f"No filing index for {symbol}", service_id=self.name, body=data
            )

        return CompanyFilings(
            cik=cik,
            entity_name=data.get("name") or "",
            tickers=data.get("tickers") or [],
            filings=self._to_filings(cik, recent),
            source=self.SERVICE_ID,
        )

    def _to_filings(self, cik: str, recent: dict[str, list[Any]]) -> list[Filing]:
        # `recent` is columnar: one list per field, same index per filing
        def column(field: str, i: int) -> Any:
            values = recent.get(field) or []
            return values[i] if i < len(values) else None

        filings = []
        for i in range(min(len(recent.get("form") or []), self.MAX_FILINGS)):
            accession = column("accessionNumber", i) or ""
            document = column("primaryDocument", i) or ""
            url = ""
            if accession and document:
                url = f"{self.ARCHIVE_URL}/{int(cik)}/{accession.replace('-', '')}/{document}"
            filings.append(
                Filing(
                    form=column("form", i),
                    filing_date=column("filingDate", i),
                    report_date=column("reportDate", i) or None,
                    accession_number=accession,
                    primary_document=document,
                    url=url,
                )
            )
        return filings

    def classify_error(self, raw: BaseException) -> ErrorKind:
        # EDGAR throttles with 403 rather than 429
        if isinstance(raw, ProviderHTTPError) and raw.status_code == 403:
            return ErrorKind.RATE_LIMIT
        return super().classify_error(raw)
