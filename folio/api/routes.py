"""
HTTP routes for market data.
"""

import dataclasses
import re
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from loguru import logger

from folio.api.responses import render, render_many
from folio.datasource.markets.alpha_vantage import COMMODITIES as COMMODITY_SERIES
from folio.datasource.models import NewsArticle, merge_fundamentals, merge_news
from folio.datasource.rss.rss import normalize_url
from folio.datasource.source_manager import (
    COMMODITIES,
    FILINGS,
    FUNDAMENTALS,
    NEWS,
    QUOTES,
    SourceManager,
)
from folio.exceptions import NotFoundError, UpstreamUnavailableError, ValidationError
from folio.services.orchestrator import (
    BatchRequest,
    DataSourceOrchestrator,
    FetchRequest,
)
from folio.services.ttl import Tier

SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9.\-^=]{1,12}$")
MAX_SYMBOLS = 100

router = APIRouter()


def get_orchestrator(request: Request) -> DataSourceOrchestrator:
    return request.app.state.orchestrator


def get_sources(request: Request) -> SourceManager:
    return request.app.state.sources


def _symbol(value: str) -> str:
    if not SYMBOL_PATTERN.match(value):
        raise ValidationError(f"Invalid symbol: {value!r}")
    return value.upper()


def _article_key(article: NewsArticle) -> str:
    return normalize_url(article.link)


@router.get("/api/quote/{symbol}")
async def get_quote(
    symbol: str,
    tier: Tier = "free",
    refresh: bool = Query(default=False, description="Bypass the cache"),
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    result = await orchestrator.fetch_with_fallback(
        FetchRequest(
            key=_symbol(symbol),
            providers=sources.get_providers(QUOTES),
            cache_key_prefix=QUOTES,
            tier=tier,
            bypass_cache=refresh,
        )
    )
    return render(result)


@router.get("/api/quotes")
async def get_quotes(
    symbols: str = Query(..., description="Comma-separated symbols"),
    tier: Tier = "free",
    refresh: bool = Query(default=False, description="Bypass the cache"),
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    """
    Quotes for many symbols.

    The first provider with a bulk endpoint serves the whole list in chunks;
    symbols it could not serve fall back through the remaining providers one
    by one (stale cache last).
    """
    keys = list(dict.fromkeys(_symbol(s.strip()) for s in symbols.split(",") if s.strip()))
    if not keys:
        raise ValidationError("No symbols given")
    if len(keys) > MAX_SYMBOLS:
        raise ValidationError(f"At most {MAX_SYMBOLS} symbols per request, got {len(keys)}")

    providers = sources.get_providers(QUOTES)
    if not providers:
        raise UpstreamUnavailableError(
            {"message": "No quote providers configured", "errors": []}
        )
    bulk = next((p for p in providers if p.max_batch_size > 1), providers[0])

    batch = await orchestrator.fetch_batch(
        BatchRequest(
            keys=keys,
            provider=bulk,
            cache_key_prefix=QUOTES,
            tier=tier,
            bypass_cache=refresh,
            allow_stale=False,
        )
    )
    results = dict(batch.results)

    missing = list(batch.errors)
    if missing:
        logger.debug(f"{bulk.name} left {len(missing)} symbols unserved, falling back")
        rest = [p for p in providers if p is not bulk]
        retried = await orchestrator.batch_fetch(
            [
                FetchRequest(
                    key=key,
                    providers=rest,
                    cache_key_prefix=QUOTES,
                    tier=tier,
                    bypass_cache=refresh,
                )
                for key in missing
            ]
        )
        for key, result in zip(missing, retried):
            results[key] = dataclasses.replace(
                result, errors=batch.errors[key] + result.errors
            )

    return render_many({key: results[key] for key in keys})


@router.get("/api/fundamentals/{symbol}")
async def get_fundamentals(
    symbol: str,
    tier: Tier = "free",
    refresh: bool = False,
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    result = await orchestrator.fetch_with_merge(
        FetchRequest(
            key=_symbol(symbol),
            providers=sources.get_providers(FUNDAMENTALS),
            cache_key_prefix=FUNDAMENTALS,
            tier=tier,
            bypass_cache=refresh,
        ),
        merge=merge_fundamentals,
    )
    return render(result)


@router.get("/api/news/{symbol}")
async def get_news(
    symbol: str,
    tier: Tier = "free",
    limit: int = Query(default=20, ge=1, le=100),
    refresh: bool = False,
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    result = await orchestrator.fetch_with_merge(
        FetchRequest(
            key=_symbol(symbol),
            providers=sources.get_providers(NEWS),
            cache_key_prefix=NEWS,
            tier=tier,
            bypass_cache=refresh,
        ),
        merge=merge_news,
        dedupe_key=_article_key,
    )
    # The full merged list is cached; limit only trims this response
    body = render(result)
    body["data"] = body["data"][:limit]
    return body


@router.get("/api/commodities/{name}")
async def get_commodity(
    name: str,
    tier: Tier = "free",
    refresh: bool = False,
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    commodity = name.upper()
    if commodity not in COMMODITY_SERIES:
        raise NotFoundError(
            f"Unknown commodity {name!r}; expected one of {sorted(COMMODITY_SERIES)}"
        )

    result = await orchestrator.fetch_with_fallback(
        FetchRequest(
            key=commodity,
            providers=sources.get_providers(COMMODITIES),
            cache_key_prefix=COMMODITIES,
            tier=tier,
            bypass_cache=refresh,
        )
    )
    return render(result)


@router.get("/api/filings/{symbol}")
async def get_filings(
    symbol: str,
    tier: Tier = "free",
    form: str | None = Query(default=None, description="Only this form type, e.g. 10-K"),
    refresh: bool = False,
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    result = await orchestrator.fetch_with_fallback(
        FetchRequest(
            key=_symbol(symbol),
            providers=sources.get_providers(FILINGS),
            cache_key_prefix=FILINGS,
            tier=tier,
            bypass_cache=refresh,
        )
    )
    body = render(result)
    if form:
        body["data"]["filings"] = [
            f for f in body["data"]["filings"] if f["form"].upper() == form.upper()
        ]
    return body


@router.get("/api/data-sources/stats")
async def get_data_source_stats(
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    return {**orchestrator.get_stats(), "sources": sources.get_status()}


@router.post("/api/data-sources/reload")
async def reload_sources(
    sources: SourceManager = Depends(get_sources),
) -> dict[str, Any]:
    """Re-read provider overrides without a restart."""
    sources.reload()
    return sources.get_status()


@router.post("/api/data-sources/cache/invalidate")
async def invalidate_cache(
    pattern: str = Query(..., min_length=1, description="Substring of the cache keys to drop"),
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    removed = await orchestrator.cache.invalidate(pattern)
    logger.info(f"Invalidated {removed} cache entries matching {pattern!r}")
    return {"pattern": pattern, "invalidated": removed}


@router.post("/api/data-sources/circuits/reset")
async def reset_circuits(
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    orchestrator.breakers.reset_all()
    return {"reset": "all", "circuit_breakers": orchestrator.breakers.get_all_status()}


@router.post("/api/data-sources/circuits/{provider}/reset")
async def reset_circuit(
    provider: str,
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Re-enable one provider, e.g. after rotating a rejected API key."""
    if not orchestrator.breakers.reset(provider):
        raise NotFoundError(f"No circuit breaker for provider {provider!r}")
    return {"reset": provider, "status": orchestrator.breakers.get(provider).get_status()}


@router.get("/health")
async def health(
    orchestrator: DataSourceOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    open_circuits = orchestrator.breakers.get_open_circuits()
    if open_circuits:
        logger.debug(f"Health check with open circuits: {open_circuits}")
    return {
        "status": "degraded" if open_circuits else "ok",
        "open_circuits": open_circuits,
    }
