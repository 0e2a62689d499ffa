"""
Source Manager - builds the provider fallback chains from settings.

Each data type (quotes, fundamentals, commodities, news, filings) maps to an
ordered group of provider adapters. Priorities and enable flags can be
overridden per group in a YAML file:

    version: "1.0"
    groups:
      quotes:
        alphaVantage: {priority: 0}
        finnhub: {enabled: false}
"""

from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from folio.datasource.base import ProviderAdapter
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
from folio.datasource.rss.rss import RSSNewsProvider
from folio.services.client import ProviderHttpClient
from folio.settings import Settings, global_settings

QUOTES = "quotes"
FUNDAMENTALS = "fundamentals"
COMMODITIES = "commodities"
NEWS = "news"
FILINGS = "filings"


class ProviderOverride(BaseModel):
    """Per-provider override inside one group."""

    priority: int | None = Field(default=None, ge=0)
    enabled: bool = True


class SourceConfig(BaseModel):
    """Override file contents."""

    version: str = "1.0"
    groups: dict[str, dict[str, ProviderOverride]] = Field(default_factory=dict)


def _default_groups(
    settings: Settings, client: ProviderHttpClient | None
) -> dict[str, list[ProviderAdapter]]:
    timeout = settings.provider_timeout
    return {
        QUOTES: [
            TiingoQuoteProvider(settings.tiingo_api_key, client, timeout=timeout),
            FinnhubQuoteProvider(settings.finnhub_api_key, client, timeout=timeout),
            AlphaVantageQuoteProvider(
                settings.alphavantage_api_key, client, timeout=timeout
            ),
        ],
        FUNDAMENTALS: [
            FinnhubFundamentalsProvider(
                settings.finnhub_api_key, client, timeout=timeout
            ),
            AlphaVantageFundamentalsProvider(
                settings.alphavantage_api_key, client, timeout=timeout
            ),
        ],
        COMMODITIES: [
            AlphaVantageCommodityProvider(settings.alphavantage_api_key, client),
        ],
        NEWS: [
            RSSNewsProvider(
                client,
                timeout=settings.rss_request_timeout,
                enabled=settings.rss_news_enabled,
            ),
            FinnhubNewsProvider(settings.finnhub_api_key, client, timeout=timeout),
        ],
        FILINGS: [
            SECEdgarFilingsProvider(settings.sec_user_agent, client, timeout=timeout),
        ],
    }


class SourceManager:
    """Owns the provider groups and their priority overrides."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: ProviderHttpClient | None = None,
        config_path: str | Path | None = None,
    ):
        self.settings = settings or global_settings
        self.client = client
        self.config_path = Path(config_path or self.settings.provider_config_path)
        self.config = SourceConfig()
        self._groups: dict[str, list[ProviderAdapter]] = {}

        self._load_config()
        self._build_groups()

    def _load_config(self) -> None:
        if not self.config_path.exists():
            logger.debug(f"No provider overrides at {self.config_path}, using defaults")
            self.config = SourceConfig()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self.config = SourceConfig(**data)
            logger.info(f"Loaded provider overrides from {self.config_path}")
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(f"Invalid provider config {self.config_path}: {e}")
            self.config = SourceConfig()

    def _build_groups(self) -> None:
        groups = _default_groups(self.settings, self.client)
        self._groups = {}

        for group, providers in groups.items():
            overrides = self.config.groups.get(group, {})
            selected = []
            for provider in providers:
                override = overrides.get(provider.name)
                if override is not None:
                    if not override.enabled:
                        logger.info(f"Provider {provider.name} disabled for {group}")
                        continue
                    if override.priority is not None:
                        provider.priority = override.priority
                if not provider.is_configured():
                    logger.warning(
                        f"Provider {provider.name} not configured, skipped for {group}"
                    )
                    continue
                selected.append(provider)

            # Stable: equal priorities keep declaration order
            selected.sort(key=lambda p: p.priority)
            self._groups[group] = selected

        logger.debug(
            "Provider groups: "
            + ", ".join(f"{g}={[p.name for p in ps]}" for g, ps in self._groups.items())
        )

    def get_providers(self, group: str) -> list[ProviderAdapter]:
        """Providers for a data type, in priority order."""
        if group not in self._groups:
            raise KeyError(f"Unknown provider group: {group}")
        return list(self._groups[group])

    def reload(self) -> None:
        """Re-read the override file and rebuild all groups."""
        logger.info("Reloading provider configuration...")
        self._load_config()
        self._build_groups()

    def get_status(self) -> dict[str, Any]:
        return {
            "config_path": str(self.config_path),
            "config_version": self.config.version,
            "groups": {
                group: [{"name": p.name, "priority": p.priority} for p in providers]
                for group, providers in self._groups.items()
            },
        }
