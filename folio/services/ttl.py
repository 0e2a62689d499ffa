"""
Cache TTL policy by data type and subscription tier.

Free tier gets longer TTLs (fewer upstream calls), premium gets fresher data.
"""

from datetime import timedelta
from typing import Literal

Tier = Literal["free", "basic", "premium"]

TIERS: tuple[Tier, ...] = ("free", "basic", "premium")

DEFAULT_TTL = timedelta(minutes=5)

CACHE_TTL_CONFIG: dict[str, dict[str, timedelta]] = {
    "quotes": {
        "free": timedelta(minutes=15),
        "basic": timedelta(minutes=10),
        "premium": timedelta(minutes=5),
    },
    "commodities": {
        "free": timedelta(hours=4),
        "basic": timedelta(hours=2),
        "premium": timedelta(hours=1),
    },
    # Quarterly data
    "fundamentals": {
        "free": timedelta(days=7),
        "basic": timedelta(days=7),
        "premium": timedelta(days=7),
    },
    "news": {
        "free": timedelta(hours=1),
        "basic": timedelta(hours=1),
        "premium": timedelta(hours=1),
    },
    "filings": {
        "free": timedelta(days=30),
        "basic": timedelta(days=30),
        "premium": timedelta(days=30),
    },
}


def get_cache_ttl(data_type: str, tier: str = "free") -> timedelta:
    """
    TTL for a data type (the cache key prefix) and tier.

    Unknown data types get DEFAULT_TTL; unknown tiers fall back to "free".
    """
    by_tier = CACHE_TTL_CONFIG.get(data_type)
    if by_tier is None:
        return DEFAULT_TTL
    return by_tier.get(tier, by_tier["free"])
