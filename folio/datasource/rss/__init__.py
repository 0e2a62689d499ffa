"""
RSS news provider and feed parsing helpers.
"""

from folio.datasource.rss.rss import (
    RSSNewsProvider,
    clean_html_content,
    deduplicate_by_url,
    normalize_url,
    parse_feed,
)

__all__ = [
    "RSSNewsProvider",
    "clean_html_content",
    "deduplicate_by_url",
    "normalize_url",
    "parse_feed",
]
