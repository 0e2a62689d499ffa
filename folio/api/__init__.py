"""
HTTP surface: quotes, fundamentals, news, commodities, filings and provider stats.
"""

from folio.api.app import create_app
from folio.api.responses import status_for_result

__all__ = ["create_app", "status_for_result"]
