"""
Adapters package for the Fiscal Tracker client.

Contains the HTTP client wrapper for the backend API. Adapters encapsulate:

- Base URL resolution and request shapes
- Bearer-token authentication
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .api import DEFAULT_BASE_URL, build_api_url, resolve_api_base_url
from .fiscal_api_client import FiscalApiClient

__all__ = [
    "DEFAULT_BASE_URL",
    "FiscalApiClient",
    "build_api_url",
    "resolve_api_base_url",
]
