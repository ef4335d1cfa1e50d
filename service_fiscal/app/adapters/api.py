"""
Backend API base URL resolution.
"""

from typing import Optional, TYPE_CHECKING

import httpx

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import FiscalConfig


DEFAULT_BASE_URL = "http://localhost:3001"

logger = get_logger("fiscal.api")


def _clean(value: Optional[str]) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_api_base_url(config: Optional["FiscalConfig"] = None) -> str:
    """Pick the API base: explicit base URL, then the configured origin, then the default."""
    if config is None:
        from shared.config import get_config
        config = get_config()

    return _clean(config.api_base_url) or _clean(config.api_origin) or DEFAULT_BASE_URL


def sanitize_path(path: str) -> str:
    if not path:
        return "/"
    return path if path.startswith("/") else f"/{path}"


def sanitize_base(base_url: str) -> str:
    return base_url.rstrip("/") or DEFAULT_BASE_URL


def build_api_url(path: str, base_url: Optional[str] = None) -> str:
    """Join an API path onto the base URL."""
    base = sanitize_base(base_url if base_url is not None else resolve_api_base_url())
    clean_path = sanitize_path(path)
    joined = f"{base}{clean_path}"

    try:
        url = httpx.URL(joined)
    except httpx.InvalidURL as exc:
        logger.warning("Could not parse API URL, using plain concatenation", url=joined, error=str(exc))
        return joined

    if not url.is_absolute_url:
        logger.warning("API base URL is not absolute, using plain concatenation", url=joined)
        return joined

    return str(url)
