"""
Fiscal Tracker client wiring.

Builds the API client, session store, request cache and data providers
from configuration.
"""

from typing import Optional

from shared.config import FiscalConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .adapters import FiscalApiClient, resolve_api_base_url
from .auth import SessionStore
from .caching import RequestCache
from .domain import ActivityProvider, EmployeeDirectory


SERVICE_NAME = "fiscal"


class FiscalClient:
    """Client facade owning one request cache per instance."""

    def __init__(self, config: Optional[FiscalConfig] = None, *, configure_log: bool = True):
        self.config = config or get_config()
        if configure_log:
            configure_logging(SERVICE_NAME, self.config.log_level)
        self.logger = get_logger(f"{SERVICE_NAME}.client")

        self.metrics: Optional[MetricsCollector] = (
            get_metrics_collector(SERVICE_NAME) if self.config.enable_metrics else None
        )
        self.base_url = resolve_api_base_url(self.config)
        self.api = FiscalApiClient(self.base_url, timeout=self.config.http_timeout)
        self.session = SessionStore(self.config.session_file)
        self.cache = RequestCache(default_ttl=self.config.cache_ttl_seconds, metrics=self.metrics)

        self.activities = ActivityProvider(
            self.api, self.session, self.cache, ttl=self.config.cache_ttl_seconds, base_url=self.base_url
        )
        self.employees = EmployeeDirectory(
            self.api, self.session, self.cache, ttl=self.config.cache_ttl_seconds, base_url=self.base_url
        )

        self.logger.info(
            "Fiscal client ready",
            env=self.config.env,
            base_url=self.base_url,
            cache_ttl_seconds=self.config.cache_ttl_seconds,
        )

    def sign_out(self) -> None:
        """Drop the session and every cached resource."""
        self.session.clear_session()
        self.cache.clear()
        self.activities.reset()
        self.employees.reset()
        self.logger.info("Signed out")


def create_client(config: Optional[FiscalConfig] = None) -> FiscalClient:
    """Create a client from configuration (environment when omitted)."""
    return FiscalClient(config)
