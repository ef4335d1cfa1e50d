"""
Shared utilities for the Fiscal Tracker client.

This package aggregates common building blocks consumed by the client:

- config: Client configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics for the request cache
- errors: Canonical error types and responses

Do not import from service_* packages into shared/.
"""
