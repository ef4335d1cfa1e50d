"""
Fiscal Tracker client package.

Talks to the fiscalization-tracking HTTP API on behalf of fiscal agents and
supervisors, keeping activity and employee lists in a per-session request
cache.

Structure:
- app.adapters: URL resolution and the HTTP client for the backend API.
- app.caching: TTL request cache with in-flight coalescing.
- app.auth: Session storage (token, session id, user record).
- app.domain: Activity provider, employee directory and role normalization.
"""
