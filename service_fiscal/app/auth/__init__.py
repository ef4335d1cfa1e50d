"""
Session helpers for the Fiscal Tracker client.
"""

from .session_store import SessionStore, SessionUser

__all__ = [
    "SessionStore",
    "SessionUser",
]
