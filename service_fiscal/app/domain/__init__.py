"""
Domain layer for the Fiscal Tracker client.

Data providers that sit between the screens and the request cache, plus
the role normalization shared by them.
"""

from .activities import Activity, ActivityLevel, ActivityPayload, ActivityProvider, ActivityStatus
from .employees import Employee, EmployeeDirectory, EmployeeInput
from .roles import UserRole, can_manage_all, extract_role, resolve_session_role

__all__ = [
    "Activity",
    "ActivityLevel",
    "ActivityPayload",
    "ActivityProvider",
    "ActivityStatus",
    "Employee",
    "EmployeeDirectory",
    "EmployeeInput",
    "UserRole",
    "can_manage_all",
    "extract_role",
    "resolve_session_role",
]
