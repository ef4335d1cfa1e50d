"""
Role normalization for loosely shaped user and employee records.

Stored records carry roles as a plain string, a list, a nested object
(``{"role": ...}``, ``{"primary": ...}``) or a map of boolean flags
(``{"supervisor": true}``). Everything funnels through ``extract_role``.
"""

from enum import Enum
from typing import Any, Iterable, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..auth.session_store import SessionUser


DIRECT_ROLE_KEYS = ("role", "primary", "nome")


class UserRole(str, Enum):
    """Known roles."""
    SUPERVISOR = "Supervisor"
    FISCAL = "Fiscal"


def extract_role(value: Any, direct_keys: Iterable[str] = DIRECT_ROLE_KEYS) -> Optional[str]:
    """Return the first role name found in ``value``, or ``None``."""
    keys = tuple(direct_keys)

    if not value:
        return None

    if isinstance(value, str):
        return value.strip() or None

    if isinstance(value, (list, tuple)):
        for item in value:
            extracted = extract_role(item, keys)
            if extracted:
                return extracted
        return None

    if isinstance(value, Mapping):
        for key in keys:
            raw = value.get(key)
            if isinstance(raw, str) and raw.strip():
                return raw.strip()

        # Boolean flag maps: the first enabled flag names the role
        for key, flag in value.items():
            if flag is True and isinstance(key, str) and key.strip():
                return key.strip()

        for nested in value.values():
            extracted = extract_role(nested, keys)
            if extracted:
                return extracted

    return None


def _nested_role(value: Any) -> Any:
    return value.get("role") if isinstance(value, Mapping) else None


def resolve_session_role(user: Optional["SessionUser"]) -> str:
    """Resolve the role of the signed-in user; empty string when unknown."""
    if user is None:
        return ""

    sources = [
        user.role,
        _nested_role(user.perfil),
        _nested_role(user.profile),
        user.roles,
    ]
    for source in sources:
        extracted = extract_role(source)
        if extracted:
            return extracted
    return ""


def can_manage_all(role: Optional[str]) -> bool:
    """Only supervisors may manage every record."""
    if not role:
        return False
    return role.strip().lower() == UserRole.SUPERVISOR.value.lower()
