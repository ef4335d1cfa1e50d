"""
Session storage for the authenticated user.

Mirrors a browser's key/value storage: the token, the session id and the
serialized user record are kept as strings, optionally persisted to a JSON
file so a session survives process restarts.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger, set_session_context


TOKEN_KEY = "fiscal_token"
SESSION_KEY = "fiscal_session_id"
USER_KEY = "fiscal_user"


class SessionUser(BaseModel):
    """Authenticated user as returned by the login endpoints."""

    model_config = ConfigDict(extra="allow")

    uid: Any = None
    email: Any = None
    name: Any = None
    role: Any = None
    perfil: Any = None
    profile: Any = None
    roles: Any = None


class SessionStore:
    """Key/value session storage, in memory or backed by a JSON file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self.logger = get_logger("fiscal.session_store")
        self._values: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.error("Failed to read session file", path=str(self.path), error=str(exc))
            return {}

        if not isinstance(raw, dict):
            self.logger.error("Session file does not hold an object", path=str(self.path))
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def _persist(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._values), encoding="utf-8")

    def save_session(
        self,
        token: Optional[str] = None,
        session_id: Optional[str] = None,
        user: Optional[Union[SessionUser, Dict[str, Any]]] = None,
    ) -> None:
        """Store the given parts of a session; omitted parts are left untouched."""
        if token:
            self._values[TOKEN_KEY] = token

        if session_id:
            self._values[SESSION_KEY] = session_id
            set_session_context(session_id)

        if user:
            payload = user.model_dump() if isinstance(user, SessionUser) else user
            self._values[USER_KEY] = json.dumps(payload)

        self._persist()

    def clear_session(self) -> None:
        for key in (TOKEN_KEY, SESSION_KEY, USER_KEY):
            self._values.pop(key, None)
        self._persist()

    def get_session_token(self) -> Optional[str]:
        return self._values.get(TOKEN_KEY)

    def get_session_id(self) -> Optional[str]:
        return self._values.get(SESSION_KEY)

    def get_stored_user(self) -> Optional[SessionUser]:
        """Return the stored user; an unreadable record is dropped."""
        raw = self._values.get(USER_KEY)
        if not raw:
            return None

        try:
            return SessionUser.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            self.logger.error("Failed to read stored user", error=str(exc))
            self._values.pop(USER_KEY, None)
            self._persist()
            return None
