"""
Employee directory backed by the request cache.
"""

import functools
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from shared.logging import get_logger
from shared.errors import AuthenticationError, AuthorizationError, FiscalClientException, ValidationError
from ..adapters.fiscal_api_client import FiscalApiClient
from ..auth.session_store import SessionStore
from ..caching.request_cache import DEFAULT_TTL, RequestCache, build_cache_key, get_default_cache
from .roles import can_manage_all, extract_role, resolve_session_role


EMPLOYEES_RESOURCE = "employees"

LOAD_ERROR_MESSAGE = "Could not load employees. Try again shortly."
CREATE_ERROR_MESSAGE = "Could not create the employee. Try again."
UPDATE_ERROR_MESSAGE = "Could not update the employee. Try again."
REMOVE_ERROR_MESSAGE = "Could not remove the employee. Try again."


class Employee(BaseModel):
    """Directory entry."""

    id: str
    full_name: str = "Funcionário"
    registration: str = "--"
    function: str = "--"
    photo_url: Optional[str] = None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _nested_text(raw: Dict[str, Any], parent: str, key: str) -> str:
    nested = raw.get(parent)
    return _text(nested.get(key)) if isinstance(nested, dict) else ""


def derive_employee_function(raw: Dict[str, Any]) -> str:
    """First non-empty job function across the shapes employee documents use."""
    return (
        _text(raw.get("funcao"))
        or _text(raw.get("role"))
        or _nested_text(raw, "perfil", "role")
        or _nested_text(raw, "profile", "role")
        or _nested_text(raw, "cargo", "nome")
        or extract_role(raw.get("roles"), direct_keys=("primary",))
        or ""
    )


def map_api_employee(raw: Dict[str, Any]) -> Employee:
    """Convert an API employee document into an ``Employee``."""
    return Employee(
        id=str(raw["id"]),
        full_name=_text(raw.get("nomeCompleto")) or "Funcionário",
        registration=_text(raw.get("matricula")) or "--",
        function=derive_employee_function(raw) or "--",
        photo_url=_text(raw.get("fotoUrl")) or None,
    )


class EmployeeInput(BaseModel):
    """Form data for creating or editing an employee."""

    full_name: Optional[str] = None
    registration: Optional[str] = None
    function: Optional[str] = None

    def to_api_body(self) -> Dict[str, str]:
        """Trimmed request body; every field is required."""
        body = {
            "nomeCompleto": _text(self.full_name),
            "matricula": _text(self.registration),
            "funcao": _text(self.function),
        }
        missing = [field for field, value in body.items() if not value]
        if missing:
            raise ValidationError(
                "Full name, registration and function are required",
                details={"missing": missing}
            )
        return body


class EmployeeDirectory:
    """Employee list for the signed-in session.

    Mutations are limited to supervisors. Failures are logged, surfaced
    through ``last_error`` and re-raised.
    """

    def __init__(
        self,
        client: FiscalApiClient,
        session: SessionStore,
        cache: Optional[RequestCache] = None,
        *,
        ttl: float = DEFAULT_TTL,
        base_url: Optional[str] = None,
    ):
        self.client = client
        self.session = session
        self.cache = cache if cache is not None else get_default_cache()
        self.ttl = ttl
        self.base_url = base_url if base_url is not None else client.base_url
        self.logger = get_logger("fiscal.employees")

        self.employees: List[Employee] = []
        self.is_loading = False
        self.last_error: Optional[str] = None
        self._loaded_token: Optional[str] = None

    def cache_key(self, token: str) -> str:
        return build_cache_key(self.base_url, EMPLOYEES_RESOURCE, token)

    @property
    def role(self) -> str:
        return resolve_session_role(self.session.get_stored_user())

    @property
    def can_manage_all(self) -> bool:
        return can_manage_all(self.role)

    async def load(self, force: bool = False) -> List[Employee]:
        """Load the directory, from the cache when fresh unless ``force`` is set."""
        token = self.session.get_session_token()
        if not token:
            self.reset()
            self.is_loading = False
            return self.employees

        cache_key = self.cache_key(token)

        if not force:
            cached = self.cache.get_cache_data(cache_key, self.ttl)
            if cached is not None:
                self.employees = list(cached)
                self._loaded_token = token
                self.last_error = None
                self.is_loading = False
                return self.employees

        self.is_loading = True
        self.last_error = None
        try:
            data = await self.cache.fetch_with_cache(
                cache_key,
                functools.partial(self._fetch_employees, token),
                ttl=self.ttl,
                force=force,
            )
        except Exception as exc:
            self.logger.error("Failed to load employees", force=force, error=str(exc))
            if force:
                self.cache.invalidate_cache(cache_key)
            self.last_error = LOAD_ERROR_MESSAGE
            raise
        finally:
            self.is_loading = False

        self.employees = list(data)
        self._loaded_token = token
        return self.employees

    async def _fetch_employees(self, token: str) -> List[Employee]:
        raw_employees = await self.client.list_employees(token)
        return [map_api_employee(raw) for raw in raw_employees]

    def _authorize(self) -> str:
        token = self.session.get_session_token()
        if not token:
            raise AuthenticationError()
        if not self.can_manage_all:
            raise AuthorizationError(
                "Only supervisors can manage employees",
                details={"role": self.role}
            )
        return token

    def _current_list(self, token: str) -> Optional[List[Employee]]:
        """List to patch after a mutation: the shared cached list, else the one loaded here."""
        cached = self.cache.get_cache_data(self.cache_key(token), self.ttl)
        if cached is not None:
            return list(cached)
        if self._loaded_token == token:
            return list(self.employees)
        return None

    def _write_back(self, token: str, employees: List[Employee], complete: bool) -> None:
        self.employees = employees
        cache_key = self.cache_key(token)
        if complete:
            self.cache.set_cache_data(cache_key, list(employees))
            self._loaded_token = token
        else:
            self.cache.invalidate_cache(cache_key)

    def reset(self) -> None:
        """Forget the local list, e.g. on sign-out."""
        self.employees = []
        self.last_error = None
        self._loaded_token = None

    def _fail(self, exc: Exception, fallback: str) -> None:
        api_message = exc.details.get("api_message") if isinstance(exc, FiscalClientException) else None
        self.last_error = api_message or fallback
        self.logger.error("Employee directory request failed", error=str(exc))

    async def save(self, data: EmployeeInput, employee_id: Optional[str] = None) -> Employee:
        """Update ``employee_id`` when given, otherwise create a new employee."""
        self.last_error = None
        body = data.to_api_body()
        token = self._authorize()

        if employee_id:
            try:
                raw = await self.client.update_employee(token, employee_id, body)
            except Exception as exc:
                self._fail(exc, UPDATE_ERROR_MESSAGE)
                raise
            updated = map_api_employee(raw)
            current = self._current_list(token)
            self._write_back(
                token,
                [updated if employee.id == updated.id else employee for employee in current or []],
                current is not None,
            )
            self.logger.info("Employee updated", employee_id=updated.id)
            return updated

        try:
            raw = await self.client.create_employee(token, body)
        except Exception as exc:
            self._fail(exc, CREATE_ERROR_MESSAGE)
            raise
        created = map_api_employee(raw)
        current = self._current_list(token)
        self._write_back(token, [created] + (current or []), current is not None)
        self.logger.info("Employee created", employee_id=created.id)
        return created

    async def remove(self, employee_id: str) -> None:
        self.last_error = None
        token = self._authorize()

        try:
            await self.client.delete_employee(token, employee_id)
        except Exception as exc:
            self._fail(exc, REMOVE_ERROR_MESSAGE)
            raise

        current = self._current_list(token)
        self._write_back(
            token,
            [employee for employee in current or [] if employee.id != employee_id],
            current is not None,
        )
        self.logger.info("Employee removed", employee_id=employee_id)
