"""
Activity data provider.

Loads the session's activities through the request cache and keeps the
cached list in step with local creates, updates and deletes, so screens can
share one list without refetching after every mutation.
"""

import functools
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.errors import AuthenticationError
from ..adapters.fiscal_api_client import FiscalApiClient
from ..auth.session_store import SessionStore, SessionUser
from ..caching.request_cache import DEFAULT_TTL, RequestCache, build_cache_key, get_default_cache


ACTIVITIES_RESOURCE = "activities"


class ActivityLevel(str, Enum):
    """Severity level of an activity."""
    LOW = "Baixo"
    NORMAL = "Normal"
    HIGH = "Alto"
    MAXIMUM = "Máximo"


class ActivityStatus(str, Enum):
    """Resolution status of an activity."""
    PENDING = "Pendente"
    DONE = "Concluído"
    NOT_DONE = "Não Concluído"


def is_activity_level(value: Any) -> bool:
    return value in {level.value for level in ActivityLevel}


def is_activity_status(value: Any) -> bool:
    return value in {status.value for status in ActivityStatus}


class Activity(BaseModel):
    """Inspection occurrence as shown to the user."""

    id: str
    name: str = "Usuário"
    record: str = ""
    original_description: Optional[str] = None
    level: ActivityLevel = ActivityLevel.NORMAL
    status: ActivityStatus = ActivityStatus.PENDING
    lat: Optional[float] = None
    lng: Optional[float] = None
    main_location: Optional[str] = None
    sub_locations: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None
    photo_url: Optional[str] = None


class ActivityPayload(BaseModel):
    """Fields sent when creating or updating an activity."""

    description: str
    level: ActivityLevel
    status: ActivityStatus
    main_location: Optional[str] = None
    sub_locations: List[str] = Field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photo_url: Optional[str] = None
    name: Optional[str] = None
    original_description: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


def _coordinate(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def map_api_activity(raw: Dict[str, Any]) -> Activity:
    """Convert an API activity document into an ``Activity``."""
    level = raw.get("nivel")
    status = raw.get("status")
    location = raw.get("location")
    if not isinstance(location, dict):
        location = {}
    sub_locations = raw.get("subLocais")
    description = raw.get("descricao")

    return Activity(
        id=str(raw["id"]),
        name=raw.get("nome") or "Usuário",
        record=description or "",
        original_description=raw.get("descricaoOriginal") or description or "",
        level=ActivityLevel(level) if is_activity_level(level) else ActivityLevel.NORMAL,
        status=ActivityStatus(status) if is_activity_status(status) else ActivityStatus.PENDING,
        lat=_coordinate(location.get("latitude")),
        lng=_coordinate(location.get("longitude")),
        main_location=raw.get("localPrincipal"),
        sub_locations=list(sub_locations) if isinstance(sub_locations, list) else [],
        created_at=raw.get("createdAt"),
        created_by=raw.get("createdBy"),
        updated_at=raw.get("updatedAt"),
        updated_by=raw.get("updatedBy"),
        photo_url=raw.get("fotoUrl"),
    )


def build_api_payload(payload: ActivityPayload) -> Dict[str, Any]:
    """Build the request body the API expects; unset optionals are omitted."""
    body: Dict[str, Any] = {
        "descricao": payload.description,
        "descricaoOriginal": payload.original_description or payload.description,
        "nivel": payload.level.value,
        "status": payload.status.value,
        "localPrincipal": payload.main_location,
        "subLocais": list(payload.sub_locations),
        "fotoUrl": payload.photo_url,
    }
    if payload.name is not None:
        # Older backends read "name", newer ones "nome"
        body["nome"] = payload.name
        body["name"] = payload.name
    if payload.latitude is not None:
        body["latitude"] = payload.latitude
    if payload.longitude is not None:
        body["longitude"] = payload.longitude
    return body


def _parse_timestamp(value: Optional[str]) -> float:
    """Epoch seconds for an ISO timestamp; 0 when missing or unparsable."""
    if not value:
        return 0.0
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def sort_activities_by_date(activities: List[Activity]) -> List[Activity]:
    """Newest first; undated activities go last."""
    return sorted(activities, key=lambda activity: _parse_timestamp(activity.created_at), reverse=True)


def _normalize(value: Optional[str]) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def filter_personal_activities(activities: List[Activity], user: Optional[SessionUser]) -> List[Activity]:
    """Activities created, updated or named after the given user."""
    if user is None:
        return []

    identifiers = {_normalize(value) for value in (user.email, user.name, user.uid)}
    identifiers.discard("")
    if not identifiers:
        return []

    personal = []
    for activity in activities:
        candidates = (
            _normalize(activity.created_by),
            _normalize(activity.updated_by),
            _normalize(activity.name),
        )
        if any(candidate and candidate in identifiers for candidate in candidates):
            personal.append(activity)
    return personal


class ActivityProvider:
    """Shared activity list for the signed-in session."""

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
        self.logger = get_logger("fiscal.activities")

        self.activities: List[Activity] = []
        self.is_loading = False
        self._loaded_token: Optional[str] = None

    def cache_key(self, token: str) -> str:
        """Cache key scoped to the API base and the session token."""
        return build_cache_key(self.base_url, ACTIVITIES_RESOURCE, token)

    @property
    def personal_activities(self) -> List[Activity]:
        return filter_personal_activities(self.activities, self.session.get_stored_user())

    async def refresh(self, force: bool = False) -> List[Activity]:
        """Load activities, from the cache when fresh unless ``force`` is set."""
        token = self.session.get_session_token()
        if not token:
            self.reset()
            return self.activities

        cache_key = self.cache_key(token)

        if not force:
            cached = self.cache.get_cache_data(cache_key, self.ttl)
            if cached is not None:
                self.activities = list(cached)
                self._loaded_token = token
                self.is_loading = False
                return self.activities

        self.is_loading = True
        try:
            data = await self.cache.fetch_with_cache(
                cache_key,
                functools.partial(self._fetch_activities, token),
                ttl=self.ttl,
                force=force,
            )
        except Exception as exc:
            self.logger.error("Failed to fetch activities", force=force, error=str(exc))
            if force:
                # Next read goes back to the network instead of the stale list
                self.cache.invalidate_cache(cache_key)
            raise
        finally:
            self.is_loading = False

        self.activities = list(data)
        self._loaded_token = token
        return self.activities

    async def _fetch_activities(self, token: str) -> List[Activity]:
        raw_activities = await self.client.list_activities(token)
        return sort_activities_by_date([map_api_activity(raw) for raw in raw_activities])

    def _require_token(self) -> str:
        token = self.session.get_session_token()
        if not token:
            raise AuthenticationError()
        return token

    def _current_list(self, token: str) -> Optional[List[Activity]]:
        """List to patch after a mutation: the shared cached list, else the one loaded here."""
        cached = self.cache.get_cache_data(self.cache_key(token), self.ttl)
        if cached is not None:
            return list(cached)
        if self._loaded_token == token:
            return list(self.activities)
        return None

    def _write_back(self, token: str, activities: List[Activity], complete: bool) -> None:
        self.activities = activities
        cache_key = self.cache_key(token)
        if complete:
            self.cache.set_cache_data(cache_key, list(activities))
            self._loaded_token = token
        else:
            # Never loaded: a partial list must not be served as the full one
            self.cache.invalidate_cache(cache_key)

    def reset(self) -> None:
        """Forget the local list, e.g. on sign-out."""
        self.activities = []
        self._loaded_token = None

    async def create_activity(self, payload: ActivityPayload) -> Activity:
        token = self._require_token()
        raw = await self.client.create_activity(token, build_api_payload(payload))
        created = map_api_activity(raw)

        current = self._current_list(token)
        others = [activity for activity in current or [] if activity.id != created.id]
        self._write_back(token, sort_activities_by_date([created] + others), current is not None)
        self.logger.info("Activity created", activity_id=created.id)
        return created

    async def update_activity(self, activity_id: str, payload: ActivityPayload) -> Activity:
        token = self._require_token()
        raw = await self.client.update_activity(token, activity_id, build_api_payload(payload))
        updated = map_api_activity(raw)

        current = self._current_list(token)
        replaced = [updated if activity.id == updated.id else activity for activity in current or []]
        self._write_back(token, sort_activities_by_date(replaced), current is not None)
        self.logger.info("Activity updated", activity_id=updated.id)
        return updated

    async def delete_activity(self, activity_id: str) -> None:
        token = self._require_token()
        await self.client.delete_activity(token, activity_id)

        current = self._current_list(token)
        remaining = [activity for activity in current or [] if activity.id != activity_id]
        self._write_back(token, remaining, current is not None)
        self.logger.info("Activity deleted", activity_id=activity_id)
