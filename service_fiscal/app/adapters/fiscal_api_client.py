"""
HTTP client for the fiscalization-tracking backend API.
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.logging import get_logger
from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
    FiscalClientException,
    NotFoundError,
    ValidationError,
)
from .api import build_api_url, resolve_api_base_url


SERVICE_NAME = "fiscal_api"


def extract_api_error_message(response: httpx.Response, fallback: str) -> str:
    """Use the API's ``message`` field when present and non-blank."""
    try:
        body = response.json()
    except ValueError:
        return fallback

    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return fallback


class FiscalApiClient:
    """Client for the activities and employees REST endpoints."""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        self.base_url = base_url if base_url is not None else resolve_api_base_url()
        self.timeout = timeout
        self.logger = get_logger("fiscal.api_client")

    # Activities

    async def list_activities(self, token: str) -> List[Dict[str, Any]]:
        """Fetch every activity visible to the session."""
        data = await self._request("GET", "/api/activities", token, fallback="Could not fetch activities")
        return list(data.get("activities") or [])

    async def create_activity(self, token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/api/activities", token, json=body, fallback="Could not save activity")
        return data["activity"]

    async def update_activity(self, token: str, activity_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request(
            "PUT", f"/api/activities/{activity_id}", token, json=body, fallback="Could not update activity"
        )
        return data["activity"]

    async def delete_activity(self, token: str, activity_id: str) -> None:
        await self._request("DELETE", f"/api/activities/{activity_id}", token, fallback="Could not remove activity")

    # Employees

    async def list_employees(self, token: str) -> List[Dict[str, Any]]:
        """Fetch the employee directory."""
        data = await self._request("GET", "/api/employees", token, fallback="Could not load employees")
        return list(data.get("employees") or [])

    async def create_employee(self, token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "/api/employees", token, json=body, fallback="Could not create employee")
        return data["employee"]

    async def update_employee(self, token: str, employee_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request(
            "PUT", f"/api/employees/{employee_id}", token, json=body, fallback="Could not update employee"
        )
        return data["employee"]

    async def delete_employee(self, token: str, employee_id: str) -> None:
        await self._request("DELETE", f"/api/employees/{employee_id}", token, fallback="Could not remove employee")

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        fallback: str,
    ) -> Dict[str, Any]:
        """Execute an authenticated request and map failures to shared errors."""
        url = build_api_url(path, self.base_url)
        headers = {"Authorization": f"Bearer {token}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=headers, json=json)
        except httpx.HTTPError as exc:
            self.logger.error("Fiscal API HTTP error", method=method, url=url, error=str(exc))
            raise ExternalServiceError(
                service=SERVICE_NAME,
                message=fallback,
                details={"http_error": str(exc)}
            )

        if 200 <= response.status_code < 300:
            self.logger.debug("Fiscal API request succeeded", method=method, url=url, status_code=response.status_code)
            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError:
                return {}
            return body if isinstance(body, dict) else {}

        raise self._map_error(method, url, response, fallback)

    def _map_error(self, method: str, url: str, response: httpx.Response, fallback: str) -> FiscalClientException:
        api_message = extract_api_error_message(response, "")
        message = api_message or fallback
        details: Dict[str, Any] = {"status_code": response.status_code}
        if api_message:
            details["api_message"] = api_message
        self.logger.error(
            "Fiscal API request failed",
            method=method,
            url=url,
            status_code=response.status_code,
            message=message,
        )

        if response.status_code == 400:
            return ValidationError(message, details=details)
        if response.status_code == 401:
            return AuthenticationError(message, details=details)
        if response.status_code == 403:
            return AuthorizationError(message, details=details)
        if response.status_code == 404:
            return NotFoundError(message, details=details)
        return ExternalServiceError(service=SERVICE_NAME, message=message, details=details)
