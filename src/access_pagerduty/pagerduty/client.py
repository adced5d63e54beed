"""Minimal async PagerDuty REST API v2 client."""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from access_pagerduty.errors import (
    AccessDeniedError,
    AccessPluginError,
    BadParameterError,
    NotFoundError,
)
from access_pagerduty.utils.pagination import Page, Paginator

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://api.pagerduty.com"
HTTP_TIMEOUT_SECONDS = 10.0
MAX_CONNECTIONS = 100
LIST_LIMIT = 60

_ACCEPT_HEADER = "application/vnd.pagerduty+json;version=2"


class PagerDutyAPIError(AccessPluginError):
    """Raised when the PagerDuty API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        message = str(error.get("message", ""))
        details = error.get("errors")
        if isinstance(details, list) and details:
            message = f"{message}: {'; '.join(str(item) for item in details)}"
        return message
    return response.text[:200]


def _raise_for_status(response: httpx.Response, what: str) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"{what} failed with HTTP {status}: {_error_message(response)}"
    if status == 404:
        raise NotFoundError(message)
    if status in (401, 403):
        raise AccessDeniedError(message)
    if status == 400:
        raise BadParameterError(message)
    raise PagerDutyAPIError(message, status_code=status)


class PagerDutyClient:
    """Thin wrapper over the PagerDuty REST endpoints used by the plugin.

    Returns decoded JSON objects. Write calls send the ``From`` header with the
    configured user email as PagerDuty requires.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        *,
        api_endpoint: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.from_email = from_email
        self._http = httpx.AsyncClient(
            base_url=(api_endpoint or DEFAULT_API_ENDPOINT).rstrip("/"),
            headers={
                "Accept": _ACCEPT_HEADER,
                "Authorization": f"Token token={api_key}",
                "Content-Type": "application/json",
            },
            timeout=HTTP_TIMEOUT_SECONDS,
            limits=httpx.Limits(
                max_connections=MAX_CONNECTIONS,
                max_keepalive_connections=MAX_CONNECTIONS,
            ),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "PagerDutyClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        what: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        with_from: bool = False,
    ) -> dict[str, Any]:
        headers = {"From": self.from_email} if with_from else None
        try:
            response = await self._http.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise PagerDutyAPIError(f"{what} failed: {exc}") from exc
        _raise_for_status(response, what)
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise PagerDutyAPIError(f"{what} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise PagerDutyAPIError(f"{what} returned unexpected payload")
        return payload

    async def get_service(self, service_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/services/{service_id}", "get service")
        return payload.get("service", {})

    def extension_schemas(
        self,
        *,
        limit: int = LIST_LIMIT,
        stop: Callable[[], bool] | None = None,
    ) -> Paginator[dict[str, Any]]:
        async def fetch(offset: int, page_limit: int) -> Page[dict[str, Any]]:
            payload = await self._request(
                "GET",
                "/extension_schemas",
                "list extension schemas",
                params={"offset": offset, "limit": page_limit},
            )
            return Page(payload.get("extension_schemas", []), bool(payload.get("more")))

        return Paginator(fetch, limit=limit, stop=stop)

    def extensions(
        self,
        *,
        extension_object_id: str | None = None,
        extension_schema_id: str | None = None,
        limit: int = LIST_LIMIT,
        stop: Callable[[], bool] | None = None,
    ) -> Paginator[dict[str, Any]]:
        async def fetch(offset: int, page_limit: int) -> Page[dict[str, Any]]:
            params: dict[str, Any] = {"offset": offset, "limit": page_limit}
            if extension_object_id:
                params["extension_object_id"] = extension_object_id
            if extension_schema_id:
                params["extension_schema_id"] = extension_schema_id
            payload = await self._request(
                "GET", "/extensions", "list extensions", params=params
            )
            return Page(payload.get("extensions", []), bool(payload.get("more")))

        return Paginator(fetch, limit=limit, stop=stop)

    async def create_extension(self, extension: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "POST", "/extensions", "create extension", json={"extension": extension}
        )
        return payload.get("extension", {})

    async def update_extension(self, extension_id: str, extension: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "PUT",
            f"/extensions/{extension_id}",
            "update extension",
            json={"extension": extension},
        )
        return payload.get("extension", {})

    async def create_incident(self, incident: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            "/incidents",
            "create incident",
            json={"incident": {"type": "incident", **incident}},
            with_from=True,
        )
        return payload.get("incident", {})

    async def create_incident_note(self, incident_id: str, content: str) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            f"/incidents/{incident_id}/notes",
            "create incident note",
            json={"note": {"content": content}},
            with_from=True,
        )
        return payload.get("note", {})

    async def manage_incidents(self, incidents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        payload = await self._request(
            "PUT",
            "/incidents",
            "manage incidents",
            json={"incidents": incidents},
            with_from=True,
        )
        return payload.get("incidents", [])

    async def get_user(self, user_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/users/{user_id}", "get user")
        return payload.get("user", {})
