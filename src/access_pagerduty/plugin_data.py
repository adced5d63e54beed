"""Plugin data linking an access request to its PagerDuty incident."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from access_pagerduty.access.client import AccessClient
from access_pagerduty.errors import NotFoundError
from access_pagerduty.utils.time import from_unix, to_unix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestData:
    user: str
    roles: tuple[str, ...] = ()
    created: datetime | None = None


@dataclass(frozen=True)
class PagerdutyData:
    id: str


@dataclass(frozen=True)
class PluginData:
    request: RequestData
    pagerduty: PagerdutyData
    resolution: str = field(default="")


def encode_plugin_data(data: PluginData) -> dict[str, str]:
    return {
        "incident_id": data.pagerduty.id,
        "user": data.request.user,
        "roles": ",".join(data.request.roles),
        "created": str(to_unix(data.request.created)) if data.request.created else "",
        "resolution": data.resolution,
    }


def decode_plugin_data(values: dict[str, str]) -> PluginData:
    created_text = values.get("created", "")
    created: datetime | None = None
    if created_text:
        try:
            created = from_unix(int(created_text))
        except ValueError:
            logger.warning("Ignoring malformed plugin data timestamp %r", created_text)
    roles_text = values.get("roles", "")
    return PluginData(
        request=RequestData(
            user=values.get("user", ""),
            roles=tuple(role for role in roles_text.split(",") if role),
            created=created,
        ),
        pagerduty=PagerdutyData(id=values.get("incident_id", "")),
        resolution=values.get("resolution", ""),
    )


class PluginDataStore:
    """Reads and writes plugin data through the access client.

    Every call goes to the auth server; nothing is cached.
    """

    def __init__(self, client: AccessClient) -> None:
        self._client = client

    async def get(self, request_id: str) -> PluginData:
        values = await self._client.get_plugin_data(request_id)
        data = decode_plugin_data(values)
        if not data.pagerduty.id:
            raise NotFoundError(f"plugin data of access request {request_id} has no incident")
        return data

    async def create(self, request_id: str, data: PluginData) -> None:
        await self._client.update_plugin_data(request_id, encode_plugin_data(data), None)

    async def mark_resolved(self, request_id: str, data: PluginData, resolution: str) -> PluginData:
        """Record the resolution, failing if the record changed since ``data`` was read."""
        resolved = replace(data, resolution=resolution)
        await self._client.update_plugin_data(
            request_id,
            encode_plugin_data(resolved),
            encode_plugin_data(data),
        )
        return resolved
