"""PagerDuty side of the plugin: extensions, incidents and users."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from access_pagerduty.config import PagerdutySettings
from access_pagerduty.errors import AccessPluginError, NotFoundError
from access_pagerduty.pagerduty.client import PagerDutyAPIError, PagerDutyClient
from access_pagerduty.plugin_data import PagerdutyData, RequestData
from access_pagerduty.utils.time import format_rfc822

logger = logging.getLogger(__name__)

INCIDENT_KEY_PREFIX = "teleport-access-request"
APPROVE_ACTION = "approve"
APPROVE_ACTION_LABEL = "Approve Request"
DENY_ACTION = "deny"
DENY_ACTION_LABEL = "Deny Request"
CUSTOM_WEBHOOK_SCHEMA_KEY = "custom_webhook"

INCIDENT_BODY_FORMAT = (
    "{user} requested permissions for roles {roles} on Teleport at {created}. "
    "To approve or deny the request, please use Special Actions on this incident.\n"
)


class ActionURLBuilder(Protocol):
    def action_url(self, action_name: str) -> str: ...


def incident_key(request_id: str) -> str:
    return f"{INCIDENT_KEY_PREFIX}/{request_id}"


def build_incident_body(data: RequestData) -> str:
    """Render the incident description for an access request."""
    return INCIDENT_BODY_FORMAT.format(
        user=data.user,
        roles=", ".join(data.roles),
        created=format_rfc822(data.created) if data.created else "unknown time",
    )


class Bot:
    """Incident management for access requests on one PagerDuty service."""

    def __init__(
        self,
        settings: PagerdutySettings,
        server: ActionURLBuilder,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.service_id = settings.service_id
        self.user_email = settings.user_email
        self.server = server
        self.client = PagerDutyClient(
            settings.api_key,
            settings.user_email,
            api_endpoint=settings.api_endpoint,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def health_check(self) -> None:
        """Fetch the configured service to validate the API key and service id."""
        await self.client.get_service(self.service_id)

    async def setup(self) -> None:
        """Create or update the approve/deny custom webhook extensions."""
        schema = await self.client.extension_schemas().find(
            lambda item: item.get("key") == CUSTOM_WEBHOOK_SCHEMA_KEY
        )
        if schema is None:
            raise NotFoundError('failed to find "Custom Incident Action" extension type')
        schema_id = str(schema["id"])

        found: dict[str, str] = {}
        extensions = self.client.extensions(
            extension_object_id=self.service_id,
            extension_schema_id=schema_id,
            stop=lambda: APPROVE_ACTION_LABEL in found and DENY_ACTION_LABEL in found,
        )
        async for extension in extensions:
            name = extension.get("name")
            if name in (APPROVE_ACTION_LABEL, DENY_ACTION_LABEL):
                found[name] = str(extension["id"])

        await self._setup_custom_action(
            found.get(APPROVE_ACTION_LABEL), schema_id, APPROVE_ACTION, APPROVE_ACTION_LABEL
        )
        await self._setup_custom_action(
            found.get(DENY_ACTION_LABEL), schema_id, DENY_ACTION, DENY_ACTION_LABEL
        )

    async def _setup_custom_action(
        self,
        extension_id: str | None,
        schema_id: str,
        action_name: str,
        action_label: str,
    ) -> None:
        extension: dict[str, Any] = {
            "name": action_label,
            "endpoint_url": self.server.action_url(action_name),
            "extension_schema": {"type": "extension_schema_reference", "id": schema_id},
            "extension_objects": [{"type": "service_reference", "id": self.service_id}],
        }
        if extension_id is None:
            created = await self.client.create_extension(extension)
            logger.info("Created PagerDuty extension %r (%s)", action_label, created.get("id"))
        else:
            await self.client.update_extension(extension_id, extension)
            logger.info("Updated PagerDuty extension %r (%s)", action_label, extension_id)

    async def create_incident(self, request_id: str, data: RequestData) -> PagerdutyData:
        incident = await self.client.create_incident(
            {
                "title": f"Access request from {data.user}",
                "incident_key": incident_key(request_id),
                "service": {"type": "service_reference", "id": self.service_id},
                "body": {"type": "incident_body", "details": build_incident_body(data)},
            }
        )
        incident_id = incident.get("id")
        if not incident_id:
            raise PagerDutyAPIError("create incident returned no incident id")
        return PagerdutyData(id=str(incident_id))

    async def resolve_incident(self, request_id: str, data: PagerdutyData, reason: str) -> None:
        """Annotate the incident with ``reason`` and resolve it.

        The note is best effort; the resolve call is made even if it fails.
        """
        try:
            await self.client.create_incident_note(data.id, f"Access request has been {reason}")
        except AccessPluginError as exc:
            logger.warning(
                "Failed to add resolution note request_id=%s pd_incident_id=%s: %s",
                request_id,
                data.id,
                exc,
            )
        await self.client.manage_incidents(
            [{"id": data.id, "type": "incident_reference", "status": "resolved"}]
        )

    async def get_user_info(self, user_id: str) -> dict[str, Any]:
        return await self.client.get_user(user_id)
