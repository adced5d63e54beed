"""Reconciliation between access request events and PagerDuty incidents.

Two independent sources drive the bridge: the access request watcher and
the webhook listener. The bridge holds no state of its own; every decision
re-reads the request and its plugin data from the auth server.
"""

from __future__ import annotations

import logging
from enum import Enum

from access_pagerduty.access.client import AccessClient
from access_pagerduty.access.models import AccessRequest, Event, OpType, RequestState
from access_pagerduty.errors import (
    AccessPluginError,
    BadParameterError,
    CompareFailedError,
    NotFoundError,
    ProtocolViolationError,
    RequestNotPendingError,
)
from access_pagerduty.pagerduty.bot import (
    APPROVE_ACTION,
    DENY_ACTION,
    INCIDENT_KEY_PREFIX,
    Bot,
)
from access_pagerduty.plugin_data import PluginData, PluginDataStore, RequestData
from access_pagerduty.webhook.models import WebhookAction

logger = logging.getLogger(__name__)

CUSTOM_ACTION_EVENT = "incident.custom"
EXPIRED_RESOLUTION = "expired"

_ACTIONS: dict[str, tuple[RequestState, str]] = {
    APPROVE_ACTION: (RequestState.APPROVED, "approved"),
    DENY_ACTION: (RequestState.DENIED, "denied"),
}


class ActionOutcome(str, Enum):
    IGNORED = "ignored"
    EXPIRED = "expired"
    RESOLVED = "resolved"


def parse_incident_key(key: str) -> str | None:
    """Return the request id from ``teleport-access-request/<id>``, or ``None``."""
    parts = key.split("/")
    if len(parts) != 2 or parts[0] != INCIDENT_KEY_PREFIX or not parts[1]:
        return None
    return parts[1]


class EventBridge:
    def __init__(self, access_client: AccessClient, bot: Bot) -> None:
        self.access_client = access_client
        self.bot = bot
        self.plugin_data = PluginDataStore(access_client)

    async def on_watcher_event(self, event: Event) -> None:
        request = event.request
        if event.type is OpType.PUT:
            if not request.state.is_pending():
                logger.warning(
                    "Ignoring non-pending request event request_id=%s state=%s",
                    request.id,
                    request.state.value,
                )
                return
            try:
                await self.on_pending_request(request)
            except Exception as exc:
                logger.error("Failed to process pending request request_id=%s: %s", request.id, exc)
                logger.debug("Pending request failure details", exc_info=True)
                raise
            return

        if event.type is OpType.DELETE:
            try:
                await self.on_deleted_request(request)
            except Exception as exc:
                logger.error("Failed to process deleted request request_id=%s: %s", request.id, exc)
                logger.debug("Deleted request failure details", exc_info=True)
                raise
            return

        raise BadParameterError(f"unexpected event operation {event.type!r}")

    async def on_pending_request(self, request: AccessRequest) -> None:
        request_data = RequestData(user=request.user, roles=request.roles, created=request.created)

        pd_data = await self.bot.create_incident(request.id, request_data)
        logger.info(
            "PagerDuty incident created request_id=%s pd_incident_id=%s", request.id, pd_data.id
        )

        try:
            await self.plugin_data.create(request.id, PluginData(request_data, pd_data))
        except Exception:
            logger.error(
                "Incident has no plugin data and will not be reconciled "
                "request_id=%s pd_incident_id=%s",
                request.id,
                pd_data.id,
            )
            raise

    async def on_deleted_request(self, request: AccessRequest) -> ActionOutcome:
        # Deletion events only carry the request id.
        request_id = request.id
        try:
            data = await self.plugin_data.get(request_id)
        except NotFoundError as exc:
            logger.warning("Cannot expire unknown request request_id=%s: %s", request_id, exc)
            return ActionOutcome.IGNORED

        if data.resolution:
            logger.info(
                "Incident already resolved request_id=%s pd_incident_id=%s resolution=%s",
                request_id,
                data.pagerduty.id,
                data.resolution,
            )
            return ActionOutcome.IGNORED

        await self.bot.resolve_incident(request_id, data.pagerduty, EXPIRED_RESOLUTION)
        await self._record_resolution(request_id, data, EXPIRED_RESOLUTION)
        logger.info("Successfully marked request as expired request_id=%s", request_id)
        return ActionOutcome.EXPIRED

    async def handle(self, action: WebhookAction) -> ActionOutcome:
        """Apply an approve/deny incident action to its access request."""
        context = f"pd_http_id={action.http_request_id} pd_msg_id={action.message_id}"

        if action.event != CUSTOM_ACTION_EVENT:
            logger.debug("Got %r event, ignoring %s", action.event, context)
            return ActionOutcome.IGNORED

        request_id = parse_incident_key(action.incident_key)
        if request_id is None:
            logger.debug("Got unsupported incident key %r, ignoring %s", action.incident_key, context)
            return ActionOutcome.IGNORED

        try:
            request = await self.access_client.get_request(request_id)
        except NotFoundError as exc:
            logger.warning(
                "Cannot process expired request request_id=%s %s: %s", request_id, context, exc
            )
            return ActionOutcome.IGNORED

        if not request.state.is_pending():
            raise RequestNotPendingError(
                f"cannot process not pending request {request_id} in state {request.state.value}"
            )

        data = await self.plugin_data.get(request_id)
        if data.pagerduty.id != action.incident_id:
            logger.debug(
                "plugin_data.incident_id %s does not match incident.id %s",
                data.pagerduty.id,
                action.incident_id,
            )
            raise ProtocolViolationError(
                f"incident_id from request {request_id} plugin_data does not match"
            )

        if action.name not in _ACTIONS:
            raise BadParameterError(f"unknown action: {action.name!r}")
        state, resolution = _ACTIONS[action.name]

        await self.access_client.set_request_state(request_id, state)
        logger.info(
            "PagerDuty user %s %s the request request_id=%s pd_incident_id=%s",
            await self._describe_agent(action.agent_id),
            resolution,
            request_id,
            action.incident_id,
        )

        await self.bot.resolve_incident(request_id, data.pagerduty, resolution)
        await self._record_resolution(request_id, data, resolution)
        logger.info("Incident %r has been resolved request_id=%s", action.incident_id, request_id)
        return ActionOutcome.RESOLVED

    async def _record_resolution(self, request_id: str, data: PluginData, resolution: str) -> None:
        try:
            await self.plugin_data.mark_resolved(request_id, data, resolution)
        except CompareFailedError as exc:
            logger.warning(
                "Plugin data changed while resolving request_id=%s: %s", request_id, exc
            )
        except AccessPluginError as exc:
            logger.warning(
                "Failed to record resolution request_id=%s resolution=%s: %s",
                request_id,
                resolution,
                exc,
            )

    async def _describe_agent(self, agent_id: str | None) -> str:
        if not agent_id:
            return "(unknown)"
        try:
            user = await self.bot.get_user_info(agent_id)
        except AccessPluginError as exc:
            logger.warning("Failed to look up PagerDuty user %s: %s", agent_id, exc)
            return agent_id
        return str(user.get("email") or user.get("name") or agent_id)
