"""PagerDuty v2 webhook payload models."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class WebhookIncident(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    incident_key: str | None = None


class WebhookAgent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str | None = None


class WebhookLogEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    agent: WebhookAgent | None = None


class WebhookMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    event: str
    incident: WebhookIncident
    log_entries: list[WebhookLogEntry] = Field(default_factory=list)

    def agent_id(self) -> str | None:
        for entry in self.log_entries:
            if entry.agent is not None and entry.agent.id:
                return entry.agent.id
        return None


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    messages: list[WebhookMessage]


@dataclass(frozen=True)
class WebhookAction:
    """One custom incident action delivered by PagerDuty."""

    event: str
    name: str
    incident_id: str
    incident_key: str
    http_request_id: str = ""
    message_id: str = ""
    agent_id: str | None = None


def actions_from_payload(
    payload: WebhookPayload, action_name: str, http_request_id: str = ""
) -> list[WebhookAction]:
    return [
        WebhookAction(
            event=message.event,
            name=action_name,
            incident_id=message.incident.id,
            incident_key=message.incident.incident_key or "",
            http_request_id=http_request_id,
            message_id=message.id,
            agent_id=message.agent_id(),
        )
        for message in payload.messages
    ]
