"""PagerDuty REST client and incident management."""

from access_pagerduty.pagerduty.bot import (
    APPROVE_ACTION,
    DENY_ACTION,
    INCIDENT_KEY_PREFIX,
    Bot,
    build_incident_body,
    incident_key,
)
from access_pagerduty.pagerduty.client import PagerDutyAPIError, PagerDutyClient

__all__ = [
    "APPROVE_ACTION",
    "Bot",
    "DENY_ACTION",
    "INCIDENT_KEY_PREFIX",
    "PagerDutyAPIError",
    "PagerDutyClient",
    "build_incident_body",
    "incident_key",
]
