"""HTTPS listener for PagerDuty webhook callbacks."""

from access_pagerduty.webhook.models import WebhookAction
from access_pagerduty.webhook.server import WebhookServer, create_webhook_app, status_for_error

__all__ = ["WebhookAction", "WebhookServer", "create_webhook_app", "status_for_error"]
