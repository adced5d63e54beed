"""Teleport access request client interface and helpers."""

from access_pagerduty.access.client import PLUGIN_NAME, AccessClient, load_access_client
from access_pagerduty.access.models import (
    MIN_SERVER_VERSION,
    AccessRequest,
    Event,
    Filter,
    OpType,
    Pong,
    RequestState,
)
from access_pagerduty.access.watcher import WatcherJob

__all__ = [
    "AccessClient",
    "AccessRequest",
    "Event",
    "Filter",
    "MIN_SERVER_VERSION",
    "OpType",
    "PLUGIN_NAME",
    "Pong",
    "RequestState",
    "WatcherJob",
    "load_access_client",
]
