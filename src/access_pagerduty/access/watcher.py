"""Service job delivering access request events to a handler."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from access_pagerduty.access.client import AccessClient
from access_pagerduty.access.models import Event, Filter
from access_pagerduty.utils.process import ServiceJob

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Awaitable[None]]


class WatcherJob(ServiceJob):
    """Watches access requests and calls ``on_event`` for each event in order.

    The job is ready once the subscription is open. A failing handler only
    fails that event; a broken subscription ends the job with its error.
    """

    def __init__(self, client: AccessClient, filter: Filter, on_event: EventHandler) -> None:
        super().__init__(self._watch, name="watcher")
        self._client = client
        self._filter = filter
        self._on_event = on_event

    async def _watch(self, job: ServiceJob) -> None:
        async with self._client.watch_requests(self._filter) as events:
            logger.debug("Watcher subscribed with filter %s", self._filter)
            job.set_ready(True)
            async for event in events:
                try:
                    await self._on_event(event)
                except Exception:
                    logger.warning(
                        "Failed to handle %s event for request %s, waiting for the next event",
                        event.type.value,
                        event.request.id,
                    )
        raise RuntimeError("access request watcher stream closed")
