"""In-memory access client for tests and local runs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Iterable

from access_pagerduty.access.models import (
    AccessRequest,
    Event,
    Filter,
    OpType,
    Pong,
    RequestState,
)
from access_pagerduty.config import TeleportSettings
from access_pagerduty.errors import BadParameterError, CompareFailedError, NotFoundError
from access_pagerduty.utils.time import utc_now

logger = logging.getLogger(__name__)


class InMemoryAccessClient:
    """Auth server stand-in holding requests and plugin data in memory.

    PUT events are delivered to watchers whose filter matches the request;
    DELETE events carry only the request id and always pass. Plugin data
    outlives its request, as it does on a real auth server until garbage
    collection.
    """

    def __init__(
        self,
        plugin_name: str = "pagerduty",
        *,
        cluster_name: str = "local",
        server_version: str = "6.2.0",
    ) -> None:
        self.plugin_name = plugin_name
        self.cluster_name = cluster_name
        self.server_version = server_version
        self.requests: dict[str, AccessRequest] = {}
        self.plugin_data: dict[str, dict[str, str]] = {}
        self.state_changes: list[tuple[str, RequestState]] = []
        self._watchers: list[tuple[Filter, asyncio.Queue[Event | None]]] = []
        self._lock = asyncio.Lock()
        self._closed = False

    async def ping(self) -> Pong:
        return Pong(cluster_name=self.cluster_name, server_version=self.server_version)

    async def create_request(
        self,
        user: str,
        roles: Iterable[str],
        *,
        request_id: str | None = None,
    ) -> AccessRequest:
        request = AccessRequest(
            id=request_id or str(uuid.uuid4()),
            user=user,
            roles=tuple(roles),
            created=utc_now(),
            state=RequestState.PENDING,
        )
        async with self._lock:
            if request.id in self.requests:
                raise BadParameterError(f"access request {request.id} already exists")
            self.requests[request.id] = request
        self._publish(Event(OpType.PUT, request))
        return request

    async def get_request(self, request_id: str) -> AccessRequest:
        async with self._lock:
            request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError(f"access request {request_id} is not found")
        return request

    async def set_request_state(self, request_id: str, state: RequestState) -> None:
        if state not in (RequestState.APPROVED, RequestState.DENIED):
            raise BadParameterError(f"cannot set request state to {state.value}")
        async with self._lock:
            request = self.requests.get(request_id)
            if request is None:
                raise NotFoundError(f"access request {request_id} is not found")
            if not request.state.is_pending():
                raise BadParameterError(
                    f"cannot change state of request {request_id} from {request.state.value}"
                )
            request = replace(request, state=state)
            self.requests[request_id] = request
            self.state_changes.append((request_id, state))
        self._publish(Event(OpType.PUT, request))

    async def delete_request(self, request_id: str) -> None:
        async with self._lock:
            if self.requests.pop(request_id, None) is None:
                raise NotFoundError(f"access request {request_id} is not found")
        self._publish(Event(OpType.DELETE, AccessRequest(id=request_id)))

    async def get_plugin_data(self, request_id: str) -> dict[str, str]:
        async with self._lock:
            data = self.plugin_data.get(request_id)
        if not data:
            raise NotFoundError(
                f"no {self.plugin_name} plugin data for access request {request_id}"
            )
        return dict(data)

    async def update_plugin_data(
        self,
        request_id: str,
        set_: dict[str, str],
        expect: dict[str, str] | None,
    ) -> None:
        async with self._lock:
            if request_id not in self.requests and request_id not in self.plugin_data:
                raise NotFoundError(f"access request {request_id} is not found")
            current = self.plugin_data.get(request_id, {})
            if expect is not None:
                for key, value in expect.items():
                    if current.get(key, "") != value:
                        raise CompareFailedError(
                            f"plugin data of access request {request_id} changed concurrently"
                        )
            updated = dict(current)
            for key, value in set_.items():
                if value == "":
                    updated.pop(key, None)
                else:
                    updated[key] = value
            self.plugin_data[request_id] = updated

    @asynccontextmanager
    async def watch_requests(self, filter: Filter) -> AsyncIterator[AsyncIterator[Event]]:
        if self._closed:
            raise BadParameterError("access client is closed")
        queue: asyncio.Queue[Event | None] = asyncio.Queue()
        entry = (filter, queue)
        self._watchers.append(entry)
        try:
            yield self._drain(queue)
        finally:
            self._watchers.remove(entry)

    async def close(self) -> None:
        self._closed = True
        for _, queue in self._watchers:
            queue.put_nowait(None)

    def _publish(self, event: Event) -> None:
        for filter, queue in self._watchers:
            if event.type is OpType.PUT and not filter.matches(event.request):
                continue
            queue.put_nowait(event)

    @staticmethod
    async def _drain(queue: asyncio.Queue[Event | None]) -> AsyncIterator[Event]:
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event


def create_client(plugin_name: str, settings: TeleportSettings) -> InMemoryAccessClient:
    """Default access client factory."""
    logger.warning(
        "Using the in-memory access backend; requests from %s will not be seen",
        settings.auth_server,
    )
    return InMemoryAccessClient(plugin_name)
