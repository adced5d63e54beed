"""Interface of the Teleport access client and factory loading."""

from __future__ import annotations

import importlib
import logging
from typing import AsyncContextManager, AsyncIterator, Callable, Protocol, runtime_checkable

from access_pagerduty.access.models import AccessRequest, Event, Filter, Pong, RequestState
from access_pagerduty.config import TeleportSettings
from access_pagerduty.errors import BadParameterError

logger = logging.getLogger(__name__)

PLUGIN_NAME = "pagerduty"


@runtime_checkable
class AccessClient(Protocol):
    """Operations the plugin needs from the Teleport auth server.

    Plugin data is scoped to the plugin name the client was created with.
    ``get_plugin_data`` raises ``NotFoundError`` when nothing is stored and
    ``update_plugin_data`` raises ``CompareFailedError`` when ``expect`` does
    not match the stored values.
    """

    async def ping(self) -> Pong: ...

    async def get_request(self, request_id: str) -> AccessRequest: ...

    async def set_request_state(self, request_id: str, state: RequestState) -> None: ...

    async def get_plugin_data(self, request_id: str) -> dict[str, str]: ...

    async def update_plugin_data(
        self,
        request_id: str,
        set_: dict[str, str],
        expect: dict[str, str] | None,
    ) -> None: ...

    def watch_requests(self, filter: Filter) -> AsyncContextManager[AsyncIterator[Event]]: ...

    async def close(self) -> None: ...


ClientFactory = Callable[[str, TeleportSettings], AccessClient]


def _import_factory(path: str) -> ClientFactory:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise BadParameterError(
            f"access client factory must look like 'module:callable', got {path!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise BadParameterError(f"cannot import access client module {module_name!r}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise BadParameterError(f"{path!r} is not a callable access client factory")
    return factory


def load_access_client(settings: TeleportSettings, plugin_name: str = PLUGIN_NAME) -> AccessClient:
    """Create the access client named by ``settings.client_factory``."""
    factory = _import_factory(settings.client_factory)
    logger.debug("Creating access client via %s for %s", settings.client_factory, settings.auth_server)
    client = factory(plugin_name, settings)
    if not isinstance(client, AccessClient):
        raise BadParameterError(f"{settings.client_factory!r} did not return an access client")
    return client
