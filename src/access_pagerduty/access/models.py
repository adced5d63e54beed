"""Access request types exchanged with the Teleport auth server."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from access_pagerduty.errors import VersionMismatchError

MIN_SERVER_VERSION = "4.3.0"

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


class RequestState(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    def is_pending(self) -> bool:
        return self is RequestState.PENDING


class OpType(str, Enum):
    PUT = "PUT"
    DELETE = "DELETE"


@dataclass(frozen=True)
class AccessRequest:
    """An access request. Deletion events only populate ``id``."""

    id: str
    user: str = ""
    roles: tuple[str, ...] = ()
    created: datetime | None = None
    state: RequestState = RequestState.NONE


@dataclass(frozen=True)
class Event:
    type: OpType
    request: AccessRequest


@dataclass(frozen=True)
class Filter:
    """Request filter; unset fields match anything."""

    id: str | None = None
    user: str | None = None
    state: RequestState | None = None

    def matches(self, request: AccessRequest) -> bool:
        if self.id is not None and request.id != self.id:
            return False
        if self.user is not None and request.user != self.user:
            return False
        if self.state is not None and request.state != self.state:
            return False
        return True


def parse_version(version: str) -> tuple[int, int, int]:
    match = _VERSION_RE.match(version.strip())
    if not match:
        raise VersionMismatchError(f"cannot parse server version {version!r}")
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


@dataclass(frozen=True)
class Pong:
    cluster_name: str
    server_version: str

    def assert_server_version(self, minimum: str = MIN_SERVER_VERSION) -> None:
        if parse_version(self.server_version) < parse_version(minimum):
            raise VersionMismatchError(
                f"server version {self.server_version} is older than the minimum {minimum}"
            )
