"""Error types shared across the plugin."""

from __future__ import annotations

from collections.abc import Iterable


class AccessPluginError(Exception):
    """Base class for plugin errors."""


class NotFoundError(AccessPluginError):
    """Raised when a request, plugin data record or remote object is missing."""


class BadParameterError(AccessPluginError):
    """Raised on malformed or unsupported input."""


class AccessDeniedError(AccessPluginError):
    """Raised when credentials are rejected by a remote service."""


class CompareFailedError(AccessPluginError):
    """Raised when a compare-and-swap update finds unexpected data."""


class NotImplementedByServerError(AccessPluginError):
    """Raised when the auth server does not support a call."""


class VersionMismatchError(AccessPluginError):
    """Raised when the auth server is too old for this plugin."""


class ProtocolViolationError(AccessPluginError):
    """Raised when a webhook action contradicts the recorded request state."""


class RequestNotPendingError(ProtocolViolationError):
    """Raised when an action arrives for a request that was already decided."""


class CertificateError(AccessPluginError):
    """Raised when the listener certificate cannot be loaded or generated."""


class AggregateError(AccessPluginError):
    """Several errors reported together."""

    def __init__(self, errors: list[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(f"{type(e).__name__}: {e}" for e in self.errors))


def aggregate(errors: Iterable[BaseException | None]) -> BaseException | None:
    """Combine errors, dropping ``None`` and duplicates.

    Nested aggregates are flattened. Returns ``None`` when nothing is left and
    the error itself when only one remains.
    """
    flat: list[BaseException] = []
    for error in errors:
        if error is None:
            continue
        items = error.errors if isinstance(error, AggregateError) else [error]
        for item in items:
            if not any(item is seen for seen in flat):
                flat.append(item)
    if not flat:
        return None
    if len(flat) == 1:
        return flat[0]
    return AggregateError(flat)
