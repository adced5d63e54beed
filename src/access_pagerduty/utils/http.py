"""Shared HTTP utilities."""

from __future__ import annotations

from urllib.parse import urlparse

_PUBLIC_BASE_URL_ALLOWED_SCHEMES = frozenset({"http", "https"})


def split_host_port(addr: str, *, default_port: int = 443) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    Accepts ``:8081`` (all interfaces), bracketed IPv6 literals and bare hosts.
    """
    candidate = addr.strip()
    if not candidate:
        raise ValueError("address must not be empty")

    if candidate.startswith("["):
        host, sep, rest = candidate[1:].partition("]")
        if not sep:
            raise ValueError(f"invalid address: {addr!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif candidate.count(":") == 1:
        host, _, port_text = candidate.partition(":")
    else:
        host, port_text = candidate, ""

    if not port_text:
        return host or "0.0.0.0", default_port
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ValueError(f"invalid port in address {addr!r}") from exc
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in address {addr!r}")
    return host or "0.0.0.0", port


def join_host_port(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{host}:{port}"


def normalize_public_base_url(value: str) -> str:
    """Normalize and validate an externally visible base URL.

    A bare ``host[:port]`` is promoted to ``https://host[:port]``.
    """
    candidate = value.strip()
    if not candidate:
        raise ValueError("public_base_url must not be empty")
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in _PUBLIC_BASE_URL_ALLOWED_SCHEMES:
        raise ValueError("public_base_url must use http or https")
    if not parsed.netloc:
        raise ValueError("public_base_url must include host")
    if parsed.query or parsed.fragment:
        raise ValueError("public_base_url must not include query or fragment")
    if parsed.username or parsed.password:
        raise ValueError("public_base_url must not include userinfo")

    normalized_path = parsed.path.rstrip("/")
    if normalized_path == "/":
        normalized_path = ""
    return f"{parsed.scheme.lower()}://{parsed.netloc}{normalized_path}"
