"""Configuration management for the Teleport PagerDuty plugin."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from access_pagerduty.utils.http import normalize_public_base_url, split_host_port

_config_logger = logging.getLogger(__name__)

DEFAULT_CLIENT_FACTORY = "access_pagerduty.access.memory:create_client"


class TeleportSettings(BaseModel):
    auth_server: str = Field(default="localhost:3025")
    client_key: str | None = Field(default=None, description="Client private key path")
    client_crt: str | None = Field(default=None, description="Client certificate path")
    root_cas: str | None = Field(default=None, description="Auth server CA bundle path")
    client_factory: str = Field(
        default=DEFAULT_CLIENT_FACTORY,
        description="Import path ('module:callable') of the access client factory",
    )


class PagerdutySettings(BaseModel):
    api_endpoint: str = Field(default="https://api.pagerduty.com")
    api_key: str = Field(default="")
    user_email: str = Field(default="")
    service_id: str = Field(default="")


class HTTPSettings(BaseModel):
    listen_addr: str = Field(default=":8081")
    public_addr: str | None = Field(
        default=None,
        description="Externally visible host[:port] or URL PagerDuty calls back",
    )
    https_key_file: str = Field(default="./data/server.key")
    https_cert_file: str = Field(default="./data/server.crt")

    @field_validator("listen_addr")
    @classmethod
    def _validate_listen_addr(cls, value: str) -> str:
        split_host_port(value)
        return value

    @field_validator("public_addr")
    @classmethod
    def _validate_public_addr(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        normalize_public_base_url(value)
        return value.strip()


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class Settings(BaseModel):
    teleport: TeleportSettings = Field(default_factory=TeleportSettings)
    pagerduty: PagerdutySettings = Field(default_factory=PagerdutySettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_KEYS = {
    ("teleport", "auth_server"): "TELEPORT_AUTH_SERVER",
    ("teleport", "client_key"): "TELEPORT_CLIENT_KEY",
    ("teleport", "client_crt"): "TELEPORT_CLIENT_CRT",
    ("teleport", "root_cas"): "TELEPORT_ROOT_CAS",
    ("teleport", "client_factory"): "TELEPORT_CLIENT_FACTORY",
    ("pagerduty", "api_endpoint"): "PAGERDUTY_API_ENDPOINT",
    ("pagerduty", "api_key"): "PAGERDUTY_API_KEY",
    ("pagerduty", "user_email"): "PAGERDUTY_USER_EMAIL",
    ("pagerduty", "service_id"): "PAGERDUTY_SERVICE_ID",
    ("http", "listen_addr"): "HTTP_LISTEN_ADDR",
    ("http", "public_addr"): "HTTP_PUBLIC_ADDR",
    ("http", "https_key_file"): "HTTP_HTTPS_KEY_FILE",
    ("http", "https_cert_file"): "HTTP_HTTPS_CERT_FILE",
    ("logging", "level"): "LOG_LEVEL",
    ("logging", "file"): "LOG_FILE",
}

CONFIG_PATH_ENV = "PAGERDUTY_CONFIG_PATH"

_PATH_FIELDS = (
    ("teleport", "client_key"),
    ("teleport", "client_crt"),
    ("teleport", "root_cas"),
    ("http", "https_key_file"),
    ("http", "https_cert_file"),
    ("logging", "file"),
)

_REQUIRED_FIELDS = (
    ("pagerduty", "api_key"),
    ("pagerduty", "user_email"),
    ("pagerduty", "service_id"),
)


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return str(candidate.resolve())
    return str((_project_root() / candidate).resolve())


def _read_config_file(path: str | Path) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    with open(config_path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"Invalid configuration: {config_path} must contain a mapping")
    # dashed keys are accepted as well
    return {
        str(section).replace("-", "_"): (
            {str(k).replace("-", "_"): v for k, v in values.items()}
            if isinstance(values, dict)
            else values
        )
        for section, values in data.items()
    }


def _env_overrides() -> dict[str, dict[str, str]]:
    overrides: dict[str, dict[str, str]] = {}
    for (section, key), env_name in ENV_KEYS.items():
        value = os.getenv(env_name)
        if value is None or value.strip() == "":
            continue
        overrides.setdefault(section, {})[key] = value.strip()
    return overrides


def _merge(base: dict[str, Any], overrides: dict[str, dict[str, str]]) -> dict[str, Any]:
    merged: dict[str, Any] = {
        section: dict(values) if isinstance(values, dict) else values
        for section, values in base.items()
    }
    for section, values in overrides.items():
        current = merged.get(section)
        if not isinstance(current, dict):
            current = {}
        current.update(values)
        merged[section] = current
    return merged


def load_settings(config_path: str | None = None) -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached(config_path or os.getenv(CONFIG_PATH_ENV) or None)


@lru_cache(maxsize=4)
def _load_settings_cached(config_path: str | None) -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")

    file_data = _read_config_file(config_path) if config_path else {}
    settings_data = _merge(file_data, _env_overrides())

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    # defaults as well as configured values resolve against the project root
    for section, key in _PATH_FIELDS:
        section_settings = getattr(settings, section)
        value = getattr(section_settings, key)
        if value:
            setattr(section_settings, key, _resolve_path(str(value)))

    missing = [
        ENV_KEYS[(section, key)]
        for section, key in _REQUIRED_FIELDS
        if not getattr(getattr(settings, section), key)
    ]
    if missing:
        raise RuntimeError(
            "Invalid configuration: missing required PagerDuty settings: " + ", ".join(missing)
        )

    if config_path:
        _config_logger.debug("Loaded configuration from %s", config_path)
    return settings


EXAMPLE_CONFIG = """\
# Example Teleport PagerDuty plugin configuration (YAML).
# Every value can be overridden by the environment variable noted next to it.
teleport:
  auth_server: "example.com:3025"   # TELEPORT_AUTH_SERVER
  client_key: "/var/lib/teleport/plugins/pagerduty/auth.key"   # TELEPORT_CLIENT_KEY
  client_crt: "/var/lib/teleport/plugins/pagerduty/auth.crt"   # TELEPORT_CLIENT_CRT
  root_cas: "/var/lib/teleport/plugins/pagerduty/auth.cas"     # TELEPORT_ROOT_CAS

pagerduty:
  api_key: "key"                    # PAGERDUTY_API_KEY
  user_email: "me@example.com"      # PAGERDUTY_USER_EMAIL
  service_id: "PIJ90N7"             # PAGERDUTY_SERVICE_ID

http:
  listen_addr: ":8081"              # HTTP_LISTEN_ADDR
  # public_addr: "example.com"      # HTTP_PUBLIC_ADDR
  https_key_file: "/var/lib/teleport/plugins/pagerduty/server.key"   # HTTP_HTTPS_KEY_FILE
  https_cert_file: "/var/lib/teleport/plugins/pagerduty/server.crt"  # HTTP_HTTPS_CERT_FILE

logging:
  level: "INFO"                     # LOG_LEVEL
  # file: "/var/lib/teleport/pagerduty.log"   # LOG_FILE
"""
