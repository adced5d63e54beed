from __future__ import annotations

import asyncio
import contextlib
import json
import os
from typing import Any, AsyncIterator

import httpx
import pytest
import pytest_asyncio

from access_pagerduty import config
from access_pagerduty.config import PagerdutySettings
from access_pagerduty.pagerduty.bot import Bot


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep a developer's shell or .env from leaking into configuration tests.
    for env_name in (*config.ENV_KEYS.values(), config.CONFIG_PATH_ENV):
        os.environ.pop(env_name, None)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


class FakePagerDuty:
    """In-process PagerDuty API served through ``httpx.MockTransport``."""

    def __init__(self, service_id: str = "PSERVICE") -> None:
        self.service_id = service_id
        self.schemas: list[dict[str, Any]] = [
            {"id": "SCHEMA_EMAIL", "key": "email"},
            {"id": "SCHEMA_WEBHOOK", "key": "custom_webhook"},
        ]
        self.extensions: list[dict[str, Any]] = []
        self.incidents: dict[str, dict[str, Any]] = {}
        self.notes: dict[str, list[str]] = {}
        self.users: dict[str, dict[str, Any]] = {
            "PUSER": {"id": "PUSER", "name": "Pat Oncall", "email": "pat@example.com"}
        }
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], int] = {}
        self._next_id = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def resolved(self) -> list[str]:
        return [i for i, incident in self.incidents.items() if incident["status"] == "resolved"]

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    def _list(self, request: httpx.Request, key: str, items: list[dict[str, Any]]) -> httpx.Response:
        offset = int(request.url.params.get("offset", 0))
        limit = int(request.url.params.get("limit", 25))
        page = items[offset : offset + limit]
        return httpx.Response(200, json={key: page, "more": offset + limit < len(items)})

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        for (fail_method, fail_prefix), status in self.fail.items():
            if method == fail_method and path.startswith(fail_prefix):
                return httpx.Response(status, json={"error": {"message": "injected failure"}})

        parts = path.strip("/").split("/")
        body = json.loads(request.content) if request.content else {}

        if parts == ["services", self.service_id] and method == "GET":
            return httpx.Response(200, json={"service": {"id": self.service_id}})
        if parts == ["extension_schemas"]:
            return self._list(request, "extension_schemas", self.schemas)
        if parts == ["extensions"] and method == "GET":
            return self._list(request, "extensions", self.extensions)
        if parts == ["extensions"] and method == "POST":
            extension = {"id": self._new_id("EXT"), **body["extension"]}
            self.extensions.append(extension)
            return httpx.Response(201, json={"extension": extension})
        if len(parts) == 2 and parts[0] == "extensions" and method == "PUT":
            for extension in self.extensions:
                if extension["id"] == parts[1]:
                    extension.update(body["extension"])
                    return httpx.Response(200, json={"extension": extension})
            return httpx.Response(404, json={"error": {"message": "Not Found"}})
        if parts == ["incidents"] and method == "POST":
            assert request.headers.get("from")
            incident = {"id": self._new_id("INC"), "status": "triggered", **body["incident"]}
            self.incidents[incident["id"]] = incident
            return httpx.Response(201, json={"incident": incident})
        if parts == ["incidents"] and method == "PUT":
            updated = []
            for ref in body["incidents"]:
                incident = self.incidents.get(ref["id"])
                if incident is None:
                    return httpx.Response(404, json={"error": {"message": "Not Found"}})
                incident["status"] = ref["status"]
                updated.append(incident)
            return httpx.Response(200, json={"incidents": updated})
        if len(parts) == 3 and parts[0] == "incidents" and parts[2] == "notes":
            self.notes.setdefault(parts[1], []).append(body["note"]["content"])
            return httpx.Response(201, json={"note": {"id": "NOTE", **body["note"]}})
        if len(parts) == 2 and parts[0] == "users" and parts[1] in self.users:
            return httpx.Response(200, json={"user": self.users[parts[1]]})
        return httpx.Response(404, json={"error": {"message": "Not Found"}})


class StaticActionURLs:
    def __init__(self, base_url: str = "https://plugin.example.com") -> None:
        self.base_url = base_url

    def action_url(self, action_name: str) -> str:
        return f"{self.base_url}/{action_name}"


@pytest.fixture
def fake_pagerduty() -> FakePagerDuty:
    return FakePagerDuty()


@pytest.fixture
def pagerduty_settings() -> PagerdutySettings:
    return PagerdutySettings(
        api_key="key",
        user_email="bot@example.com",
        service_id="PSERVICE",
    )


@pytest.fixture
def action_urls() -> StaticActionURLs:
    return StaticActionURLs()


@pytest_asyncio.fixture
async def bot(
    pagerduty_settings: PagerdutySettings,
    action_urls: StaticActionURLs,
    fake_pagerduty: FakePagerDuty,
) -> AsyncIterator[Bot]:
    bot = Bot(pagerduty_settings, action_urls, transport=fake_pagerduty.transport)
    yield bot
    await bot.aclose()
