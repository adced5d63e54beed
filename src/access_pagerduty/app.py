"""Plugin application: wires Teleport, PagerDuty and the webhook listener."""

from __future__ import annotations

import asyncio
import logging

import httpx

from access_pagerduty import __version__
from access_pagerduty.access.client import AccessClient, load_access_client
from access_pagerduty.access.models import MIN_SERVER_VERSION, Filter, RequestState
from access_pagerduty.access.watcher import WatcherJob
from access_pagerduty.bridge import ActionOutcome, EventBridge
from access_pagerduty.config import Settings
from access_pagerduty.errors import NotImplementedByServerError, aggregate
from access_pagerduty.pagerduty.bot import Bot
from access_pagerduty.utils.process import Process, ServiceJob
from access_pagerduty.webhook.models import WebhookAction
from access_pagerduty.webhook.server import WebhookServer

logger = logging.getLogger(__name__)

PING_TIMEOUT_SECONDS = 5.0


class App:
    """The PagerDuty access plugin.

    ``run()`` starts the main job under a fresh process and returns once every
    job has stopped, raising the combined error of the jobs that failed.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        access_client: AccessClient | None = None,
        pagerduty_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._access_client = access_client
        self._pagerduty_transport = pagerduty_transport
        self.process = Process()
        self.main_job = ServiceJob(self._run, name="main")
        self.webhook_server: WebhookServer | None = None
        self.bridge: EventBridge | None = None

    async def run(self) -> None:
        self.process.spawn_critical_job(self.main_job)
        await self.process.wait_done()
        err = self.process.err
        if err is not None:
            raise err

    def terminate(self) -> None:
        self.process.terminate()

    async def wait_ready(self, timeout: float | None = None) -> bool:
        return await self.main_job.wait_ready(timeout)

    def public_url(self) -> str:
        if self.webhook_server is None or not self.main_job.is_ready():
            raise RuntimeError("plugin is not ready")
        return self.webhook_server.base_url()

    async def _on_action(self, action: WebhookAction) -> ActionOutcome:
        if self.bridge is None:
            raise RuntimeError("plugin is not started")
        return await self.bridge.handle(action)

    async def _run(self, job: ServiceJob) -> None:
        logger.info("Starting Teleport Access PagerDuty plugin version=%s", __version__)

        owns_client = self._access_client is None
        client = self._access_client or load_access_client(self.settings.teleport)
        server = WebhookServer(self.settings.http, self._on_action)
        bot = Bot(self.settings.pagerduty, server, transport=self._pagerduty_transport)
        self.webhook_server = server
        self.bridge = EventBridge(client, bot)

        try:
            await self._check_teleport_version(client)
            await bot.health_check()

            listener = server.service_job()
            self.process.spawn_critical_job(listener)
            if not await listener.wait_ready():
                raise listener.err or RuntimeError("webhook listener failed to start")

            await bot.setup()

            watcher = WatcherJob(
                client, Filter(state=RequestState.PENDING), self.bridge.on_watcher_event
            )
            self.process.spawn_critical_job(watcher)
            if not await watcher.wait_ready():
                raise watcher.err or RuntimeError("access request watcher failed to start")

            job.set_ready(True)
            logger.info("Plugin is ready")

            await self._wait_children(listener, watcher)
        finally:
            await bot.aclose()
            if owns_client:
                await client.close()

    async def _check_teleport_version(self, client: AccessClient) -> None:
        logger.debug("Checking Teleport server version")
        try:
            pong = await asyncio.wait_for(client.ping(), PING_TIMEOUT_SECONDS)
        except NotImplementedByServerError as exc:
            raise NotImplementedByServerError(
                f"server version must be at least {MIN_SERVER_VERSION}"
            ) from exc
        except asyncio.TimeoutError:
            logger.error("Unable to get Teleport server version")
            raise
        pong.assert_server_version(MIN_SERVER_VERSION)
        logger.debug(
            "Connected to Teleport cluster=%s version=%s", pong.cluster_name, pong.server_version
        )

    async def _wait_children(self, *jobs: ServiceJob) -> None:
        cancelled = False
        try:
            await asyncio.gather(*(child.wait_done() for child in jobs))
        except asyncio.CancelledError:
            # the process cancels the children too; collect their errors
            cancelled = True
            await asyncio.gather(*(child.wait_done() for child in jobs))
        err = aggregate(child.err for child in jobs)
        if err is not None:
            raise err
        if cancelled:
            raise asyncio.CancelledError()
