"""HTTPS listener for PagerDuty custom incident actions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Awaitable, Callable, Iterator
from urllib.parse import urlparse

import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from access_pagerduty.config import HTTPSettings
from access_pagerduty.errors import (
    AccessDeniedError,
    BadParameterError,
    NotFoundError,
    ProtocolViolationError,
    RequestNotPendingError,
)
from access_pagerduty.utils.http import join_host_port, normalize_public_base_url, split_host_port
from access_pagerduty.utils.process import ServiceJob
from access_pagerduty.webhook.certs import ensure_cert
from access_pagerduty.webhook.models import WebhookAction, WebhookPayload, actions_from_payload

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8081
GRACEFUL_SHUTDOWN_SECONDS = 5
_STARTUP_POLL_SECONDS = 0.05

ActionHandler = Callable[[WebhookAction], Awaitable[object]]


def status_for_error(exc: BaseException) -> int:
    """Map an action handler failure to the HTTP status returned to PagerDuty."""
    if isinstance(exc, (NotFoundError, RequestNotPendingError)):
        return 200
    if isinstance(exc, BadParameterError):
        return 400
    if isinstance(exc, AccessDeniedError):
        return 403
    if isinstance(exc, ProtocolViolationError):
        return 409
    return 500


async def _dispatch(on_action: ActionHandler, action: WebhookAction) -> int:
    context = (
        f"pd_http_id={action.http_request_id} pd_msg_id={action.message_id} "
        f"action={action.name}"
    )
    try:
        await on_action(action)
    except Exception as exc:
        status = status_for_error(exc)
        if isinstance(exc, RequestNotPendingError):
            logger.error("Webhook action for a decided request %s: %s", context, exc)
        elif status < 400:
            logger.warning("Webhook action ignored %s: %s", context, exc)
        elif status < 500:
            logger.error("Rejected webhook action %s: %s", context, exc)
        else:
            logger.error("Failed to process webhook action %s: %s", context, exc)
            logger.debug("Webhook action failure details", exc_info=True)
        return status
    return 200


def create_webhook_app(on_action: ActionHandler) -> Starlette:
    """Create the Starlette application serving the action endpoints.

    Every path except ``/status`` is treated as an action name; the handler
    decides which names are valid.
    """

    async def status_handler(request: Request) -> Response:
        return JSONResponse({"status": "ok"})

    async def action_handler(request: Request) -> Response:
        action_name = request.path_params["action_name"]
        body = await request.body()
        try:
            payload = WebhookPayload.model_validate_json(body)
        except ValidationError as exc:
            logger.warning(
                "Invalid webhook payload for action %s: %s",
                action_name,
                exc.errors(include_url=False)[:3],
            )
            return JSONResponse({"status": "error", "error": "invalid payload"}, status_code=400)

        http_request_id = request.headers.get("x-webhook-id", "")
        status = 200
        for action in actions_from_payload(payload, action_name, http_request_id):
            status = max(status, await _dispatch(on_action, action))

        return JSONResponse({"status": "ok" if status < 400 else "error"}, status_code=status)

    routes = [
        Route("/status", endpoint=status_handler, methods=["GET"]),
        Route("/{action_name}", endpoint=action_handler, methods=["POST"]),
    ]
    return Starlette(routes=routes)


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the process."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


class WebhookServer:
    """Serves PagerDuty webhooks over HTTPS as a readiness-gated job."""

    def __init__(self, settings: HTTPSettings, on_action: ActionHandler) -> None:
        self._settings = settings
        self._host, self._port = split_host_port(settings.listen_addr, default_port=DEFAULT_PORT)
        self._bound_port: int | None = None
        self.app = create_webhook_app(on_action)
        self._job = ServiceJob(self._serve, name="webhook-server")

    def base_url(self) -> str:
        if self._settings.public_addr:
            return normalize_public_base_url(self._settings.public_addr)
        host = self._host if self._host not in ("0.0.0.0", "::") else "localhost"
        port = self._bound_port if self._bound_port is not None else self._port
        return f"https://{join_host_port(host, port)}"

    def action_url(self, action_name: str) -> str:
        return f"{self.base_url()}/{action_name}"

    def cert_hosts(self) -> list[str]:
        hosts = [self._host]
        if self._settings.public_addr:
            public_host = urlparse(normalize_public_base_url(self._settings.public_addr)).hostname
            if public_host:
                hosts.append(public_host)
        return hosts

    def ensure_cert(self) -> None:
        ensure_cert(
            self._settings.https_cert_file,
            self._settings.https_key_file,
            self.cert_hosts(),
        )

    def service_job(self) -> ServiceJob:
        return self._job

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.create_server((self._host, self._port), family=family)
        self._bound_port = sock.getsockname()[1]
        return sock

    async def _serve(self, job: ServiceJob) -> None:
        await asyncio.to_thread(self.ensure_cert)
        sock = self._bind()
        config = uvicorn.Config(
            self.app,
            ssl_certfile=self._settings.https_cert_file,
            ssl_keyfile=self._settings.https_key_file,
            lifespan="off",
            ws="none",
            log_config=None,
            timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
        )
        server = _ListenerServer(config)
        serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="webhook-server.serve")
        try:
            while not server.started and not serve_task.done():
                await asyncio.sleep(_STARTUP_POLL_SECONDS)
            if not server.started:
                await serve_task
                raise RuntimeError("webhook server stopped during startup")

            logger.info("Webhook server listening on %s", self.base_url())
            job.set_ready(True)
            await asyncio.shield(serve_task)
            raise RuntimeError("webhook server stopped unexpectedly")
        finally:
            if not serve_task.done():
                server.should_exit = True
                await serve_task
            sock.close()
            logger.info("Webhook server stopped")
