"""Webhook receiver — lets a push notification trigger an update check.

Single catch-all route:

- ``GET`` on a path containing ``/health`` answers ``OK`` and never triggers.
- Anything but ``POST`` is rejected with 405.
- When a token header is configured, its value must match the token (403
  otherwise).
- A valid ``POST`` calls the trigger callback and answers 200.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from typing import Any

from aiohttp import web

from mirror_sidecar.logging import get_logger

log = get_logger("mirror_sidecar.webhook")

TriggerCallback = Callable[[], Any]


def validate_token(request_token: str | None, expected: str) -> bool:
    """Constant-time token comparison; an empty expected token never matches."""
    if not request_token or not expected:
        return False
    return secrets.compare_digest(request_token.encode(), expected.encode())


def create_app(
    on_trigger: TriggerCallback,
    token_header: str = "",
    token_value: str = "",
) -> web.Application:
    """Create the aiohttp application serving the webhook."""

    @web.middleware
    async def access_log_middleware(
        request: web.Request,
        handler: Callable[[web.Request], Any],
    ) -> web.StreamResponse:
        response: web.StreamResponse = await handler(request)
        log.info(
            "webhook_request",
            remote=request.remote or "-",
            method=request.method,
            path=request.path_qs,
            status=response.status,
        )
        return response

    async def handle(request: web.Request) -> web.Response:
        if request.method == "GET" and "/health" in request.path_qs:
            return web.Response(text="OK")

        if request.method != "POST":
            return web.Response(status=405, text="Invalid request method")

        if token_header:
            header_value = request.headers.get(token_header, "").strip()
            if not validate_token(header_value, token_value):
                log.warning("webhook_unauthorized", remote=request.remote or "-")
                return web.Response(status=403, text="Not authorized")

        log.info("webhook_invoked")
        try:
            on_trigger()
        except Exception as exc:
            log.exception("webhook_handler_failed")
            return web.Response(status=500, text=str(exc))
        return web.Response(status=200)

    app = web.Application(middlewares=[access_log_middleware])
    app.router.add_route("*", "/{tail:.*}", handle)
    return app


class WebhookServer:
    """Runs the webhook application on a TCP port."""

    def __init__(
        self,
        on_trigger: TriggerCallback,
        port: int,
        host: str = "0.0.0.0",
        token_header: str = "",
        token_value: str = "",
    ) -> None:
        self._on_trigger = on_trigger
        self._host = host
        self._port = port
        self._token_header = token_header
        self._token_value = token_value
        self._runner: web.AppRunner | None = None

    @property
    def port(self) -> int:
        return self._port

    async def start(self) -> None:
        """Bind the port and start serving. Bind errors propagate."""
        app = create_app(self._on_trigger, self._token_header, self._token_value)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        log.info("webhook_server_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        log.info("webhook_server_stopping")
        await self._runner.cleanup()
        self._runner = None
