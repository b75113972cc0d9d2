"""
Embedded Callback Listener

A single aiohttp listener is bound to the redirect URI's host and port for the lifetime of a
run. It is started the first time an authorization code session begins and stopped when the
run ends. Handlers run on the same event loop as the waiting flow.
"""

import logging
from time import time
from types import TracebackType
from typing import Optional
from aiohttp import web
import sentry_sdk

from social.graze.quota.app.config import (
    CallbackStateAppKey,
    MetricsClientAppKey,
    Settings,
    SettingsAppKey,
)
from social.graze.quota.app.handlers.callback import handle_callback, handle_index
from social.graze.quota.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.quota.rendezvous import CallbackState

logger = logging.getLogger(__name__)


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except Exception as e:
        metrics_client.increment(
            "server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def create_callback_app(
    settings: Settings,
    callback_state: CallbackState,
    metrics_client: Optional[MetricsClient] = None,
) -> web.Application:
    app = web.Application(middlewares=[statsd_middleware, sentry_middleware])

    app[SettingsAppKey] = settings
    app[CallbackStateAppKey] = callback_state
    app[MetricsClientAppKey] = metrics_client or NoOpMetricsClient()

    app.add_routes([web.get("/", handle_index)])
    app.add_routes([web.get(settings.callback_path, handle_callback)])

    return app


class CallbackListener:
    """
    Process-wide listener for authorization redirects.

    start() is idempotent, so every authorization code session can call it and the first one
    actually binds the socket.
    """

    def __init__(
        self,
        settings: Settings,
        metrics_client: Optional[MetricsClient] = None,
        callback_state: Optional[CallbackState] = None,
    ) -> None:
        self._settings = settings
        self._metrics_client = metrics_client
        self.state = callback_state or CallbackState()
        self._runner: Optional[web.AppRunner] = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        if self._runner is not None:
            return

        app = create_callback_app(self._settings, self.state, self._metrics_client)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(
            runner, self._settings.callback_host, self._settings.callback_port
        )
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info(
            "Callback listener running on %s:%s",
            self._settings.callback_host,
            self._settings.callback_port,
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        runner = self._runner
        self._runner = None
        await runner.cleanup()
        logger.info("Callback listener stopped")

    async def __aenter__(self) -> "CallbackListener":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
