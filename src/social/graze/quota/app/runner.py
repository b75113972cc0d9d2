"""
Run Wiring

This module assembles one quota check run: the shared HTTP client and its middleware chain,
the embedded callback listener, both flows, the probe and the orchestrator. After the
orchestrator finishes, the snapshots of every successful application are handed to the sink
in a single write.

A run ends in one of three statuses:
- COMPLETE: every application produced snapshots
- PARTIAL: at least one application failed and at least one succeeded
- EMPTY: no application succeeded; nothing is written
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
import signal
from typing import Callable, List, Optional, Sequence

import aiohttp

from social.graze.quota.app.config import Settings
from social.graze.quota.app.metrics import MetricsClient, create_metrics_client
from social.graze.quota.app.orchestrator import SessionOrchestrator
from social.graze.quota.app.server import CallbackListener
from social.graze.quota.app.sink import QuotaSink
from social.graze.quota.github.chain import (
    ChainMiddlewareClient,
    StaticHeadersMiddleware,
    StatsdMiddleware,
)
from social.graze.quota.github.code_flow import AuthorizationCodeFlow
from social.graze.quota.github.device_flow import DeviceAuthorizationFlow
from social.graze.quota.github.probe import ApiProbe
from social.graze.quota.model.credentials import ClientRegistration
from social.graze.quota.model.quota import QuotaSnapshot, SessionResult
from social.graze.quota.timing import Pacer

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    complete = "complete"
    partial = "partial"
    empty = "empty"

    @property
    def exit_code(self) -> int:
        return {
            RunStatus.complete: 0,
            RunStatus.empty: 1,
            RunStatus.partial: 2,
        }[self]


@dataclass
class RunReport:
    status: RunStatus
    results: List[SessionResult] = field(default_factory=list)
    written: bool = False

    @property
    def snapshot_count(self) -> int:
        return sum(len(result.snapshots) for result in self.results)


def collect_snapshots(results: Sequence[SessionResult]) -> List[QuotaSnapshot]:
    """Snapshots of successful results, in credential order then response order."""
    return [
        snapshot
        for result in results
        if result.succeeded
        for snapshot in result.snapshots
    ]


def persist_results(results: Sequence[SessionResult], sink: QuotaSink) -> RunReport:
    """
    Hand the run's snapshots to the sink, at most once.

    Returns:
        RunReport: Status of the run and whether the sink was written
    """
    successes = [result for result in results if result.succeeded]

    if not successes:
        logger.warning("No data to display. No application was processed successfully.")
        return RunReport(status=RunStatus.empty, results=list(results))

    sink.write(collect_snapshots(results))

    if len(successes) < len(results):
        failed = [result.app_name for result in results if not result.succeeded]
        logger.warning(
            "Partial run: %d of %d application(s) failed (%s)",
            len(failed),
            len(results),
            ", ".join(failed),
        )
        return RunReport(status=RunStatus.partial, results=list(results), written=True)

    return RunReport(status=RunStatus.complete, results=list(results), written=True)


def create_trace_config(debug: bool) -> aiohttp.TraceConfig:
    trace_config = aiohttp.TraceConfig()

    if debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logger.debug("Starting request: %s %s", params.method, params.url)

        async def on_request_end(
            session, trace_config_ctx, params: aiohttp.TraceRequestEndParams
        ):
            logger.debug(
                "Ending request: %s %s %s",
                params.method,
                params.url,
                params.response.status,
            )

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    return trace_config


def install_cancel_handler(pacer: Pacer) -> Callable[[], None]:
    """
    Route SIGINT to the pacer so waiting flows stop cooperatively.

    Returns:
        A callable removing the handler. On platforms without loop signal handlers the
        default KeyboardInterrupt behaviour is kept.
    """
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, pacer.cancel)
    except (NotImplementedError, RuntimeError):
        return lambda: None
    return lambda: loop.remove_signal_handler(signal.SIGINT)


async def run_quota_check(
    settings: Settings,
    registrations: Sequence[ClientRegistration],
    sink: QuotaSink,
    metrics_client: Optional[MetricsClient] = None,
    pacer: Optional[Pacer] = None,
    prompt: Callable[[str], None] = print,
    handle_signals: bool = False,
) -> RunReport:
    """
    Run a full quota check for the given registrations and persist the snapshots.

    Args:
        settings: Run settings
        registrations: Credentials paired with their flow, processed in order
        sink: Destination of the snapshots, written at most once
        metrics_client: Metrics client, created from settings when omitted
        pacer: Pacer shared by both flows, a real-time pacer when omitted
        prompt: Callable showing authorization instructions to the operator
        handle_signals: Install a SIGINT handler that cancels waiting flows

    Returns:
        RunReport: Status of the run
    """
    owns_metrics_client = metrics_client is None
    if metrics_client is None:
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            prefix=settings.statsd_prefix,
            debug=settings.debug,
        )
        await metrics_client.connect()

    pacer = pacer or Pacer()
    remove_cancel_handler = install_cancel_handler(pacer) if handle_signals else None

    try:
        async with aiohttp.ClientSession(
            trace_configs=[create_trace_config(settings.debug)],
            timeout=aiohttp.ClientTimeout(total=settings.request_timeout),
        ) as http_session:
            client = ChainMiddlewareClient(
                client_session=http_session,
                middleware=[
                    StatsdMiddleware(metrics_client),
                    StaticHeadersMiddleware({"User-Agent": settings.user_agent}),
                ],
            )

            async with CallbackListener(settings, metrics_client) as listener:
                orchestrator = SessionOrchestrator(
                    settings,
                    probe=ApiProbe(settings, client),
                    pacer=pacer,
                    code_flow=AuthorizationCodeFlow(
                        settings, client, listener, pacer, prompt
                    ),
                    device_flow=DeviceAuthorizationFlow(settings, client, pacer, prompt),
                    metrics_client=metrics_client,
                )
                results = await orchestrator.run(registrations)
    finally:
        if remove_cancel_handler is not None:
            remove_cancel_handler()
        if owns_metrics_client:
            await metrics_client.close()

    return persist_results(results, sink)
