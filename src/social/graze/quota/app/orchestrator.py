"""
Session Orchestration

The orchestrator processes client applications strictly one after another. For each one it
runs the flow selected when the credentials were loaded, spends quota with the probe, reads
the quota document and normalizes it into snapshots.

Failures are isolated per application: any QuotaCheckError (or stray aiohttp ClientError)
raised while processing one application is logged, reported to Sentry and recorded as a
failed SessionResult, and the run moves on. The flow's release() always runs before the next
application starts, so nothing from one authorization session can reach the next.
"""

from datetime import datetime, timezone
import logging
from time import time
from typing import Callable, Iterable, List, Optional, Tuple, Union

from aiohttp import ClientError
import sentry_sdk

from social.graze.quota.app.config import Settings
from social.graze.quota.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.quota.errors import QuotaCheckError
from social.graze.quota.github.code_flow import AuthorizationCodeFlow
from social.graze.quota.github.device_flow import DeviceAuthorizationFlow
from social.graze.quota.github.probe import ApiProbe
from social.graze.quota.model.credentials import ClientRegistration, CodeFlow
from social.graze.quota.model.quota import SessionResult, build_snapshots
from social.graze.quota.model.session import AuthorizationSession
from social.graze.quota.timing import Pacer

logger = logging.getLogger(__name__)

Flow = Union[AuthorizationCodeFlow, DeviceAuthorizationFlow]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionOrchestrator:
    def __init__(
        self,
        settings: Settings,
        probe: ApiProbe,
        pacer: Pacer,
        code_flow: Optional[AuthorizationCodeFlow] = None,
        device_flow: Optional[DeviceAuthorizationFlow] = None,
        metrics_client: Optional[MetricsClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._probe = probe
        self._pacer = pacer
        self._code_flow = code_flow
        self._device_flow = device_flow
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._clock = clock

    async def run(
        self, registrations: Iterable[ClientRegistration]
    ) -> List[SessionResult]:
        """
        Process every registration in order.

        Returns:
            List[SessionResult]: One result per processed registration, in input order.
            When the run is cancelled, registrations after the interrupted one are skipped.
        """
        results: List[SessionResult] = []
        for registration in registrations:
            results.append(await self.process(registration))
            if self._pacer.cancelled:
                logger.warning("Run cancelled, remaining applications are skipped")
                break
        return results

    async def _begin(
        self, registration: ClientRegistration
    ) -> Tuple[Flow, AuthorizationSession]:
        credential = registration.credential
        if isinstance(registration.flow, CodeFlow):
            if self._code_flow is None:
                raise QuotaCheckError("Authorization code flow is not configured")
            session = await self._code_flow.begin(
                credential, registration.flow.client_secret
            )
            return self._code_flow, session

        if self._device_flow is None:
            raise QuotaCheckError("Device authorization flow is not configured")
        session = await self._device_flow.begin(credential)
        return self._device_flow, session

    async def process(self, registration: ClientRegistration) -> SessionResult:
        credential = registration.credential
        app_name = credential.app_name
        tags = {"app": app_name, "flow": registration.flow.kind}

        flow: Optional[Flow] = None
        session: Optional[AuthorizationSession] = None
        start_time = time()
        try:
            self._pacer.check()
            flow, session = await self._begin(registration)
            token = await flow.await_token(session)

            logger.info("Making API requests for %s...", app_name)
            for _ in range(self._settings.probe_count):
                await self._probe.probe(token)

            logger.info("Fetching rate limit for %s...", app_name)
            raw_quota = await self._probe.get_quota(token)
            snapshots = build_snapshots(app_name, raw_quota, self._clock())
        except (QuotaCheckError, ClientError) as e:
            logger.error(
                "Error fetching data for %s: %s", app_name, e, exc_info=True
            )
            sentry_sdk.capture_exception(e)
            self._metrics_client.increment(
                "session.failure", 1, tag_dict={**tags, "error": type(e).__name__}
            )
            return SessionResult(
                credential=credential, failure=f"{type(e).__name__}: {e}"
            )
        finally:
            if flow is not None and session is not None:
                flow.release(session)
            self._metrics_client.timer("session.time", time() - start_time, tags)

        self._metrics_client.increment("session.success", 1, tag_dict=tags)
        for snapshot in snapshots:
            self._metrics_client.gauge(
                "quota.remaining",
                snapshot.remaining,
                tag_dict={"app": app_name, "resource": snapshot.resource_name},
            )

        logger.info("Recorded %d quota snapshot(s) for %s", len(snapshots), app_name)
        return SessionResult(credential=credential, snapshots=snapshots)
