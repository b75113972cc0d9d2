"""
Device Authorization Flow

This module implements the OAuth 2.0 device authorization grant (RFC 8628) for unattended
clients. The operator enters a short user code on another device while this process polls the
token endpoint.

Session states:
    REQUESTED -> POLLING -> AUTHORIZED | EXPIRED | FAILED

Each poll answer is classified into a PollOutcome and applied to the session by
apply_poll_outcome, a plain step function:
- Pending: keep polling at the current interval
- SlowDown: keep polling, with the interval raised by slow_down_increment for every later wait
- Granted: terminal, the session is authorized
- Rejected: terminal, the server answered with any other error code
- Malformed: terminal, the answer was not form encoded or carried neither token nor error

Polling is bounded by a local deadline (device_poll_deadline, 900 seconds by default) fixed at
the first poll, independent of the expires_in value the server announces.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable, Dict, Optional, Union

from pydantic import SecretStr

from social.graze.quota.app.config import DEVICE_GRANT_TYPE, Settings
from social.graze.quota.errors import (
    AuthorizationDenied,
    AuthorizationTimeout,
    NetworkError,
    ProtocolError,
    QuotaCheckError,
)
from social.graze.quota.github.chain import ChainMiddlewareClient, ChainResponse
from social.graze.quota.model.credentials import Credential
from social.graze.quota.model.session import (
    AuthorizationSession,
    BearerToken,
    FlowKind,
    SessionStatus,
)
from social.graze.quota.timing import Pacer

logger = logging.getLogger(__name__)

Prompt = Callable[[str], None]

DEFAULT_POLL_INTERVAL = 5
DEFAULT_EXPIRES_IN = 900


@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class SlowDown:
    pass


@dataclass(frozen=True)
class Granted:
    token: BearerToken


@dataclass(frozen=True)
class Rejected:
    error: str
    description: Optional[str] = None


@dataclass(frozen=True)
class Malformed:
    reason: str


PollOutcome = Union[Pending, SlowDown, Granted, Rejected, Malformed]


def classify_poll_response(
    chain_response: ChainResponse, default_scope: str = "read:user"
) -> PollOutcome:
    if not chain_response.is_form or not isinstance(chain_response.body, dict):
        return Malformed(
            f"Unexpected token response content type: {chain_response.content_type!r}"
        )

    fields: Dict[str, Any] = chain_response.body

    access_token = fields.get("access_token")
    if access_token:
        return Granted(
            BearerToken(
                value=SecretStr(access_token),
                scope=fields.get("scope") or default_scope,
                token_type=fields.get("token_type") or "bearer",
            )
        )

    error = fields.get("error")
    if error == "authorization_pending":
        return Pending()
    if error == "slow_down":
        return SlowDown()
    if error:
        return Rejected(error, fields.get("error_description"))

    return Malformed("Token response carried neither access_token nor error")


def apply_poll_outcome(
    session: AuthorizationSession, outcome: PollOutcome, slow_down_increment: int
) -> SessionStatus:
    """
    Apply one poll outcome to a polling session.

    Returns:
        SessionStatus: The session's status after the step
    """
    session.poll_count += 1

    if isinstance(outcome, Pending):
        return session.status

    if isinstance(outcome, SlowDown):
        session.interval += slow_down_increment
        logger.info(
            "Session %s asked to slow down, polling every %d seconds",
            session.session_id,
            session.interval,
        )
        return session.status

    if isinstance(outcome, Granted):
        session.finish(SessionStatus.authorized)
    elif isinstance(outcome, Rejected):
        session.finish(SessionStatus.failed, outcome.error)
    else:
        session.finish(SessionStatus.failed, outcome.reason)
    return session.status


def _parse_int(fields: Dict[str, Any], key: str, default: int) -> int:
    value = fields.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Device code response has invalid {key}: {value!r}") from e


class DeviceAuthorizationFlow:
    def __init__(
        self,
        settings: Settings,
        client: ChainMiddlewareClient,
        pacer: Pacer,
        prompt: Prompt = print,
    ) -> None:
        self._settings = settings
        self._client = client
        self._pacer = pacer
        self._prompt = prompt

    async def begin(self, credential: Credential) -> AuthorizationSession:
        """
        Request a device code and user code for a credential.

        Returns:
            AuthorizationSession: Session in the REQUESTED state

        Raises:
            NetworkError: If the request fails
            ProtocolError: If the answer is not form encoded or lacks a required field
        """
        data = {"client_id": credential.client_id, "scope": self._settings.scope}
        async with self._client.post(
            self._settings.device_code_url, data=data, raise_for_status=True
        ) as (_, chain_response):
            if not chain_response.is_form or not isinstance(chain_response.body, dict):
                raise ProtocolError(
                    "Unexpected device code response content type: "
                    f"{chain_response.content_type!r}"
                )
            fields: Dict[str, Any] = chain_response.body

        if fields.get("error"):
            raise AuthorizationDenied(fields["error"], fields.get("error_description"))

        for required in ("device_code", "user_code", "verification_uri"):
            if not fields.get(required):
                raise ProtocolError(f"Device code response has no {required}")

        expires_in = _parse_int(fields, "expires_in", DEFAULT_EXPIRES_IN)
        session = AuthorizationSession(
            kind=FlowKind.device,
            client_id=credential.client_id,
            app_name=credential.app_name,
            device_code=fields["device_code"],
            user_code=fields["user_code"],
            verification_uri=fields["verification_uri"],
            interval=_parse_int(fields, "interval", DEFAULT_POLL_INTERVAL),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

        logger.info(
            "Session %s issued user code for %s, expires at %s",
            session.session_id,
            credential.app_name,
            session.expires_at.isoformat(),
        )
        self._prompt(
            f"To authorize {credential.app_name}, visit {session.verification_uri} "
            f"and enter the code {session.user_code}"
        )
        return session

    async def poll(self, session: AuthorizationSession) -> PollOutcome:
        data = {
            "client_id": session.client_id,
            "device_code": session.device_code,
            "grant_type": DEVICE_GRANT_TYPE,
        }
        async with self._client.post(
            self._settings.token_url, data=data, raise_for_status=False
        ) as (_, chain_response):
            # Error answers may come with a 4xx status; only a bare failure is fatal here.
            carries_error = chain_response.is_form and bool(
                chain_response.as_query().get("error")
            )
            if not chain_response.ok and not carries_error:
                raise NetworkError(
                    f"POST {self._settings.token_url} returned HTTP {chain_response.status}",
                    status=chain_response.status,
                )
            return classify_poll_response(chain_response, self._settings.scope)

    async def await_token(self, session: AuthorizationSession) -> BearerToken:
        """
        Poll the token endpoint until the session reaches a terminal state.

        Raises:
            AuthorizationDenied: If the server answers with a terminal error code
            ProtocolError: If an answer is malformed
            AuthorizationTimeout: If device_poll_deadline passes first
            NetworkError: If a poll request fails
            AuthorizationCancelled: If the run is cancelled
        """
        if session.device_code is None:
            raise ValueError("Session was not started by this flow")

        try:
            await self._pacer.sleep(self._settings.device_warmup)
            session.advance(SessionStatus.polling)
            session.deadline = self._pacer.deadline(self._settings.device_poll_deadline)

            while True:
                outcome = await self.poll(session)
                apply_poll_outcome(session, outcome, self._settings.slow_down_increment)

                if isinstance(outcome, Granted):
                    logger.info(
                        "Session %s authorized after %d poll(s)",
                        session.session_id,
                        session.poll_count,
                    )
                    return outcome.token
                if isinstance(outcome, Rejected):
                    raise AuthorizationDenied(outcome.error, outcome.description)
                if isinstance(outcome, Malformed):
                    raise ProtocolError(outcome.reason)

                if session.deadline.expired():
                    session.finish(SessionStatus.expired, "polling deadline exceeded")
                    raise AuthorizationTimeout(
                        f"Device authorization for {session.app_name} not completed "
                        f"within {self._settings.device_poll_deadline:g} seconds"
                    )

                await self._pacer.sleep(session.deadline.clip(session.interval))
        except QuotaCheckError as e:
            if not session.status.terminal:
                session.finish(SessionStatus.failed, str(e))
            raise

    def release(self, session: AuthorizationSession) -> None:
        """Device sessions hold no shared state."""
        pass
