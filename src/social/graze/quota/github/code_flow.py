"""
Authorization Code Flow

This module implements the interactive OAuth 2.0 authorization code grant (RFC 6749 section
4.1) for one client application at a time.

The flow is implemented in three stages:
1. Begin (`begin`): Issue a state value, build the authorization URL, attach a fresh
   CallbackChannel to the embedded listener and show the URL to the operator
2. Wait (`await_token`): Check the channel at a fixed cadence until the browser redirect
   delivers a code, then exchange the code at the token endpoint
3. Release (`release`): Detach the channel so nothing published later can reach another
   session

Only one session may be attached to the listener at a time, so applications are processed
strictly one after the other. The wait is unbounded unless code_flow_timeout is configured.
"""

import logging
import secrets
from typing import Callable, Optional
from urllib.parse import urlencode

from pydantic import SecretStr

from social.graze.quota.app.config import Settings
from social.graze.quota.app.server import CallbackListener
from social.graze.quota.errors import (
    AuthorizationDenied,
    AuthorizationTimeout,
    NetworkError,
    ProtocolError,
    QuotaCheckError,
)
from social.graze.quota.github.chain import ChainMiddlewareClient
from social.graze.quota.model.credentials import Credential
from social.graze.quota.model.session import (
    AuthorizationSession,
    BearerToken,
    FlowKind,
    SessionStatus,
)
from social.graze.quota.rendezvous import CallbackChannel
from social.graze.quota.timing import Pacer

logger = logging.getLogger(__name__)

Prompt = Callable[[str], None]


class AuthorizationCodeFlow:
    def __init__(
        self,
        settings: Settings,
        client: ChainMiddlewareClient,
        listener: CallbackListener,
        pacer: Pacer,
        prompt: Prompt = print,
    ) -> None:
        self._settings = settings
        self._client = client
        self._listener = listener
        self._pacer = pacer
        self._prompt = prompt
        self._secrets: dict[str, SecretStr] = {}

    def authorization_url(self, client_id: str, state: str) -> str:
        query = urlencode(
            {
                "client_id": client_id,
                "redirect_uri": self._settings.redirect_uri,
                "scope": self._settings.scope,
                "state": state,
            }
        )
        return f"{self._settings.authorize_url}?{query}"

    async def begin(
        self, credential: Credential, client_secret: Optional[SecretStr] = None
    ) -> AuthorizationSession:
        """
        Start an authorization code session for a credential.

        Args:
            credential: The client application to authorize
            client_secret: Secret used for the exchange, defaults to the credential's own

        Returns:
            AuthorizationSession: Session waiting for the browser redirect

        Raises:
            QuotaCheckError: If no secret is available
            NetworkError: If the callback listener cannot be started
        """
        secret = client_secret or credential.client_secret
        if secret is None:
            raise QuotaCheckError(
                f"No client secret available for {credential.app_name}"
            )

        try:
            await self._listener.start()
        except OSError as e:
            raise NetworkError(
                f"Unable to start callback listener on "
                f"{self._settings.callback_host}:{self._settings.callback_port}: {e}"
            ) from e

        state = secrets.token_urlsafe(32)
        authorization_url = self.authorization_url(credential.client_id, state)
        session = AuthorizationSession(
            kind=FlowKind.code,
            client_id=credential.client_id,
            app_name=credential.app_name,
            state=state,
            authorization_url=authorization_url,
            channel=CallbackChannel(state),
            deadline=self._pacer.deadline(self._settings.code_flow_timeout),
        )
        self._secrets[session.session_id] = secret

        self._listener.state.attach(session.channel, authorization_url)
        session.advance(SessionStatus.awaiting_callback)

        logger.info(
            "Session %s waiting for authorization of %s",
            session.session_id,
            credential.app_name,
        )
        try:
            self._prompt(
                f"Please visit the following URL to authorize {credential.app_name}: "
                f"{authorization_url}"
            )
        except Exception as e:
            # the caller never sees this session, so it cannot release it
            session.finish(SessionStatus.failed, str(e))
            self.release(session)
            raise
        return session

    async def await_token(self, session: AuthorizationSession) -> BearerToken:
        """
        Wait for the redirect and exchange the delivered code for a token.

        A code delivered between begin() and this call is picked up on the first check.

        Raises:
            AuthorizationTimeout: If code_flow_timeout passes without a redirect
            AuthorizationDenied: If the redirect or the token endpoint reports an error
            ProtocolError: If the token response carries no access_token
            NetworkError: If the exchange request fails
        """
        if session.channel is None or session.deadline is None:
            raise ValueError("Session was not started by this flow")

        try:
            code = await session.channel.wait(
                self._pacer, self._settings.callback_poll_interval, session.deadline
            )
            token = await self.exchange_code(session, code)
        except AuthorizationTimeout as e:
            session.finish(SessionStatus.expired, str(e))
            raise
        except QuotaCheckError as e:
            session.finish(SessionStatus.failed, str(e))
            raise

        session.finish(SessionStatus.authorized)
        logger.info("Session %s authorized", session.session_id)
        return token

    async def exchange_code(
        self, session: AuthorizationSession, code: str
    ) -> BearerToken:
        secret = self._secrets.get(session.session_id)
        if secret is None:
            raise QuotaCheckError(f"Session {session.session_id} has no client secret")

        data = {
            "client_id": session.client_id,
            "client_secret": secret.get_secret_value(),
            "code": code,
            "redirect_uri": self._settings.redirect_uri,
        }
        async with self._client.post(
            self._settings.token_url, data=data, raise_for_status=True
        ) as (_, chain_response):
            fields = chain_response.as_query()

        access_token = fields.get("access_token")
        if not access_token:
            error = fields.get("error")
            if error:
                raise AuthorizationDenied(error, fields.get("error_description"))
            raise ProtocolError("Token response did not include an access_token")

        return BearerToken(
            value=SecretStr(access_token),
            scope=fields.get("scope") or self._settings.scope,
            token_type=fields.get("token_type") or "bearer",
        )

    def release(self, session: AuthorizationSession) -> None:
        """Detach the session's channel from the listener and forget its secret."""
        if session.channel is not None:
            self._listener.state.detach(session.channel)
        self._secrets.pop(session.session_id, None)
