"""
Tests for the device authorization flow.

The flow runs against the scripted provider with a FakePacer, so the recorded waits show
exactly how the flow paces its polls without any real sleeping.
"""

from datetime import datetime, timezone

import pytest
from multidict import CIMultiDict, CIMultiDictProxy

from social.graze.quota.app.config import DEVICE_GRANT_TYPE, FORM_CONTENT_TYPE
from social.graze.quota.errors import (
    AuthorizationCancelled,
    AuthorizationDenied,
    AuthorizationTimeout,
    NetworkError,
    ProtocolError,
)
from social.graze.quota.github.chain import ChainResponse
from social.graze.quota.github.device_flow import (
    DeviceAuthorizationFlow,
    Granted,
    Malformed,
    Pending,
    Rejected,
    SlowDown,
    apply_poll_outcome,
    classify_poll_response,
)
from social.graze.quota.model.session import (
    AuthorizationSession,
    BearerToken,
    FlowKind,
    SessionStatus,
)
from tests.helpers import as_json, form


def form_response(body: dict, status: int = 200) -> ChainResponse:
    return ChainResponse(
        status=status,
        headers=CIMultiDictProxy(CIMultiDict({"Content-Type": FORM_CONTENT_TYPE})),
        body=body,
    )


def polling_session(interval: int = 5) -> AuthorizationSession:
    return AuthorizationSession(
        kind=FlowKind.device,
        client_id="client-b",
        app_name="App B",
        device_code="dev-123",
        interval=interval,
        status=SessionStatus.polling,
    )


@pytest.fixture
def device_flow(settings, chain_client, pacer, prompts):
    return DeviceAuthorizationFlow(settings, chain_client, pacer, prompts.append)


class TestClassifyPollResponse:
    def test_granted(self):
        outcome = classify_poll_response(
            form_response({"access_token": "gho_abc", "token_type": "bearer"})
        )

        assert isinstance(outcome, Granted)
        assert outcome.token.value.get_secret_value() == "gho_abc"
        assert outcome.token.scope == "read:user"

    @pytest.mark.parametrize(
        "error,expected",
        [("authorization_pending", Pending()), ("slow_down", SlowDown())],
    )
    def test_keep_polling(self, error, expected):
        assert classify_poll_response(form_response({"error": error})) == expected

    @pytest.mark.parametrize(
        "error", ["expired_token", "access_denied", "unsupported_grant_type"]
    )
    def test_rejected(self, error):
        outcome = classify_poll_response(
            form_response({"error": error, "error_description": "nope"})
        )

        assert outcome == Rejected(error, "nope")

    def test_json_is_malformed(self):
        response = ChainResponse(
            status=200,
            headers=CIMultiDictProxy(CIMultiDict({"Content-Type": "application/json"})),
            body={"access_token": "gho_abc"},
        )

        assert isinstance(classify_poll_response(response), Malformed)

    def test_empty_form_is_malformed(self):
        assert isinstance(classify_poll_response(form_response({})), Malformed)


class TestApplyPollOutcome:
    def test_pending(self):
        session = polling_session()

        status = apply_poll_outcome(session, Pending(), 5)

        assert status is SessionStatus.polling
        assert session.poll_count == 1
        assert session.interval == 5

    def test_slow_down_accumulates(self):
        session = polling_session(interval=5)

        apply_poll_outcome(session, SlowDown(), 5)
        apply_poll_outcome(session, SlowDown(), 5)

        assert session.interval == 15
        assert session.status is SessionStatus.polling

    def test_granted(self):
        session = polling_session()
        token = BearerToken(value="gho_abc")

        assert apply_poll_outcome(session, Granted(token), 5) is SessionStatus.authorized

    def test_rejected(self):
        session = polling_session()

        status = apply_poll_outcome(session, Rejected("expired_token"), 5)

        assert status is SessionStatus.failed
        assert session.failure == "expired_token"

    def test_terminal_session_cannot_step(self):
        session = polling_session()
        apply_poll_outcome(session, Rejected("access_denied"), 5)

        with pytest.raises(RuntimeError):
            apply_poll_outcome(session, Granted(BearerToken(value="x")), 5)


class TestDeviceFlowBegin:
    @pytest.mark.asyncio
    async def test_begin(self, device_flow, provider, public_credential, prompts):
        session = await device_flow.begin(public_credential)

        assert session.kind is FlowKind.device
        assert session.status is SessionStatus.requested
        assert session.device_code == "dev-123"
        assert session.user_code == "ABCD-1234"
        assert session.verification_uri == "https://github.com/login/device"
        assert session.interval == 5
        assert session.expires_at > datetime.now(timezone.utc)
        assert provider.device_code_requests == [
            {"client_id": "client-b", "scope": "read:user"}
        ]
        assert prompts == [
            "To authorize App B, visit https://github.com/login/device "
            "and enter the code ABCD-1234"
        ]

    @pytest.mark.asyncio
    async def test_defaults_when_interval_missing(
        self, device_flow, provider, public_credential
    ):
        provider.device_code_response = form(
            "device_code=d&user_code=U&verification_uri=https%3A%2F%2Fexample.test"
        )

        session = await device_flow.begin(public_credential)

        assert session.interval == 5

    @pytest.mark.asyncio
    async def test_json_answer_is_protocol_error(
        self, device_flow, provider, public_credential
    ):
        provider.device_code_response = as_json({"device_code": "d"})

        with pytest.raises(ProtocolError, match="content type"):
            await device_flow.begin(public_credential)

    @pytest.mark.asyncio
    async def test_missing_user_code(self, device_flow, provider, public_credential):
        provider.device_code_response = form(
            "device_code=d&verification_uri=https%3A%2F%2Fexample.test"
        )

        with pytest.raises(ProtocolError, match="user_code"):
            await device_flow.begin(public_credential)

    @pytest.mark.asyncio
    async def test_error_answer(self, device_flow, provider, public_credential):
        provider.device_code_response = form(
            "error=device_flow_disabled&error_description=Device+flow+must+be+enabled"
        )

        with pytest.raises(AuthorizationDenied) as exc_info:
            await device_flow.begin(public_credential)

        assert exc_info.value.error == "device_flow_disabled"

    @pytest.mark.asyncio
    async def test_http_failure(self, device_flow, provider, public_credential):
        provider.device_code_response = form("", status=500)

        with pytest.raises(NetworkError) as exc_info:
            await device_flow.begin(public_credential)

        assert exc_info.value.status == 500


class TestDeviceFlowPolling:
    @pytest.mark.asyncio
    async def test_pending_pending_slow_down_success(
        self, device_flow, provider, pacer, public_credential
    ):
        provider.token_script = [
            form("error=authorization_pending"),
            form("error=authorization_pending"),
            form("error=slow_down"),
            form("access_token=gho_device&token_type=bearer&scope=read%3Auser"),
        ]
        session = await device_flow.begin(public_credential)

        token = await device_flow.await_token(session)

        assert token.value.get_secret_value() == "gho_device"
        assert len(provider.token_requests) == 4
        assert session.poll_count == 4
        assert session.status is SessionStatus.authorized
        # warm-up, then the announced interval, raised by 5 after slow_down
        assert pacer.waits == [5.0, 5, 5, 10]

    @pytest.mark.asyncio
    async def test_poll_request_fields(
        self, device_flow, provider, public_credential
    ):
        provider.token_script = [form("access_token=gho_device")]
        session = await device_flow.begin(public_credential)

        await device_flow.await_token(session)

        assert provider.token_requests == [
            {
                "client_id": "client-b",
                "device_code": "dev-123",
                "grant_type": DEVICE_GRANT_TYPE,
            }
        ]

    @pytest.mark.asyncio
    async def test_always_pending_expires(
        self, device_flow, provider, pacer, public_credential, settings
    ):
        session = await device_flow.begin(public_credential)
        first_poll_at = pacer.now() + settings.device_warmup

        with pytest.raises(AuthorizationTimeout):
            await device_flow.await_token(session)

        assert session.status is SessionStatus.expired
        elapsed = pacer.now() - first_poll_at
        assert elapsed <= settings.device_poll_deadline + session.interval
        assert elapsed >= settings.device_poll_deadline
        # one poll every 5 seconds from 0 through 900 inclusive
        assert len(provider.token_requests) == 181

    @pytest.mark.asyncio
    async def test_slow_down_is_clipped_by_deadline(
        self, make_settings, chain_client, pacer, provider, public_credential
    ):
        settings = make_settings(device_poll_deadline=12.0)
        flow = DeviceAuthorizationFlow(settings, chain_client, pacer, lambda _: None)
        provider.default_token_response = form("error=slow_down")
        session = await flow.begin(public_credential)

        with pytest.raises(AuthorizationTimeout):
            await flow.await_token(session)

        # intervals grow to 10 and 15, the last wait ends at the deadline
        assert pacer.waits == [5.0, 10, 2.0]
        assert len(provider.token_requests) == 3

    @pytest.mark.asyncio
    async def test_rejected(self, device_flow, provider, public_credential):
        provider.token_script = [
            form("error=authorization_pending"),
            form("error=access_denied&error_description=The+user+denied+access"),
        ]
        session = await device_flow.begin(public_credential)

        with pytest.raises(AuthorizationDenied) as exc_info:
            await device_flow.await_token(session)

        assert exc_info.value.error == "access_denied"
        assert exc_info.value.description == "The user denied access"
        assert session.status is SessionStatus.failed
        assert len(provider.token_requests) == 2

    @pytest.mark.asyncio
    async def test_error_with_client_error_status(
        self, device_flow, provider, public_credential
    ):
        provider.token_script = [form("error=expired_token", status=400)]
        session = await device_flow.begin(public_credential)

        with pytest.raises(AuthorizationDenied):
            await device_flow.await_token(session)

    @pytest.mark.asyncio
    async def test_malformed(self, device_flow, provider, public_credential):
        provider.token_script = [as_json({"access_token": "gho_json"})]
        session = await device_flow.begin(public_credential)

        with pytest.raises(ProtocolError):
            await device_flow.await_token(session)

        assert session.status is SessionStatus.failed

    @pytest.mark.asyncio
    async def test_server_error(self, device_flow, provider, public_credential):
        provider.token_script = [form("", status=502)]
        session = await device_flow.begin(public_credential)

        with pytest.raises(NetworkError):
            await device_flow.await_token(session)

        assert session.status is SessionStatus.failed

    @pytest.mark.asyncio
    async def test_cancelled(self, device_flow, provider, pacer, public_credential):
        session = await device_flow.begin(public_credential)
        pacer.cancel()

        with pytest.raises(AuthorizationCancelled):
            await device_flow.await_token(session)

        assert session.status is SessionStatus.failed
        assert provider.token_requests == []
