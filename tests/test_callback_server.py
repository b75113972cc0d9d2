"""
Tests for the embedded callback listener's handlers and middleware.
"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from social.graze.quota.app.config import Settings
from social.graze.quota.app.server import CallbackListener, create_callback_app
from social.graze.quota.rendezvous import CallbackChannel, CallbackState
from tests.helpers import RecordingMetricsClient


@pytest.fixture
def callback_state():
    return CallbackState()


@pytest_asyncio.fixture
async def listener_client(callback_state, metrics_client):
    settings = Settings(redirect_uri="http://localhost:5000/oauth/callback")
    app = create_callback_app(settings, callback_state, metrics_client)
    async with TestClient(TestServer(app)) as client:
        yield client


class TestIndex:
    @pytest.mark.asyncio
    async def test_no_session(self, listener_client):
        response = await listener_client.get("/")

        assert response.status == 200
        assert await response.text() == "No authorization is in progress."

    @pytest.mark.asyncio
    async def test_shows_authorization_url(self, listener_client, callback_state):
        callback_state.attach(CallbackChannel(), "https://github.com/login/oauth/authorize?x=1")

        response = await listener_client.get("/")

        assert "https://github.com/login/oauth/authorize?x=1" in await response.text()


class TestCallback:
    @pytest.mark.asyncio
    async def test_route_follows_redirect_uri(self, listener_client):
        response = await listener_client.get("/callback", params={"code": "abc"})

        assert response.status == 404

    @pytest.mark.asyncio
    async def test_accepted(self, listener_client, callback_state):
        channel = CallbackChannel("s1")
        callback_state.attach(channel, "https://example.test")

        response = await listener_client.get(
            "/oauth/callback", params={"code": "abc", "state": "s1"}
        )

        assert response.status == 200
        assert await response.text() == "Authorization successful! You can close this window."
        assert channel.take() == "abc"

    @pytest.mark.asyncio
    async def test_duplicate(self, listener_client, callback_state):
        channel = CallbackChannel()
        callback_state.attach(channel, "https://example.test")

        await listener_client.get("/oauth/callback", params={"code": "first"})
        response = await listener_client.get("/oauth/callback", params={"code": "second"})

        assert response.status == 200
        assert "already received" in await response.text()
        assert channel.take() == "first"

    @pytest.mark.asyncio
    async def test_no_session(self, listener_client):
        response = await listener_client.get("/oauth/callback", params={"code": "abc"})

        assert response.status == 409

    @pytest.mark.asyncio
    async def test_missing_code(self, listener_client, callback_state):
        callback_state.attach(CallbackChannel(), "https://example.test")

        response = await listener_client.get("/oauth/callback")

        assert response.status == 400
        assert await response.text() == "Missing authorization code."

    @pytest.mark.asyncio
    async def test_error(self, listener_client, callback_state):
        channel = CallbackChannel("s1")
        callback_state.attach(channel, "https://example.test")

        response = await listener_client.get(
            "/oauth/callback", params={"error": "access_denied", "state": "s1"}
        )

        assert response.status == 400
        assert "access_denied" in await response.text()
        assert channel.filled

    @pytest.mark.asyncio
    async def test_request_metrics(self, listener_client, metrics_client):
        await listener_client.get("/oauth/callback", params={"code": "abc"})

        (tags,) = metrics_client.counted("server.request.count")
        assert tags == {"path": "/oauth/callback", "method": "GET", "status": 409}


class TestCallbackListener:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, callback_port):
        settings = Settings(redirect_uri=f"http://127.0.0.1:{callback_port}/callback")

        async with CallbackListener(settings, RecordingMetricsClient()) as listener:
            await listener.start()
            await listener.start()
            assert listener.running

        assert not listener.running
