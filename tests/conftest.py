"""
Shared test configuration and fixtures for quota check tests.

Every network-facing test runs against the ScriptedProvider from tests.helpers, served on an
ephemeral local port, with flows paced by a FakePacer so no test waits in real time.
"""

from typing import Any, Dict

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer, unused_port

from social.graze.quota.app.config import Settings
from social.graze.quota.github.chain import (
    ChainMiddlewareClient,
    StaticHeadersMiddleware,
)
from social.graze.quota.model.credentials import Credential
from tests.helpers import FakePacer, RecordingMetricsClient, ScriptedProvider


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest_asyncio.fixture
async def provider_server(provider):
    server = TestServer(provider.create_app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def callback_port():
    return unused_port()


@pytest_asyncio.fixture
async def make_settings(provider_server, callback_port):
    """Build settings against the scripted provider, with per-test overrides."""

    def _make_settings(**overrides) -> Settings:
        values: Dict[str, Any] = {
            "authorize_url": str(provider_server.make_url("/login/oauth/authorize")),
            "device_code_url": str(provider_server.make_url("/login/device/code")),
            "token_url": str(provider_server.make_url("/login/oauth/access_token")),
            "probe_url": str(provider_server.make_url("/user")),
            "quota_url": str(provider_server.make_url("/rate_limit")),
            "redirect_uri": f"http://127.0.0.1:{callback_port}/callback",
            "callback_poll_interval": 0.01,
            "probe_count": 2,
            "metrics_backend": "none",
            "sentry_dsn": None,
        }
        values.update(overrides)
        return Settings(**values)

    return _make_settings


@pytest_asyncio.fixture
async def settings(make_settings):
    return make_settings()


@pytest_asyncio.fixture
async def http_session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest_asyncio.fixture
async def chain_client(http_session, settings):
    return ChainMiddlewareClient(
        client_session=http_session,
        middleware=[StaticHeadersMiddleware({"User-Agent": settings.user_agent})],
    )


@pytest.fixture
def pacer():
    return FakePacer()


@pytest.fixture
def metrics_client():
    return RecordingMetricsClient()


@pytest.fixture
def prompts():
    return []


@pytest.fixture
def credential():
    return Credential(client_id="client-a", client_secret="secret-a", app_name="App A")


@pytest.fixture
def public_credential():
    return Credential(client_id="client-b", app_name="App B")
