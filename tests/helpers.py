"""
Common testing utilities for quota check tests.

Provides a pacer driven by a fake clock, a recording metrics client and a scripted
in-process stand-in for the OAuth provider and its REST API.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple, Union

from aiohttp import web

from social.graze.quota.app.config import FORM_CONTENT_TYPE
from social.graze.quota.app.metrics import MetricsClient
from social.graze.quota.timing import Pacer

ScriptedResponse = Tuple[int, str, str]
"""(status, content type, body) answered by the scripted provider"""


def form(body: str, status: int = 200) -> ScriptedResponse:
    return status, FORM_CONTENT_TYPE, body


def as_json(body: Any, status: int = 200) -> ScriptedResponse:
    return status, "application/json", json.dumps(body)


def quota_document(*resources: str, limit: int = 60, remaining: int = 50) -> Dict:
    return {
        "resources": {
            name: {"limit": limit, "remaining": remaining, "reset": 1700000000 + i}
            for i, name in enumerate(resources)
        },
        "rate": {"limit": limit, "remaining": remaining, "reset": 1700000000},
    }


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakePacer(Pacer):
    """Pacer whose waits advance a fake clock instead of sleeping."""

    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.clock = clock or FakeClock()
        super().__init__(clock=self.clock)
        self.waits: List[float] = []

    async def _wait(self, delay: float) -> None:
        self.waits.append(delay)
        self.clock.now += delay
        await asyncio.sleep(0)


class RecordingMetricsClient(MetricsClient):
    def __init__(self) -> None:
        self.increments: List[Tuple[str, Union[int, float], Dict[str, Any]]] = []
        self.gauges: List[Tuple[str, Union[int, float], Dict[str, Any]]] = []
        self.timers: List[Tuple[str, Union[int, float], Dict[str, Any]]] = []
        self.closed = False

    def increment(self, name, value=1, tag_dict=None) -> None:
        self.increments.append((name, value, tag_dict or {}))

    def gauge(self, name, value, tag_dict=None) -> None:
        self.gauges.append((name, value, tag_dict or {}))

    def timer(self, name, value, tag_dict=None) -> None:
        self.timers.append((name, value, tag_dict or {}))

    async def close(self) -> None:
        self.closed = True

    def counted(self, name: str) -> List[Dict[str, Any]]:
        return [tags for metric, _, tags in self.increments if metric == name]


class ScriptedProvider:
    """
    An in-process stand-in for the OAuth provider and its REST API.

    Token endpoint answers are taken from token_script in order; once the script is used
    up, default_token_response is answered. Every request is recorded.
    """

    def __init__(self) -> None:
        self.device_code_response: ScriptedResponse = form(
            "device_code=dev-123&user_code=ABCD-1234"
            "&verification_uri=https%3A%2F%2Fgithub.com%2Flogin%2Fdevice"
            "&expires_in=900&interval=5"
        )
        self.token_script: List[ScriptedResponse] = []
        self.default_token_response: ScriptedResponse = form(
            "error=authorization_pending"
        )
        self.probe_response: ScriptedResponse = as_json({"login": "octocat"})
        self.quota_response: ScriptedResponse = as_json(
            quota_document("core", "search", "graphql")
        )

        self.device_code_requests: List[Dict[str, str]] = []
        self.token_requests: List[Dict[str, str]] = []
        self.probe_requests: List[Dict[str, str]] = []
        self.quota_requests: List[Dict[str, str]] = []

    @staticmethod
    def _answer(scripted: ScriptedResponse) -> web.Response:
        status, content_type, body = scripted
        return web.Response(status=status, content_type=content_type, text=body)

    async def handle_device_code(self, request: web.Request) -> web.Response:
        self.device_code_requests.append(dict(await request.post()))
        return self._answer(self.device_code_response)

    async def handle_token(self, request: web.Request) -> web.Response:
        self.token_requests.append(dict(await request.post()))
        if self.token_script:
            return self._answer(self.token_script.pop(0))
        return self._answer(self.default_token_response)

    async def handle_probe(self, request: web.Request) -> web.Response:
        self.probe_requests.append(dict(request.headers))
        return self._answer(self.probe_response)

    async def handle_quota(self, request: web.Request) -> web.Response:
        self.quota_requests.append(dict(request.headers))
        return self._answer(self.quota_response)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.add_routes(
            [
                web.post("/login/device/code", self.handle_device_code),
                web.post("/login/oauth/access_token", self.handle_token),
                web.get("/user", self.handle_probe),
                web.get("/rate_limit", self.handle_quota),
            ]
        )
        return app
