"""Authenticated calls that consume and then inspect an application's quota."""

import logging
from typing import Any, Dict

from social.graze.quota.app.config import Settings
from social.graze.quota.errors import ProtocolError
from social.graze.quota.github.chain import (
    ChainMiddlewareClient,
    StaticHeadersMiddleware,
    TokenAuthorizationMiddleware,
)
from social.graze.quota.model.session import BearerToken

logger = logging.getLogger(__name__)

RawQuotaResponse = Dict[str, Dict[str, Any]]

GITHUB_JSON = "application/vnd.github+json"


class ApiProbe:
    """
    Issues authenticated requests with a bearer token.

    Every request carries 'Authorization: token <value>' and the client identifier header
    configured on the shared chain client. A non-success status raises NetworkError; there
    are no retries.
    """

    def __init__(self, settings: Settings, client: ChainMiddlewareClient) -> None:
        self._settings = settings
        self._client = client

    def _authorized(self, token: BearerToken) -> ChainMiddlewareClient:
        return self._client.with_middleware(
            StaticHeadersMiddleware({"Accept": GITHUB_JSON}),
            TokenAuthorizationMiddleware(token.authorization_header),
        )

    async def probe(self, token: BearerToken) -> None:
        async with self._authorized(token).get(
            self._settings.probe_url, raise_for_status=True
        ) as (_, chain_response):
            logger.debug(
                "API response %s: %s", chain_response.status, chain_response.preview()
            )

    async def get_quota(self, token: BearerToken) -> RawQuotaResponse:
        """
        Fetch the quota document and return its per-category mapping.

        Returns:
            RawQuotaResponse: Resource category name to {limit, remaining, reset}

        Raises:
            NetworkError: If the request fails
            ProtocolError: If the document has no 'resources' object
        """
        async with self._authorized(token).get(
            self._settings.quota_url, raise_for_status=True
        ) as (_, chain_response):
            body = chain_response.body

        if not isinstance(body, dict):
            raise ProtocolError(
                f"Quota response is not a JSON object ({chain_response.content_type})"
            )

        resources = body.get("resources")
        if not isinstance(resources, dict):
            raise ProtocolError("Quota response has no resources object")

        return resources
