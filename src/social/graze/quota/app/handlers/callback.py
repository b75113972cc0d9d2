"""
Callback Listener Handlers

These handlers serve the embedded listener that the provider redirects the operator's browser
to during the authorization code flow.

- GET / - Report the authorization URL of the session currently waiting
- GET /callback - Receive the authorization code and hand it to the waiting session

Handlers never wait for the flow. They only write into the channel of the session attached to
the listener's CallbackState and answer the browser with plain text.
"""

import logging
from aiohttp import web

from social.graze.quota.app.config import CallbackStateAppKey
from social.graze.quota.rendezvous import Delivery

logger = logging.getLogger(__name__)


async def handle_index(request: web.Request):
    callback_state = request.app[CallbackStateAppKey]
    if callback_state.authorization_url is None:
        return web.Response(text="No authorization is in progress.")
    return web.Response(
        text=(
            "Please visit the following URL to authorize the application: "
            f"{callback_state.authorization_url}"
        )
    )


async def handle_callback(request: web.Request):
    """
    Handle the provider's redirect after the operator approved (or denied) access.

    Query Parameters:
        code: Authorization code to exchange for a token
        state: State issued with the authorization URL, checked when present
        error: Error code sent instead of a code when access was denied
        error_description: Human readable detail for error

    Returns:
        Plain text response for the operator's browser
    """
    callback_state = request.app[CallbackStateAppKey]

    code = request.query.get("code")
    oauth_state = request.query.get("state")
    error = request.query.get("error")

    if error:
        delivery = callback_state.deliver_error(
            error, request.query.get("error_description"), oauth_state
        )
        logger.warning("Authorization callback carried error %s (%s)", error, delivery.value)
        if delivery is Delivery.state_mismatch:
            return web.Response(status=400, text="State mismatch.")
        return web.Response(
            status=400, text=f"Authorization failed: {error}. You can close this window."
        )

    if not code:
        return web.Response(status=400, text="Missing authorization code.")

    delivery = callback_state.deliver(code, oauth_state)

    if delivery is Delivery.accepted:
        logger.info("Authorization code received")
        return web.Response(text="Authorization successful! You can close this window.")

    if delivery is Delivery.duplicate:
        logger.info("Dropping duplicate authorization callback")
        return web.Response(
            text="Authorization already received. You can close this window."
        )

    if delivery is Delivery.state_mismatch:
        logger.warning("Dropping authorization callback with unexpected state")
        return web.Response(status=400, text="State mismatch.")

    logger.warning("Dropping authorization callback, no session is waiting")
    return web.Response(status=409, text="No authorization is waiting for this callback.")
