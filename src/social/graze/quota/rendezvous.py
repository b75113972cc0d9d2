"""Handoff of authorization codes from the callback listener to a waiting flow.

Every authorization code session gets its own single-slot CallbackChannel. The listener only
ever writes into the channel that is currently attached to its CallbackState, so a redirect
arriving after a session was released, or one carrying another session's state, can never
reach the next session's wait.
"""

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional

from social.graze.quota.errors import AuthorizationDenied, AuthorizationTimeout
from social.graze.quota.timing import Deadline, Pacer

logger = logging.getLogger(__name__)


class Delivery(str, Enum):
    """Result of handing a callback to the listener state."""

    accepted = "accepted"
    duplicate = "duplicate"
    no_session = "no_session"
    state_mismatch = "state_mismatch"


@dataclass
class CallbackError:
    error: str
    description: Optional[str] = None


class CallbackChannel:
    """
    Single-producer single-consumer slot for one authorization code.

    The first delivery wins; later deliveries are dropped. Once the waiting flow has taken
    the code, or the channel has been closed, nothing can be published into it again.
    """

    def __init__(self, state: Optional[str] = None) -> None:
        self.state = state
        self._code: Optional[str] = None
        self._error: Optional[CallbackError] = None
        self._closed = False

    @property
    def filled(self) -> bool:
        return self._code is not None or self._error is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, code: str) -> bool:
        if self._closed or self.filled:
            return False
        self._code = code
        return True

    def publish_error(self, error: str, description: Optional[str] = None) -> bool:
        if self._closed or self.filled:
            return False
        self._error = CallbackError(error, description)
        return True

    def close(self) -> None:
        self._closed = True

    def take(self) -> Optional[str]:
        """
        Consume the delivered code, closing the channel.

        Raises:
            AuthorizationDenied: If the redirect carried an error instead of a code
        """
        if self._error is not None:
            self._closed = True
            raise AuthorizationDenied(self._error.error, self._error.description)
        if self._code is None:
            return None
        code = self._code
        self._code = None
        self._closed = True
        return code

    async def wait(self, pacer: Pacer, interval: float, deadline: Deadline) -> str:
        """
        Wait until a code has been delivered, checking every interval seconds.

        A code delivered before the wait started is returned on the first check.

        Raises:
            AuthorizationDenied: If the redirect carried an error
            AuthorizationTimeout: If the deadline passes first
            AuthorizationCancelled: If the run is cancelled
        """
        while True:
            code = self.take()
            if code is not None:
                return code
            if deadline.expired():
                self._closed = True
                raise AuthorizationTimeout("No authorization callback received in time")
            await pacer.sleep(deadline.clip(interval))


class CallbackState:
    """
    The listener's view of the authorization session currently waiting for a redirect.

    Only one session is attached at a time. The handlers read it, the code flow attaches
    and detaches channels.
    """

    def __init__(self) -> None:
        self.channel: Optional[CallbackChannel] = None
        self.authorization_url: Optional[str] = None

    def attach(self, channel: CallbackChannel, authorization_url: str) -> None:
        if self.channel is not None and self.channel is not channel:
            logger.warning("Replacing an attached authorization session")
            self.channel.close()
        self.channel = channel
        self.authorization_url = authorization_url

    def detach(self, channel: CallbackChannel) -> None:
        if self.channel is channel:
            self.channel = None
            self.authorization_url = None
        channel.close()

    def _match(self, state: Optional[str]) -> Delivery:
        if self.channel is None or self.channel.closed:
            return Delivery.no_session
        if (
            state is not None
            and self.channel.state is not None
            and state != self.channel.state
        ):
            return Delivery.state_mismatch
        return Delivery.accepted

    def deliver(self, code: str, state: Optional[str] = None) -> Delivery:
        matched = self._match(state)
        if matched is not Delivery.accepted:
            return matched
        assert self.channel is not None
        if not self.channel.publish(code):
            return Delivery.duplicate
        return Delivery.accepted

    def deliver_error(
        self, error: str, description: Optional[str] = None, state: Optional[str] = None
    ) -> Delivery:
        matched = self._match(state)
        if matched is not Delivery.accepted:
            return matched
        assert self.channel is not None
        if not self.channel.publish_error(error, description):
            return Delivery.duplicate
        return Delivery.accepted
