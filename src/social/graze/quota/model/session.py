"""Authorization sessions and bearer tokens.

An AuthorizationSession tracks one attempt to obtain a token for one client application.
It moves forward through SessionStatus values and ends in exactly one terminal status.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, SecretStr
from ulid import ULID

from social.graze.quota.rendezvous import CallbackChannel
from social.graze.quota.timing import Deadline


class FlowKind(str, Enum):
    code = "code"
    device = "device"


class SessionStatus(str, Enum):
    """
    Lifecycle of an authorization session.

    Code flow:   requested -> awaiting_callback -> authorized | expired | failed
    Device flow: requested -> polling -> authorized | expired | failed
    """

    requested = "requested"
    awaiting_callback = "awaiting_callback"
    polling = "polling"
    authorized = "authorized"
    expired = "expired"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (
            SessionStatus.authorized,
            SessionStatus.expired,
            SessionStatus.failed,
        )


class BearerToken(BaseModel):
    """
    Access token for one session.

    The value is a SecretStr, so printing or logging a token never reveals it.
    """

    model_config = ConfigDict(frozen=True)

    value: SecretStr
    scope: str = "read:user"
    token_type: str = "bearer"

    @property
    def authorization_header(self) -> str:
        return f"token {self.value.get_secret_value()}"


@dataclass
class AuthorizationSession:
    kind: FlowKind
    client_id: str
    app_name: str
    session_id: str = field(default_factory=lambda: str(ULID()))
    status: SessionStatus = SessionStatus.requested

    # Authorization code flow
    state: Optional[str] = None
    authorization_url: Optional[str] = None
    channel: Optional[CallbackChannel] = None

    # Device flow
    device_code: Optional[str] = None
    user_code: Optional[str] = None
    verification_uri: Optional[str] = None
    interval: int = 5
    poll_count: int = 0
    expires_at: Optional[datetime] = None
    """Expiry of the issued code as announced by the provider"""

    deadline: Optional[Deadline] = None
    """Local bound on waiting, independent of expires_at"""

    failure: Optional[str] = None

    def advance(self, status: SessionStatus) -> None:
        if self.status.terminal:
            raise RuntimeError(
                f"Session {self.session_id} already finished as {self.status.value}"
            )
        self.status = status

    def finish(self, status: SessionStatus, failure: Optional[str] = None) -> None:
        """Record the single terminal outcome of the session."""
        if not status.terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.advance(status)
        self.failure = failure
