"""
Configuration Module for Quota Check

This module defines the configuration system for the quota check run, using Pydantic for
settings validation and aiohttp AppKeys for sharing state with the embedded callback listener.

The configuration follows these principles:
1. Environment-based configuration with defaults that target the public GitHub API
2. Strong validation and typing through Pydantic
3. Dependency injection of listener state through typed AppKeys
4. Secrets are never held as plain strings

The Settings class is the central configuration point. Every component receives the settings
instance it needs explicitly, so tests can build settings with short delays and local URLs.

Key configuration areas include:
- Provider endpoints and the requested scope
- Embedded callback listener binding
- Flow pacing (callback cadence, device warm-up, polling deadline)
- Probe behaviour
- Input and output files
- Monitoring and error reporting
"""

from enum import Enum
from typing import Final, Optional
import logging
from urllib.parse import urlparse
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from aiohttp import web

from social.graze.quota.app.metrics import MetricsClient
from social.graze.quota.rendezvous import CallbackState


logger = logging.getLogger(__name__)


class AuthMode(str, Enum):
    """
    Selects which OAuth flow is used for the credentials of a run.

    - code: every credential uses the authorization code flow and must carry a secret
    - device: every credential uses the device flow, secrets are ignored
    - auto: credentials with a secret use the code flow, the rest use the device flow
    """

    code = "code"
    device = "device"
    auto = "auto"


class Settings(BaseSettings):
    """
    Settings for a quota check run.

    Values are loaded from environment variables with the same name as the field, for example
    CALLBACK_PORT=5001 or AUTH_MODE=device. Defaults match the public GitHub endpoints and a
    callback listener on localhost:5000.
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable request tracing of outbound HTTP calls.
    Set with DEBUG=true environment variable.
    """

    auth_mode: AuthMode = AuthMode.code
    """
    Flow selection for the run, see AuthMode.
    Set with AUTH_MODE environment variable.
    """

    # Provider endpoints
    authorize_url: str = "https://github.com/login/oauth/authorize"
    """Browser-facing authorization endpoint for the authorization code flow"""

    device_code_url: str = "https://github.com/login/device/code"
    """Endpoint issuing device and user codes for the device flow"""

    token_url: str = "https://github.com/login/oauth/access_token"
    """Token endpoint shared by both flows"""

    probe_url: str = "https://api.github.com/user"
    """Endpoint called repeatedly to consume quota"""

    quota_url: str = "https://api.github.com/rate_limit"
    """Quota inspection endpoint"""

    scope: str = "read:user"
    """OAuth scope requested for every token"""

    user_agent: str = "GitHubRateLimitChecker"
    """
    Client identifier sent as the User-Agent header on every call.
    Set with USER_AGENT environment variable.
    """

    # Callback listener
    redirect_uri: str = "http://localhost:5000/callback"
    """
    Redirect URI registered with the provider for the authorization code flow.
    Set with REDIRECT_URI environment variable.
    """

    callback_host: Optional[str] = None
    """
    Host the embedded listener binds to. Derived from redirect_uri when unset.
    Set with CALLBACK_HOST environment variable.
    """

    callback_port: Optional[int] = None
    """
    Port the embedded listener binds to. Derived from redirect_uri when unset.
    Set with CALLBACK_PORT environment variable.
    """

    # Flow pacing
    callback_poll_interval: float = 1.0
    """Seconds between checks for a delivered authorization code"""

    code_flow_timeout: Optional[float] = None
    """
    Upper bound in seconds for waiting on the browser redirect.
    Unset means the flow waits until the operator completes the authorization.
    Set with CODE_FLOW_TIMEOUT environment variable.
    """

    device_warmup: float = 5.0
    """Seconds to wait after issuing the user code before the first poll"""

    device_poll_deadline: float = 900.0
    """
    Hard ceiling in seconds for device polling, counted from the first poll.
    Applies regardless of the expires_in value sent by the provider.
    """

    slow_down_increment: int = 5
    """Seconds added to the polling interval on every slow_down answer"""

    # Probe behaviour
    probe_count: int = Field(default=10, ge=0)
    """Number of probe calls issued per application before reading the quota"""

    request_timeout: float = 30.0
    """Total timeout in seconds for a single outbound request"""

    # Input and output
    credentials_file: str = "credentials.json"
    """
    JSON file holding a list of {client_id, client_secret, app_name} entries.
    Set with CREDENTIALS_FILE environment variable.
    """

    output_path: str = "rate_limit_logs.json"
    """
    File receiving the quota snapshots of a run.
    Set with OUTPUT_PATH environment variable.
    """

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, one of 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    statsd_prefix: str = "quota"
    """Prefix for all metric names emitted by this tool"""

    model_config = SettingsConfigDict(populate_by_name=True)

    @field_validator("metrics_backend")
    @classmethod
    def validate_metrics_backend(cls, v: str) -> str:
        """
        Normalize and validate the metrics backend name.

        Raises:
            ValueError: If the backend is not supported
        """
        backend = v.lower()
        if backend not in ("telegraf", "none"):
            raise ValueError("metrics_backend must be 'telegraf' or 'none'")
        return backend

    @model_validator(mode="after")
    def derive_callback_binding(self) -> "Settings":
        """
        Fill the listener binding from the redirect URI when it is not set explicitly.
        """
        parsed = urlparse(self.redirect_uri)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError("redirect_uri must be an absolute http(s) URL")
        if self.callback_host is None:
            self.callback_host = parsed.hostname
        if self.callback_port is None:
            self.callback_port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return self

    @property
    def callback_path(self) -> str:
        """Path component of the redirect URI, served by the callback route."""
        return urlparse(self.redirect_uri).path or "/callback"


DEVICE_GRANT_TYPE: Final = "urn:ietf:params:oauth:grant-type:device_code"
"""Grant type sent when polling the token endpoint in the device flow (RFC 8628)"""

FORM_CONTENT_TYPE: Final = "application/x-www-form-urlencoded"
"""Content type of the provider's OAuth answers"""

# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the run settings from listener handlers"""

CallbackStateAppKey: Final = web.AppKey("callback_state", CallbackState)
"""AppKey for the mutable holder of the currently attached authorization session"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client used by listener middleware"""
