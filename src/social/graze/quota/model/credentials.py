"""Registered client applications and flow selection.

Credentials are loaded once, before the run starts, and each one is paired with the OAuth
flow it will use. The pairing is made here and never re-derived later in the run.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, field_validator

from social.graze.quota.errors import CredentialError

logger = logging.getLogger(__name__)


class Credential(BaseModel):
    """One registered client application."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(min_length=1)
    client_secret: Optional[SecretStr] = None
    app_name: str = Field(min_length=1)

    @field_validator("client_id", "app_name")
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("client_secret", mode="before")
    @classmethod
    def empty_secret_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def has_secret(self) -> bool:
        return self.client_secret is not None


class CodeFlow(BaseModel):
    """Authorization code flow, which needs the application's client secret."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["code"] = "code"
    client_secret: SecretStr


class DeviceFlow(BaseModel):
    """Device authorization flow, which needs no secret."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["device"] = "device"


AuthFlow = Union[CodeFlow, DeviceFlow]


@dataclass(frozen=True)
class ClientRegistration:
    credential: Credential
    flow: AuthFlow

    @property
    def app_name(self) -> str:
        return self.credential.app_name


def select_flow(credential: Credential, mode: str) -> AuthFlow:
    """
    Choose the flow for a credential according to the run's auth mode.

    Args:
        credential: The client application
        mode: 'code', 'device' or 'auto'

    Returns:
        AuthFlow: CodeFlow carrying the secret, or DeviceFlow

    Raises:
        CredentialError: If the code flow is required but the credential has no secret
    """
    mode = str(getattr(mode, "value", mode))
    if mode == "device":
        return DeviceFlow()
    if mode == "code":
        if credential.client_secret is None:
            raise CredentialError(
                f"Credential for {credential.app_name} has no client_secret, "
                "which the authorization code flow requires"
            )
        return CodeFlow(client_secret=credential.client_secret)
    if mode == "auto":
        if credential.client_secret is None:
            return DeviceFlow()
        return CodeFlow(client_secret=credential.client_secret)
    raise CredentialError(f"Unknown auth mode: {mode}")


def build_registrations(
    credentials: Iterable[Credential], mode: str
) -> List[ClientRegistration]:
    return [
        ClientRegistration(credential=credential, flow=select_flow(credential, mode))
        for credential in credentials
    ]


_credential_list = TypeAdapter(List[Credential])


def parse_credentials(data: str) -> List[Credential]:
    """
    Parse a JSON array of {client_id, client_secret, app_name} objects.

    Raises:
        CredentialError: If the document is not valid JSON or an entry is invalid
    """
    try:
        return _credential_list.validate_json(data)
    except ValueError as e:
        raise CredentialError(f"Invalid credentials document: {e}") from e


def load_registrations(path: str, mode: str) -> List[ClientRegistration]:
    """
    Read the credentials file and select a flow for every entry.

    Args:
        path: Path to a JSON credentials file
        mode: Auth mode of the run

    Returns:
        List[ClientRegistration]: Registrations in file order
    """
    try:
        with open(path) as fd:
            data = fd.read()
    except OSError as e:
        raise CredentialError(f"Unable to read credentials file {path}: {e}") from e

    credentials = parse_credentials(data)
    if not credentials:
        raise CredentialError(f"No credentials found in {path}")

    registrations = build_registrations(credentials, mode)
    logger.info("Loaded %d credential(s) from %s", len(registrations), path)
    return registrations

