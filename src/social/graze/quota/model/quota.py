"""Quota snapshots.

The provider's quota document maps resource category names to {limit, remaining, reset}
entries, where reset is a Unix timestamp in seconds. build_snapshots turns one such document
into one QuotaSnapshot per category, in the document's own order.
"""

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from social.graze.quota.errors import ProtocolError
from social.graze.quota.model.credentials import Credential


class QuotaSnapshot(BaseModel):
    """
    Point-in-time quota reading for one resource category of one application.

    Serialized with the record keys timestamp, app, resource, limit, remaining and reset.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    app_name: str = Field(serialization_alias="app")
    resource_name: str = Field(serialization_alias="resource")
    limit: int = Field(ge=0)
    remaining: int = Field(ge=0)
    reset_time: datetime = Field(serialization_alias="reset")

    @model_validator(mode="after")
    def remaining_within_limit(self) -> "QuotaSnapshot":
        if self.remaining > self.limit:
            raise ValueError(
                f"remaining ({self.remaining}) exceeds limit ({self.limit})"
            )
        return self

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def reset_instant(reset: int) -> datetime:
    return datetime.fromtimestamp(reset, tz=timezone.utc)


def build_snapshots(
    app_name: str, raw: Mapping[str, Any], timestamp: datetime
) -> List[QuotaSnapshot]:
    """
    Normalize a quota document into snapshots.

    Args:
        app_name: Application the quota belongs to
        raw: Mapping of resource category name to {limit, remaining, reset}
        timestamp: Moment the quota was read, shared by every snapshot

    Returns:
        List[QuotaSnapshot]: One snapshot per category, in input order

    Raises:
        ProtocolError: If an entry is missing a field or violates remaining <= limit
    """
    snapshots: List[QuotaSnapshot] = []
    for resource_name, entry in raw.items():
        if not isinstance(entry, Mapping):
            raise ProtocolError(f"Quota entry for {resource_name} is not an object")
        try:
            snapshots.append(
                QuotaSnapshot(
                    timestamp=timestamp,
                    app_name=app_name,
                    resource_name=resource_name,
                    limit=entry["limit"],
                    remaining=entry["remaining"],
                    reset_time=reset_instant(int(entry["reset"])),
                )
            )
        except (KeyError, TypeError, ValueError, OverflowError, ValidationError) as e:
            raise ProtocolError(
                f"Invalid quota entry for {resource_name}: {e}"
            ) from e
    return snapshots


class SessionResult(BaseModel):
    """Outcome of processing one credential. Present even when processing failed."""

    model_config = ConfigDict(frozen=True)

    credential: Credential
    snapshots: List[QuotaSnapshot] = Field(default_factory=list)
    failure: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def app_name(self) -> str:
        return self.credential.app_name
