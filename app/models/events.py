"""
Event models for the CDC metric stream.

This module provides the Pydantic models that flow through the pipeline:
- ChangeRecord: one row mutation as delivered by the change record source
- AuthenticatorMetricEvent / OnlineUserEvent: typed events built from records
- AggregateSummary: windowed reduction of authenticator metric events
- OnlineUserMetrics: point-in-time view of tracked online sessions

Typed events are immutable (frozen=True). Attribute names are snake_case;
the JSON form uses camelCase aliases (signInUserCount, observedAt, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

Int64 = Annotated[StrictInt, Field(ge=-(2**63), le=2**63 - 1)]
Int32 = Annotated[StrictInt, Field(ge=-(2**31), le=2**31 - 1)]


class Operation(str, Enum):
    """Kind of row mutation carried by a change record."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SNAPSHOT = "snapshot"

    @classmethod
    def from_debezium(cls, code: str) -> "Operation":
        """
        Map a Debezium op code to an Operation.

        Raises:
            ValueError: If the code is not one of c, u, d, r.
        """
        operation = _DEBEZIUM_OPS.get(code) if isinstance(code, str) else None
        if operation is None:
            raise ValueError(f"Unknown Debezium op code: {code!r}")
        return operation


_DEBEZIUM_OPS = {
    "c": Operation.CREATE,
    "u": Operation.UPDATE,
    "d": Operation.DELETE,
    "r": Operation.SNAPSHOT,
}


class ChangeRecord(BaseModel):
    """
    One row-level mutation captured from a replication log.

    Attributes:
        table: Origin table name
        operation: Kind of mutation
        before: Row image before the change (None for inserts)
        after: Row image after the change (None only for deletes)
        topic: Topic/source tag the record arrived on
    """

    model_config = ConfigDict(frozen=True)

    table: str
    operation: Operation
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    topic: str = ""

    @property
    def is_tombstone(self) -> bool:
        """A record without any row image carries no payload."""
        return self.before is None and self.after is None

    @property
    def row_image(self) -> Optional[Dict[str, Any]]:
        """
        Row state the typed event is built from.

        The after image, or for a delete without one, the deleted row.
        """
        if self.after is not None:
            return self.after
        if self.operation is Operation.DELETE:
            return self.before
        return None


class StreamModel(BaseModel):
    """Base for models published to subscribers."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_message(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


class AuthenticatorMetricEvent(StreamModel):
    """How often an authenticator was used to sign users in and out."""

    id: Int64
    authenticator: StrictStr
    sign_in_user_count: Int32
    sign_off_user_count: Int32
    operation: str
    source_of_record: str
    observed_at: AwareDatetime


class OnlineUserEvent(StreamModel):
    """A user's online session and when its token expires."""

    id: Int64
    user_uuid: StrictStr
    jti: StrictStr
    online_start: AwareDatetime
    token_expiration: AwareDatetime
    renewal_count: Int32
    operation: str
    source_of_record: str
    observed_at: AwareDatetime


class AggregateSummary(StreamModel):
    """
    Reduction of the authenticator metric events seen in one window.

    sign_in_user_count is the authoritative aggregate; summaries whose sum is
    not positive are never emitted.
    """

    group_key: str
    sign_in_user_count: int
    sign_off_user_count: int
    event_count: int
    window_start: datetime
    window_end: datetime


class OnlineUserMetrics(StreamModel):
    """Current online users and users who have not started a session recently."""

    online_user_count: int = Field(..., ge=0)
    stale_user_count: int = Field(..., ge=0)
    observed_at: datetime
