"""
Change event dispatcher.

Routes each ChangeRecord to a typed-event converter by its origin table and
publishes the result on the broadcast hub.

Routing is a closed mapping: table names classify into TableCategory, and each
known category has exactly one converter. Names that match nothing classify as
UNRECOGNIZED and are dropped with a warning.

Every record is handled in isolation. Conversion errors are logged and the
record is dropped; they never reach the caller, so one bad row cannot stop
the stream.
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError

from app.api import metrics as pipeline_metrics
from app.config import settings
from app.events.hub import BroadcastHub, TypedEvent
from app.models.events import AuthenticatorMetricEvent, ChangeRecord, OnlineUserEvent
from core.exceptions import ConfigurationError, MalformedRecordError, is_record_error

logger = logging.getLogger(__name__)

# Fractional seconds of any length (Debezium and Java emit 1 to 9 digits)
_FRACTION = re.compile(r"([T ]\d{2}:\d{2}:\d{2})\.(\d+)")


def _to_microseconds(match: "re.Match[str]") -> str:
    return f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}"


class TableCategory(Enum):
    """Origin tables the dispatcher knows how to convert."""

    AUTHENTICATOR_METRICS = "authenticator_metrics"
    ONLINE_SESSIONS = "online_sessions"
    UNRECOGNIZED = "unrecognized"


class TableRouter:
    """
    Classifies table names by exact match.

    Args:
        authenticator_metrics_table: Table holding per-authenticator counters
        online_sessions_table: Table holding online user sessions
    """

    def __init__(
        self,
        authenticator_metrics_table: str = "user_metrics",
        online_sessions_table: str = "user_online",
    ):
        if authenticator_metrics_table == online_sessions_table:
            raise ConfigurationError(
                "Each category needs its own table",
                {"table": authenticator_metrics_table},
            )
        self._tables: Dict[str, TableCategory] = {
            authenticator_metrics_table: TableCategory.AUTHENTICATOR_METRICS,
            online_sessions_table: TableCategory.ONLINE_SESSIONS,
        }

    @classmethod
    def from_settings(cls) -> "TableRouter":
        return cls(settings.AUTHENTICATOR_METRICS_TABLE, settings.ONLINE_SESSIONS_TABLE)

    def classify(self, table: str) -> TableCategory:
        return self._tables.get(table, TableCategory.UNRECOGNIZED)


# ============================================================================
# Converters
# ============================================================================


def _row_image(record: ChangeRecord) -> Mapping[str, Any]:
    image = record.row_image
    if image is None:
        raise MalformedRecordError(
            "Change record has no row image to convert",
            {"table": record.table, "operation": record.operation.value},
        )
    return image


def _column(image: Mapping[str, Any], name: str) -> Any:
    try:
        return image[name]
    except KeyError:
        raise MalformedRecordError("Missing column", {"column": name}) from None


def parse_timestamp(value: Any, column: str) -> datetime:
    """
    Parse an ISO-8601 instant such as ``2024-05-01T10:15:30Z``.

    Raises:
        MalformedRecordError: If the value is not a string, does not parse,
            or carries no UTC offset.
    """
    if not isinstance(value, str):
        raise MalformedRecordError(
            "Timestamp must be an ISO-8601 string",
            {"column": column, "value": repr(value)},
        )

    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(_to_microseconds, text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedRecordError(
            "Unparsable timestamp", {"column": column, "value": value}
        ) from None

    if parsed.tzinfo is None:
        raise MalformedRecordError(
            "Timestamp has no UTC offset", {"column": column, "value": value}
        )
    return parsed


def convert_authenticator_metric(
    record: ChangeRecord, observed_at: datetime
) -> AuthenticatorMetricEvent:
    """Build an AuthenticatorMetricEvent from a user_metrics row."""
    image = _row_image(record)
    try:
        return AuthenticatorMetricEvent(
            id=_column(image, "id"),
            authenticator=_column(image, "authenticator"),
            sign_in_user_count=_column(image, "sign_in_user_count"),
            sign_off_user_count=_column(image, "sign_off_user_count"),
            operation=record.operation.value,
            source_of_record=record.topic,
            observed_at=observed_at,
        )
    except ValidationError as e:
        raise MalformedRecordError(
            "Invalid authenticator metric row", {"errors": e.error_count()}
        ) from e


def convert_online_user(record: ChangeRecord, observed_at: datetime) -> OnlineUserEvent:
    """Build an OnlineUserEvent from a user_online row."""
    image = _row_image(record)
    online_start = parse_timestamp(
        _column(image, "online_start_datetime"), "online_start_datetime"
    )
    token_expiration = parse_timestamp(
        _column(image, "token_expiration_datetime"), "token_expiration_datetime"
    )

    try:
        event = OnlineUserEvent(
            id=_column(image, "id"),
            user_uuid=_column(image, "user_uuid"),
            jti=_column(image, "jti"),
            online_start=online_start,
            token_expiration=token_expiration,
            renewal_count=_column(image, "renewal_count"),
            operation=record.operation.value,
            source_of_record=record.topic,
            observed_at=observed_at,
        )
    except ValidationError as e:
        raise MalformedRecordError(
            "Invalid online session row", {"errors": e.error_count()}
        ) from e

    if event.token_expiration < event.online_start:
        logger.warning(
            f"Session {event.id} token expires before it started "
            f"({event.token_expiration.isoformat()} < {event.online_start.isoformat()})",
            extra={"table": record.table},
        )
    return event


Converter = Callable[[ChangeRecord, datetime], TypedEvent]

CONVERTERS: Dict[TableCategory, Converter] = {
    TableCategory.AUTHENTICATOR_METRICS: convert_authenticator_metric,
    TableCategory.ONLINE_SESSIONS: convert_online_user,
}


# ============================================================================
# Dispatcher
# ============================================================================


class ChangeEventDispatcher:
    """
    Converts change records into typed events and publishes them.

    on_record() must be called from a single task, one record at a time.
    Events of one table reach the hub in the order their records arrived.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        router: Optional[TableRouter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            hub: Hub the typed events are published on
            router: Table classification (default: tables from settings)
            clock: Returns the observation time stamped on each event
        """
        self._hub = hub
        self._router = router or TableRouter.from_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Statistics
        self._total_received = 0
        self._total_dispatched: Dict[TableCategory, int] = {
            category: 0 for category in CONVERTERS
        }
        self._total_tombstones = 0
        self._total_unknown = 0
        self._total_failed = 0

    def on_record(self, record: ChangeRecord) -> None:
        """
        Handle one change record. Never raises.

        Args:
            record: The change record delivered by the source
        """
        self._total_received += 1
        pipeline_metrics.change_records_received_total.inc()

        if record.is_tombstone:
            self._total_tombstones += 1
            pipeline_metrics.change_records_dropped_total.labels("tombstone").inc()
            return

        category = self._router.classify(record.table)
        converter = CONVERTERS.get(category)
        if converter is None:
            self._total_unknown += 1
            pipeline_metrics.change_records_dropped_total.labels("unknown_table").inc()
            logger.warning(
                f"Received change record for unknown table: {record.table}",
                extra={"table": record.table, "topic": record.topic},
            )
            return

        try:
            event = converter(record, self._clock())
            self._hub.publish(event)
        except Exception as e:
            self._total_failed += 1
            reason = "malformed" if is_record_error(e) else "error"
            pipeline_metrics.change_records_dropped_total.labels(reason).inc()
            logger.error(
                f"Error processing change record from {record.table}: {e}",
                exc_info=not is_record_error(e),
                extra={
                    "table": record.table,
                    "operation": record.operation.value,
                    "topic": record.topic,
                    "category": category.value,
                },
            )
            return

        self._total_dispatched[category] += 1
        pipeline_metrics.change_records_dispatched_total.labels(category.value).inc()

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get dispatcher statistics.

        Returns:
            Dictionary with statistics:
            - total_received: Records handed to on_record()
            - dispatched: Events published, per category
            - tombstones: Records without payload
            - unknown_table: Records from unrecognized tables
            - failed: Records dropped because conversion failed
        """
        return {
            "total_received": self._total_received,
            "dispatched": {
                category.value: count
                for category, count in self._total_dispatched.items()
            },
            "tombstones": self._total_tombstones,
            "unknown_table": self._total_unknown,
            "failed": self._total_failed,
        }
