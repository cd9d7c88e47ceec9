"""
Debezium change event decoding.

Accepts the JSON shapes a Debezium connector emits:
- Full envelope: {"schema": {...}, "payload": {"before", "after", "source", "op", ...}}
- Bare payload (schemas disabled): {"before", "after", "source", "op", ...}
- Record dump: {"topic": "...", "key": ..., "value": <envelope or null>}

A null value or payload is a Kafka tombstone and decodes to None.
"""

from typing import Any, Mapping, Optional

from app.models.events import ChangeRecord, Operation
from core.exceptions import MalformedRecordError


def _image(payload: Mapping[str, Any], name: str) -> Optional[dict]:
    image = payload.get(name)
    if image is not None and not isinstance(image, Mapping):
        raise MalformedRecordError(
            "Row image must be an object", {"image": name, "type": type(image).__name__}
        )
    return dict(image) if image is not None else None


def default_topic(source: Mapping[str, Any], table: str) -> str:
    """Topic Debezium would use: <server name>.<schema>.<table>."""
    parts = [source.get("name"), source.get("schema"), table]
    return ".".join(str(part) for part in parts if part)


def decode_change_event(message: Any, topic: Optional[str] = None) -> Optional[ChangeRecord]:
    """
    Decode one Debezium change event.

    Args:
        message: Parsed JSON of the event
        topic: Topic the event was read from, if known

    Returns:
        ChangeRecord, or None for a tombstone.

    Raises:
        MalformedRecordError: If the event lacks source/table/op or has
            mistyped row images.
    """
    if message is None:
        return None
    if not isinstance(message, Mapping):
        raise MalformedRecordError(
            "Change event must be a JSON object", {"type": type(message).__name__}
        )

    value: Any = message
    if "value" in message and "op" not in message:
        topic = topic or message.get("topic")
        value = message["value"]
        if value is None:
            return None

    if isinstance(value, Mapping) and "payload" in value:
        value = value["payload"]
        if value is None:
            return None

    if not isinstance(value, Mapping):
        raise MalformedRecordError("Change event payload must be a JSON object")

    source = value.get("source")
    if not isinstance(source, Mapping):
        raise MalformedRecordError("Change event has no source block")

    table = source.get("table")
    if not isinstance(table, str) or not table:
        raise MalformedRecordError("Change event source has no table name")

    try:
        operation = Operation.from_debezium(value.get("op"))
    except ValueError as e:
        raise MalformedRecordError(str(e), {"table": table}) from None

    return ChangeRecord(
        table=table,
        operation=operation,
        before=_image(value, "before"),
        after=_image(value, "after"),
        topic=topic or default_topic(source, table),
    )
