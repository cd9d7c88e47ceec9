"""Change record sources feeding the dispatcher."""

from infrastructure.sources.base import ChangeRecordSource, RecordHandler
from infrastructure.sources.debezium import decode_change_event
from infrastructure.sources.memory import InMemoryChangeSource
from infrastructure.sources.ndjson import NDJSONChangeSource

__all__ = [
    "ChangeRecordSource",
    "InMemoryChangeSource",
    "NDJSONChangeSource",
    "RecordHandler",
    "decode_change_event",
]
