"""
NDJSON change log source.

Reads one Debezium change event per line from a file, e.g. the output of
``kcat -C -t dbserver1.public.user_metrics -J`` or a connector's file sink.
With follow=True the file is tailed like ``tail -f``.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Union

from app.models.events import ChangeRecord
from core.exceptions import MalformedRecordError
from infrastructure.sources.base import ChangeRecordSource
from infrastructure.sources.debezium import decode_change_event

logger = logging.getLogger(__name__)


class NDJSONChangeSource(ChangeRecordSource):
    """
    Source reading Debezium change events from a newline-delimited JSON file.

    Lines are decoded as UTF-8 one at a time. Undecodable lines are logged
    and skipped. Failing to open or read the file is fatal.
    """

    def __init__(
        self,
        path: Union[str, Path],
        follow: bool = False,
        poll_interval: float = 0.5,
        name: Optional[str] = None,
    ):
        """
        Args:
            path: NDJSON file to read
            follow: Keep waiting for new lines at end of file
            poll_interval: Seconds between checks for new lines while following
            name: Source name for logs (default: file name)
        """
        self._path = Path(path)
        super().__init__(name or self._path.name)
        self._follow = follow
        self._poll_interval = poll_interval
        self._file: Optional[BinaryIO] = None

        self.lines_read = 0
        self.malformed_lines = 0
        self.tombstones = 0

    async def records(self) -> AsyncIterator[ChangeRecord]:
        self._file = await asyncio.to_thread(open, self._path, "rb")
        logger.info(f"Reading change events from {self._path} (follow={self._follow})")

        partial = b""
        while True:
            chunk = await asyncio.to_thread(self._file.readline)
            if not chunk:
                if not self._follow:
                    break
                await asyncio.sleep(self._poll_interval)
                continue

            partial += chunk
            if self._follow and not partial.endswith(b"\n"):
                # Writer is mid-line; wait for the rest
                continue

            line, partial = partial, b""
            record = self._decode_line(line)
            if record is not None:
                yield record

        if partial:
            record = self._decode_line(partial)
            if record is not None:
                yield record

    def _decode_line(self, line: bytes) -> Optional[ChangeRecord]:
        self.lines_read += 1
        text = line.strip()
        if not text:
            return None

        try:
            record = decode_change_event(json.loads(text.decode("utf-8")))
        except (ValueError, MalformedRecordError) as e:
            self.malformed_lines += 1
            logger.error(
                f"Skipping undecodable change event at {self._path}:{self.lines_read}: {e}"
            )
            return None

        if record is None:
            self.tombstones += 1
        return record

    async def close(self) -> None:
        if self._file is not None:
            await asyncio.to_thread(self._file.close)
            self._file = None
