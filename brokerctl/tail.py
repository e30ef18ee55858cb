"""
Mosquitto Manager - Log Tailer
================================
Follows an append-only log file by polling its size at a fixed interval.
Native change notifications are unreliable on network-mounted and
container volumes; polling works everywhere.

    tailer = LogTailer("/mymosquitto/mosquitto.log")
    async for line in tailer.follow():
        ...

Starts at end-of-file by default (history is not replayed). Truncation or
rotation to a smaller file resets the read offset to 0. A trailing partial
line is held back until its newline arrives.
"""

import asyncio
import logging
import os
from typing import AsyncIterator


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2


class LogTailer:
    """
    Incremental reader for a growing text file.

    Attributes:
        path:           File to follow.
        interval:       Seconds between polls.
        from_beginning: Emit existing content on the first poll.
    """

    def __init__(self, path: str, interval: float = DEFAULT_POLL_INTERVAL,
                 from_beginning: bool = False):
        self.path = path
        self.interval = interval
        self.from_beginning = from_beginning
        self._offset: int | None = None
        self._pending = b""

    def ensure_exists(self) -> bool:
        """Create the file if it is missing. Returns False if that failed."""
        if os.path.exists(self.path):
            return True
        logger.warning("[TAIL] Log file %s does not exist yet, creating it", self.path)
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "a", encoding="utf-8"):
                pass
        except OSError as e:
            logger.error("[TAIL] Could not create log file %s: %s", self.path, e)
            return False
        return True

    def prime(self) -> None:
        """Fix the starting offset (end of file unless from_beginning)."""
        self._pending = b""
        if self.from_beginning:
            self._offset = 0
            return
        try:
            self._offset = os.path.getsize(self.path)
        except OSError:
            self._offset = 0

    def poll(self) -> list[str]:
        """
        Read whatever complete lines were appended since the last call.

        Returns:
            New lines without their line terminators.
        """
        if self._offset is None:
            self.prime()

        try:
            size = os.path.getsize(self.path)
        except OSError:
            return []

        if size < self._offset:
            logger.info("[TAIL] %s was truncated, rewinding", self.path)
            self._offset = 0
            self._pending = b""
        if size == self._offset:
            return []

        try:
            with open(self.path, "rb") as f:
                f.seek(self._offset)
                data = f.read(size - self._offset)
        except OSError as e:
            logger.error("[TAIL] Failed to read %s: %s", self.path, e)
            return []

        self._offset += len(data)
        chunks = (self._pending + data).split(b"\n")
        self._pending = chunks.pop()
        return [chunk.decode("utf-8", errors="replace").rstrip("\r") for chunk in chunks]

    async def follow(self) -> AsyncIterator[str]:
        """Yield appended lines forever, polling every ``interval`` seconds."""
        self.ensure_exists()
        self.prime()
        logger.info("[TAIL] Following %s", self.path)
        while True:
            for line in self.poll():
                yield line
            await asyncio.sleep(self.interval)
