"""Multiplex child output channels onto the terminal and a capped log file."""

from __future__ import annotations

import logging
import os
import selectors
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from threading import Lock
from typing import BinaryIO

from conlog.runner.quota import LogQuota

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "LogChunk",
    "OutputChannel",
    "StreamMultiplexer",
    "open_log",
    "write_fully",
]

DEFAULT_CHUNK_SIZE = 8192

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LogChunk:
    """A single chunk read from one channel."""

    stream: str
    data: bytes
    logged: bool
    timestamp: datetime


@dataclass(slots=True)
class OutputChannel:
    """Read end of one child stream and the terminal sink it is routed to."""

    name: str
    fd: int
    terminal: BinaryIO
    closed: bool = field(default=False, init=False)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        os.close(self.fd)


def open_log(path: Path | str) -> BinaryIO:
    """Create or truncate ``path`` for unbuffered binary writing."""

    return Path(path).open("wb", buffering=0)


def write_fully(sink: BinaryIO, data: bytes) -> bool:
    """Write ``data`` to ``sink``, retrying short writes.

    Returns ``False`` if the sink stopped accepting bytes before the chunk was
    flushed. ``OSError`` propagates to the caller.
    """

    view = memoryview(data)
    while view:
        wrote = sink.write(view)
        if not wrote:
            return False
        view = view[wrote:]
    sink.flush()
    return True


class StreamMultiplexer:
    """Replicate channel output to the terminal and, under quota, to the log."""

    def __init__(
        self,
        channels: Iterable[OutputChannel],
        log_sink: BinaryIO,
        quota: LogQuota | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.channels = list(channels)
        self.log_sink = log_sink
        self.quota = quota or LogQuota()
        self.chunk_size = chunk_size
        self.log_bytes = 0
        self._failed_sinks: set[str] = set()
        self._listeners: list[Callable[[LogChunk], None]] = []
        self._lock = Lock()

    def add_listener(self, callback: Callable[[LogChunk], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                try:
                    self._listeners.remove(callback)
                except ValueError:  # pragma: no cover - already removed
                    pass

        return _remove

    def run(self) -> None:
        """Pump every channel until all of them reach end-of-stream."""

        try:
            with selectors.DefaultSelector() as selector:
                for channel in self.channels:
                    if not channel.closed:
                        selector.register(channel.fd, selectors.EVENT_READ, data=channel)
                        logger.debug("%s: open", channel.name)
                while selector.get_map():
                    for key, _ in selector.select():
                        channel: OutputChannel = key.data
                        if not self._pump(channel):
                            selector.unregister(key.fd)
                            channel.close()
                            logger.debug("%s: closed", channel.name)
        finally:
            for channel in self.channels:
                channel.close()
        logger.debug("drained; %d bytes logged", self.log_bytes)

    # ------------------------------------------------------------------ helpers
    def _pump(self, channel: OutputChannel) -> bool:
        try:
            data = os.read(channel.fd, self.chunk_size)
        except (BlockingIOError, InterruptedError):
            return True
        except OSError as exc:
            logger.warning("read %s: %s", channel.name, exc.strerror or exc)
            return False
        if not data:
            return False
        self._dispatch(channel, data)
        return True

    def _dispatch(self, channel: OutputChannel, data: bytes) -> None:
        self._forward(channel.terminal, data, channel.name)
        logged = self.quota.admit(len(data))
        if logged:
            self._forward(self.log_sink, data, "log")
            self.log_bytes += len(data)
        chunk = LogChunk(
            stream=channel.name,
            data=data,
            logged=logged,
            timestamp=datetime.now(UTC),
        )
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(chunk)

    def _forward(self, sink: BinaryIO, data: bytes, label: str) -> None:
        try:
            if write_fully(sink, data):
                return
            reason: object = "short write, chunk truncated"
        except (OSError, ValueError) as exc:
            reason = exc.strerror if isinstance(exc, OSError) and exc.strerror else exc
        if label in self._failed_sinks:
            logger.debug("write %s: %s", label, reason)
            return
        self._failed_sinks.add(label)
        logger.warning("write %s: %s", label, reason)
