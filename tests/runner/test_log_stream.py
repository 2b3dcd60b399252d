from __future__ import annotations

import errno
import io
import logging
import os

from conlog.runner import (
    LogChunk,
    LogQuota,
    OutputChannel,
    StreamMultiplexer,
    log_stream,
)
from conlog.runner.log_stream import write_fully


def _channel(name: str, payload: bytes, terminal: io.BytesIO) -> OutputChannel:
    read_fd, write_fd = os.pipe()
    os.write(write_fd, payload)
    os.close(write_fd)
    return OutputChannel(name=name, fd=read_fd, terminal=terminal)


class TrickleSink(io.BytesIO):
    """Accepts at most two bytes per write call."""

    def write(self, data) -> int:  # type: ignore[override]
        return super().write(bytes(data[:2]))


class BrokenSink(io.BytesIO):
    def write(self, data) -> int:  # type: ignore[override]
        raise BrokenPipeError(32, "Broken pipe")


def test_multiplexer_routes_channels_and_logs_both() -> None:
    out, err, log = io.BytesIO(), io.BytesIO(), io.BytesIO()
    channels = [
        _channel("stdout", b"hello\n", out),
        _channel("stderr", b"oops\n", err),
    ]
    multiplexer = StreamMultiplexer(channels, log)
    multiplexer.run()

    assert out.getvalue() == b"hello\n"
    assert err.getvalue() == b"oops\n"
    assert sorted(log.getvalue().splitlines()) == [b"hello", b"oops"]
    assert multiplexer.log_bytes == 11
    assert all(channel.closed for channel in channels)


def test_quota_rejects_whole_chunks_and_keeps_passthrough(caplog) -> None:
    out, log = io.BytesIO(), io.BytesIO()
    received: list[LogChunk] = []
    multiplexer = StreamMultiplexer(
        [_channel("stdout", b"abcdefghij", out)],
        log,
        LogQuota(limit=6),
        chunk_size=4,
    )
    multiplexer.add_listener(received.append)
    with caplog.at_level(logging.WARNING):
        multiplexer.run()

    assert out.getvalue() == b"abcdefghij"
    assert log.getvalue() == b"abcd"
    assert multiplexer.log_bytes == 4
    assert [chunk.logged for chunk in received] == [True, False, False]
    assert [r.getMessage() for r in caplog.records].count("Stopping log") == 1


def test_partial_writes_are_retried() -> None:
    out, log = TrickleSink(), TrickleSink()
    StreamMultiplexer([_channel("stdout", b"partial writes\n", out)], log).run()
    assert out.getvalue() == b"partial writes\n"
    assert log.getvalue() == b"partial writes\n"


def test_terminal_write_error_does_not_stop_logging(caplog) -> None:
    log = io.BytesIO()
    multiplexer = StreamMultiplexer(
        [_channel("stdout", b"x" * 20, BrokenSink())], log, chunk_size=8
    )
    with caplog.at_level(logging.WARNING):
        multiplexer.run()
    assert log.getvalue() == b"x" * 20
    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert warnings == ["write stdout: Broken pipe"]


def test_listener_can_be_removed() -> None:
    received: list[LogChunk] = []
    multiplexer = StreamMultiplexer(
        [_channel("stdout", b"data", io.BytesIO())], io.BytesIO()
    )
    remove = multiplexer.add_listener(received.append)
    remove()
    multiplexer.run()
    assert received == []


def test_single_channel_with_no_output() -> None:
    out, log = io.BytesIO(), io.BytesIO()
    StreamMultiplexer([_channel("stdout", b"", out)], log).run()
    assert out.getvalue() == b""
    assert log.getvalue() == b""


def test_write_fully_reports_stalled_sink() -> None:
    class StalledSink(io.BytesIO):
        def write(self, data) -> int:  # type: ignore[override]
            return 0

    assert not write_fully(StalledSink(), b"data")
    assert write_fully(io.BytesIO(), b"data")


def test_read_error_drops_only_that_channel(monkeypatch, caplog) -> None:
    out, err, log = io.BytesIO(), io.BytesIO(), io.BytesIO()
    healthy = _channel("stdout", b"still here\n", out)
    failing = _channel("stderr", b"never read\n", err)
    real_read = os.read

    def _read(fd: int, size: int) -> bytes:
        if fd == failing.fd:
            raise OSError(errno.EIO, os.strerror(errno.EIO))
        return real_read(fd, size)

    monkeypatch.setattr(log_stream.os, "read", _read)
    with caplog.at_level(logging.WARNING):
        StreamMultiplexer([healthy, failing], log).run()

    assert out.getvalue() == b"still here\n"
    assert err.getvalue() == b""
    assert log.getvalue() == b"still here\n"
    assert failing.closed and healthy.closed
    assert f"read stderr: {os.strerror(errno.EIO)}" in caplog.text


def test_would_block_read_is_retried(monkeypatch) -> None:
    out, log = io.BytesIO(), io.BytesIO()
    channel = _channel("stdout", b"eventually\n", out)
    real_read = os.read
    blocked: list[int] = []

    def _read(fd: int, size: int) -> bytes:
        if not blocked:
            blocked.append(fd)
            raise BlockingIOError(errno.EAGAIN, os.strerror(errno.EAGAIN))
        return real_read(fd, size)

    monkeypatch.setattr(log_stream.os, "read", _read)
    StreamMultiplexer([channel], log).run()

    assert blocked == [channel.fd]
    assert out.getvalue() == b"eventually\n"
    assert log.getvalue() == b"eventually\n"
