"""Child supervisor, output multiplexer, and log quota."""

from .log_stream import DEFAULT_CHUNK_SIZE, LogChunk, OutputChannel, StreamMultiplexer
from .quota import UNBOUNDED, LogQuota
from .supervisor import (
    LOGGER_NAME,
    ChildSupervisor,
    CommandResult,
    ExitKind,
    ExitStatus,
    SupervisorError,
)

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "LOGGER_NAME",
    "UNBOUNDED",
    "ChildSupervisor",
    "CommandResult",
    "ExitKind",
    "ExitStatus",
    "LogChunk",
    "LogQuota",
    "OutputChannel",
    "StreamMultiplexer",
    "SupervisorError",
]
