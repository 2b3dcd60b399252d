"""Child supervisor: run a command with its output routed through the logger."""

from __future__ import annotations

import enum
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from queue import Queue
from typing import BinaryIO

from conlog.runner.log_stream import (
    DEFAULT_CHUNK_SIZE,
    LogChunk,
    OutputChannel,
    StreamMultiplexer,
    open_log,
)
from conlog.runner.quota import LogQuota

__all__ = [
    "LOGGER_NAME",
    "ChildSupervisor",
    "CommandResult",
    "ExitKind",
    "ExitStatus",
    "SupervisorError",
]

LOGGER_NAME = "logger"
_CHILD = "child"

logger = logging.getLogger(__name__)


class SupervisorError(RuntimeError):
    """Raised when the environment cannot support a supervised run."""

    def __init__(self, operation: str, reason: BaseException | str) -> None:
        if isinstance(reason, OSError) and reason.strerror:
            detail = reason.strerror
        else:
            detail = str(reason)
        super().__init__(f"{operation}: {detail}")
        self.operation = operation


class ExitKind(str, enum.Enum):
    EXITED = "exit"
    SIGNALED = "signal"
    OTHER = "status"


@dataclass(slots=True, frozen=True)
class ExitStatus:
    """How a task ended: a normal exit code, a signal, or a raw status."""

    kind: ExitKind
    code: int

    @classmethod
    def exited(cls, code: int) -> ExitStatus:
        return cls(ExitKind.EXITED, code)

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        """Decode a ``subprocess`` return code (negative means killed by signal)."""

        if returncode < 0:
            return cls(ExitKind.SIGNALED, -returncode)
        return cls(ExitKind.EXITED, returncode)

    @property
    def ok(self) -> bool:
        return self.kind is ExitKind.EXITED and self.code == 0

    @property
    def returncode(self) -> int:
        """Process exit code to propagate; never zero for abnormal endings."""

        if self.kind is ExitKind.EXITED:
            return self.code
        if self.kind is ExitKind.SIGNALED:
            return 128 + self.code
        return self.code or 1

    def describe(self, name: str) -> str:
        if self.kind is ExitKind.EXITED:
            return f"{name}: exit {self.code}"
        if self.kind is ExitKind.SIGNALED:
            try:
                description = signal.strsignal(self.code)
            except ValueError:
                description = None
            return f"{name}: signal {description or 'unknown'} ({self.code})"
        return f"{name}: status {self.code}"


@dataclass(slots=True)
class CommandResult:
    """Details about the finished run."""

    status: ExitStatus
    logger_status: ExitStatus
    log_path: Path
    log_bytes: int
    completion_order: tuple[str, ...]

    @property
    def exit_code(self) -> int:
        return self.status.returncode


class ChildSupervisor:
    """Wire a command's stdout/stderr through a :class:`StreamMultiplexer`.

    The logger runs on its own thread and owns the read ends of both pipes and
    the log file. The child process gets the write ends. Completions are
    collected in whichever order they happen.
    """

    def __init__(
        self,
        *,
        terminal_stdout: BinaryIO | None = None,
        terminal_stderr: BinaryIO | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        merge_stderr: bool = False,
    ) -> None:
        self.terminal_stdout = terminal_stdout
        self.terminal_stderr = terminal_stderr
        self.chunk_size = chunk_size
        self.merge_stderr = merge_stderr

    def run_command(
        self,
        log_path: Path | str,
        limit: int | None,
        argv: Sequence[str],
        *,
        stream_observers: Iterable[Callable[[LogChunk], None]] | None = None,
    ) -> CommandResult:
        argv = list(argv)
        if not argv:
            raise ValueError("argv must name a command")
        log_path = Path(log_path)
        names = ("stdout",) if self.merge_stderr else ("stdout", "stderr")
        pipes = self._open_pipes(len(names))
        try:
            log_sink = open_log(log_path)
        except OSError as exc:
            _close_fds(fd for pair in pipes for fd in pair)
            raise SupervisorError(str(log_path), exc) from exc

        channels = [
            OutputChannel(name=name, fd=read_fd, terminal=self._terminal(name))
            for name, (read_fd, _) in zip(names, pipes)
        ]
        multiplexer = StreamMultiplexer(
            channels, log_sink, LogQuota(limit), chunk_size=self.chunk_size
        )
        for observer in stream_observers or []:
            multiplexer.add_listener(observer)

        completions: Queue[tuple[str, ExitStatus | BaseException]] = Queue()
        write_fds = [write_fd for _, write_fd in pipes]
        self._flush_terminals()
        try:
            self._start(
                "conlog-logger", _logger_task, (multiplexer, log_sink, completions)
            )
        except SupervisorError:
            log_sink.close()
            _close_fds(write_fds)
            _close_fds(channel.fd for channel in channels)
            raise

        try:
            process = self._spawn(argv, write_fds[0], write_fds[-1])
        finally:
            _close_fds(write_fds)
        if process is None:
            completions.put((_CHILD, ExitStatus.exited(1)))
        else:
            try:
                self._start("conlog-wait", _wait_task, (process, completions))
            except SupervisorError:
                process.kill()
                process.wait()
                raise

        statuses: dict[str, ExitStatus] = {}
        order: list[str] = []
        command_name = argv[0]
        while len(statuses) < 2:
            role, outcome = completions.get()
            if isinstance(outcome, BaseException):
                raise SupervisorError("wait", outcome) from outcome
            statuses[role] = outcome
            order.append(role)
            name = LOGGER_NAME if role == LOGGER_NAME else command_name
            if outcome.ok:
                logger.debug(outcome.describe(name))
            else:
                logger.error(outcome.describe(name))

        return CommandResult(
            status=statuses[_CHILD],
            logger_status=statuses[LOGGER_NAME],
            log_path=log_path,
            log_bytes=multiplexer.log_bytes,
            completion_order=tuple(order),
        )

    # ------------------------------------------------------------------ helpers
    def _terminal(self, name: str) -> BinaryIO:
        if name == "stderr":
            if self.terminal_stderr is not None:
                return self.terminal_stderr
            return sys.stderr.buffer
        if self.terminal_stdout is not None:
            return self.terminal_stdout
        return sys.stdout.buffer

    def _flush_terminals(self) -> None:
        # Child bytes go straight to the buffers; text already queued goes first.
        if self.terminal_stdout is None:
            sys.stdout.flush()
        if self.terminal_stderr is None:
            sys.stderr.flush()

    @staticmethod
    def _open_pipes(count: int) -> list[tuple[int, int]]:
        pipes: list[tuple[int, int]] = []
        try:
            for _ in range(count):
                pipes.append(os.pipe())
        except OSError as exc:
            _close_fds(fd for pair in pipes for fd in pair)
            raise SupervisorError("pipe", exc) from exc
        return pipes

    @staticmethod
    def _start(name: str, target: Callable[..., None], args: tuple[object, ...]) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        try:
            thread.start()
        except RuntimeError as exc:
            raise SupervisorError("thread", exc) from exc

    def _spawn(
        self, argv: Sequence[str], stdout_fd: int, stderr_fd: int
    ) -> subprocess.Popen[bytes] | None:
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdout=stdout_fd,
                stderr=stderr_fd,
            )
        except OSError as exc:
            logger.error("%s: %s", argv[0], exc.strerror or exc)
            return None
        logger.debug("spawned %s (pid %d)", shlex.join(argv), process.pid)
        return process


def _logger_task(
    multiplexer: StreamMultiplexer,
    log_sink: BinaryIO,
    completions: Queue[tuple[str, ExitStatus | BaseException]],
) -> None:
    status = ExitStatus.exited(0)
    try:
        with log_sink:
            multiplexer.run()
    except Exception:
        logger.exception("logger failed")
        status = ExitStatus.exited(1)
    finally:
        completions.put((LOGGER_NAME, status))


def _wait_task(
    process: subprocess.Popen[bytes],
    completions: Queue[tuple[str, ExitStatus | BaseException]],
) -> None:
    try:
        returncode = process.wait()
    except OSError as exc:
        completions.put((_CHILD, exc))
        return
    completions.put((_CHILD, ExitStatus.from_returncode(returncode)))


def _close_fds(fds: Iterable[int]) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass
