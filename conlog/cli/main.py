"""Click-based CLI: ``conlog [-o bytes[k|M]] logfile command ...``."""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import click

from conlog.config import ConlogConfig, load_config
from conlog.runner import UNBOUNDED, ChildSupervisor, SupervisorError
from conlog.sizes import parse_size

_PACKAGE_LOGGER = "conlog"


class ConlogCommand(click.Command):
    """Command that reports every usage error with exit status 1."""

    def make_context(
        self,
        info_name: str | None,
        args: list[str],
        parent: click.Context | None = None,
        **extra: Any,
    ) -> click.Context:
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


class ConlogUsageError(click.UsageError):
    exit_code = 1


def configure_logging(config: ConlogConfig, *, verbose: bool = False) -> None:
    """Send package diagnostics to stderr as bare lines."""

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else config.log_level)


@click.command(
    cls=ConlogCommand,
    context_settings={
        "allow_interspersed_args": False,
        "help_option_names": ["-h", "--help"],
    },
)
@click.option(
    "-o",
    "limit",
    metavar="BYTES[k|M]",
    help="Stop logging once the log would grow past this many bytes (-1: no limit).",
)
@click.option("-v", "--verbose", is_flag=True, help="Report channel and process events.")
@click.argument("logfile", type=click.Path(dir_okay=False, path_type=Path))
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def app(
    ctx: click.Context,
    limit: str | None,
    verbose: bool,
    logfile: Path,
    command: Sequence[str],
) -> None:
    """Run COMMAND, copying its output to the terminal and to LOGFILE."""

    try:
        config = load_config()
        if limit == str(UNBOUNDED):
            config = replace(config, limit=None)
        elif limit is not None:
            config = config.merged(limit=parse_size(limit))
    except ValueError as exc:
        raise ConlogUsageError(str(exc), ctx=ctx) from exc
    configure_logging(config, verbose=verbose)

    supervisor = ChildSupervisor(chunk_size=config.chunk_size)
    try:
        result = supervisor.run_command(logfile, config.limit, command)
    except SupervisorError as exc:
        click.echo(str(exc), err=True)
        ctx.exit(1)
    ctx.exit(result.exit_code)


def main() -> None:
    """Entry point for console_scripts."""

    app(standalone_mode=True)
