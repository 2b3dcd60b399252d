"""Console logger: tee a command's output to the terminal and a capped log file."""

from .version import __version__  # noqa: F401
