"""Shared pytest fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable

import pytest


@pytest.fixture()
def python_argv() -> Callable[[str], list[str]]:
    """Build an argv that runs ``code`` in a fresh interpreter."""

    def _argv(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return _argv


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CONLOG_HOME", str(tmp_path / "conlog-home"))
    for name in ("CONLOG_LIMIT", "CONLOG_CHUNK_SIZE", "CONLOG_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
