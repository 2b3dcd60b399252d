"""Configuration defaults loaded from ``config.toml`` and the environment."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from conlog.runner.log_stream import DEFAULT_CHUNK_SIZE
from conlog.sizes import parse_size

__all__ = ["ConfigError", "ConlogConfig", "config_path", "load_config"]

_CONFIG_FILENAME = "config.toml"
_DEFAULT_LOG_LEVEL = "WARNING"
_ENV_HOME = "CONLOG_HOME"
_ENV_LIMIT = "CONLOG_LIMIT"
_ENV_CHUNK_SIZE = "CONLOG_CHUNK_SIZE"
_ENV_LOG_LEVEL = "CONLOG_LOG_LEVEL"


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


@dataclass(slots=True)
class ConlogConfig:
    """Settings for a logging run. ``limit=None`` means the log is unbounded."""

    limit: int | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = _DEFAULT_LOG_LEVEL

    def merged(
        self,
        *,
        limit: int | None = None,
        chunk_size: int | None = None,
        log_level: str | None = None,
    ) -> ConlogConfig:
        """Return a copy that applies CLI/env overrides."""

        return replace(
            self,
            limit=self.limit if limit is None else limit,
            chunk_size=chunk_size or self.chunk_size,
            log_level=log_level or self.log_level,
        )


def _config_dir() -> Path:
    custom = os.environ.get(_ENV_HOME)
    return Path(custom) if custom else Path.home() / ".conlog"


def config_path() -> Path:
    """Return the path of the optional configuration file."""

    return _config_dir() / _CONFIG_FILENAME


def _coerce_limit(value: object, source: str) -> int | None:
    if isinstance(value, bool):
        raise ConfigError(f"{source}: limit must be a size, not a boolean")
    if isinstance(value, int):
        return None if value < 0 else value
    if isinstance(value, str):
        if value.strip() == "-1":
            return None
        try:
            return parse_size(value)
        except ValueError as exc:
            raise ConfigError(f"{source}: {exc}") from exc
    raise ConfigError(f"{source}: unsupported limit {value!r}")


def _coerce_chunk_size(value: object, source: str) -> int:
    try:
        size = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{source}: chunk_size must be an integer") from exc
    if size <= 0:
        raise ConfigError(f"{source}: chunk_size must be positive")
    return size


def _coerce_log_level(value: object, source: str) -> str:
    level = str(value).upper()
    if level not in logging.getLevelNamesMapping():
        raise ConfigError(f"{source}: unknown log level {value!r}")
    return level


def load_config() -> ConlogConfig:
    """Load configuration from disk + environment overrides."""

    data: dict[str, Any] = {}
    path = config_path()
    if path.exists():
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path}: {exc}") from exc

    source = str(path)
    config = ConlogConfig(
        limit=_coerce_limit(data["limit"], source) if "limit" in data else None,
        chunk_size=_coerce_chunk_size(data.get("chunk_size", DEFAULT_CHUNK_SIZE), source),
        log_level=_coerce_log_level(data.get("log_level", _DEFAULT_LOG_LEVEL), source),
    )

    env_limit = os.environ.get(_ENV_LIMIT)
    env_chunk = os.environ.get(_ENV_CHUNK_SIZE)
    env_level = os.environ.get(_ENV_LOG_LEVEL)
    if env_limit is not None:
        config = replace(config, limit=_coerce_limit(env_limit, _ENV_LIMIT))
    return config.merged(
        chunk_size=_coerce_chunk_size(env_chunk, _ENV_CHUNK_SIZE) if env_chunk else None,
        log_level=_coerce_log_level(env_level, _ENV_LOG_LEVEL) if env_level else None,
    )
