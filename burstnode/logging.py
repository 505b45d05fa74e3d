"""Loguru sinks for burstnode.

The package logs through ``logger.bind(component=...)`` and stays silent
until an application opts in, either directly::

    ids = setup_logging(LogConfig(level="DEBUG", file="burstnode.log"))
    ...
    teardown_logging(ids)

or from the ``[logging]`` section of ``burstnode.toml`` through
``burstnode.config.configure_logging``.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, get_args

from loguru import logger

from burstnode.errors import ConfigurationError

if TYPE_CHECKING:
    from loguru import Record

logger.disable("burstnode")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

LOG_LEVELS: tuple[str, ...] = get_args(LogLevel.__value__)


def _component(record: Record) -> str:
    return record["extra"].get("component", record["name"])


def _console_format(record: Record) -> str:
    record["extra"]["_component"] = _component(record)
    return (
        "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
        "<cyan>{extra[_component]: <9}</cyan> <level>{message}</level>\n{exception}"
    )


def _file_format(record: Record) -> str:
    record["extra"]["_component"] = _component(record)
    return (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {extra[_component]} "
        "{name}:{line} {message}\n{exception}"
    )


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where burstnode logs go.

    ``level`` applies to stderr; the file sink, when ``file`` is set, records
    at ``file_level`` and rolls over per ``rotation``, keeping ``retention``
    old files.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    file_level: LogLevel = "DEBUG"
    rotation: str = "50 MB"
    retention: int = 10

    def __post_init__(self) -> None:
        object.__setattr__(self, "level", _check_level(self.level))
        object.__setattr__(self, "file_level", _check_level(self.file_level))


def _check_level(level: str) -> str:
    normalized = str(level).upper()
    if normalized not in LOG_LEVELS:
        raise ConfigurationError(f"Unknown log level '{level}'. Valid: {', '.join(LOG_LEVELS)}")
    return normalized


def setup_logging(config: LogConfig) -> list[int]:
    """Enable burstnode logging and return the ids of the sinks added."""
    sinks: list[int] = []
    if config.console:
        sinks.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=_console_format,
                colorize=True,
                filter="burstnode",
            )
        )
    if config.file:
        # diagnose=False keeps local variables, and so private keys, out of tracebacks
        sinks.append(
            logger.add(
                config.file,
                level=config.file_level,
                format=_file_format,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,
                enqueue=True,
                filter="burstnode",
            )
        )
    logger.enable("burstnode")
    return sinks


def teardown_logging(sink_ids: list[int]) -> None:
    """Remove sinks added by ``setup_logging`` and silence burstnode again."""
    logger.disable("burstnode")
    for sink_id in sink_ids:
        logger.remove(sink_id)


__all__ = [
    "LOG_LEVELS",
    "LogConfig",
    "LogLevel",
    "setup_logging",
    "teardown_logging",
]
