"""Logging configuration.

droprunner logs through loguru with structured fields attached by
``logger.bind`` (``hostname``, ``ip``, ``id``, ``step``, ``path``...). Logging is
disabled until the hosting runner calls ``setup_logging``; records then carry
their bound fields rendered as ``key=value`` after the message.

Example:
    from droprunner.logging import LogConfig, setup_logging, teardown_logging

    handlers = setup_logging(LogConfig.from_environ())
    ...
    teardown_logging(handlers)
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, cast, get_args

from loguru import logger

from droprunner.errors import ConfigError

if TYPE_CHECKING:
    from loguru import Record

logger.disable("droprunner")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_FIELDS = "_fields"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level> {extra[_fields]}\n{exception}"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message} {extra[_fields]}\n{exception}"
)


def render_fields(extra: Mapping[str, object]) -> str:
    """Render bound fields as sorted ``key=value`` pairs."""
    return " ".join(f"{k}={extra[k]}" for k in sorted(extra) if k != _FIELDS)


def _formatter(template: str) -> Callable[[Record], str]:
    # substituted values are not parsed as markup, so fields may hold braces or tags
    def format_record(record: Record) -> str:
        record["extra"][_FIELDS] = render_fields(record["extra"])
        return template

    return format_record


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console level.
        file: Optional log file; captures everything from TRACE up.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "50 MB").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> LogConfig:
        """Read ``DRONE_LOG_LEVEL`` and ``DRONE_LOG_FILE``."""
        env = os.environ if environ is None else environ
        level = env.get("DRONE_LOG_LEVEL", "INFO").upper()
        if level not in get_args(LogLevel.__value__):
            raise ConfigError(f"Invalid DRONE_LOG_LEVEL: {level!r}")
        return cls(level=cast(LogLevel, level), file=env.get("DRONE_LOG_FILE") or None)


def setup_logging(config: LogConfig) -> list[int]:
    """Enable droprunner logging and return the ids of the added handlers."""
    logger.enable("droprunner")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=_formatter(CONSOLE_FORMAT),
            colorize=True,
            filter="droprunner",
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="TRACE",
            format=_formatter(FILE_FORMAT),
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # tracebacks may hold secret values
            enqueue=True,
            filter="droprunner",
        ))

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("droprunner")
