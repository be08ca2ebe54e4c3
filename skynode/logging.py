"""Opt-in loguru sinks for skynode.

skynode logs through loguru but stays silent until setup_logging() is
called. Records carry their bound context (component, node, instance_id,
...) and both sinks render it after the call site.

Example:
    from skynode.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="skynode.log"))
    try:
        node.kill()
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

logger.disable("skynode")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

_CONTEXT_KEYS = ("component", "provider", "node", "instance_id", "path")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
    "<cyan>{name}</cyan><dim>{extra[_ctx]}</dim> {message}"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{line}{extra[_ctx]} {message}"


def _with_context(record: Any) -> None:
    extra = record["extra"]
    pairs = " ".join(f"{key}={extra[key]}" for key in _CONTEXT_KEYS if key in extra)
    extra["_ctx"] = f" [{pairs}]" if pairs else ""


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where skynode logs go.

    Attributes:
        level: Console threshold. The file sink always records DEBUG and up.
        file: Log file path; no file sink when None.
        console: Echo records to stderr.
        rotation: loguru rotation rule for the file sink.
        retention: Rotated files kept.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Enable skynode records and add the configured sinks.

    Returns:
        Sink ids to hand to teardown_logging().
    """
    logger.enable("skynode")
    logger.configure(patcher=_with_context)
    sinks: list[int] = []

    if config.console:
        sinks.append(logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="skynode",
        ))

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        # enqueue: tail threads log concurrently with the caller
        sinks.append(logger.add(
            config.file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,
            enqueue=True,
            filter="skynode",
        ))

    return sinks


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove the sinks from setup_logging() and silence skynode again."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("skynode")
