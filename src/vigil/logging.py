"""Logging helpers used by VIGIL.

Console output goes through Rich. Engine records are labelled with the
stage that emitted them ("[collect]", "[fixtures]", "[run]", ...), while
records from any other logger, including the code under test, carry the
top-level name of their logger. An optional in-memory "flight recorder"
keeps the detailed record of a run and writes it to disk only when
something goes wrong.
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from importlib.metadata import PackageNotFoundError, version
from logging.handlers import MemoryHandler
from pathlib import Path
from typing import TYPE_CHECKING, Literal, TypeAlias

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from logging import Logger

    from vigil.config import RunConfig

# pylint: disable=too-few-public-methods

PROJECT_PREFIX = "vigil"

# engine module -> console label
STAGE_LABELS = {
    "discovery": "discover",
    "importer": "collect",
    "collector": "collect",
    "fixtures": "fixtures",
    "builtin_fixtures": "fixtures",
    "marks": "marks",
    "expression": "select",
    "selection": "select",
    "executor": "run",
}


def record_label(name: str) -> str:
    """Return the console label for records of logger `name`.

    Engine loggers map to their stage, other VIGIL loggers (session,
    reporters, bootstrap) to no label, and foreign loggers to their
    top-level package.

    Examples:
        ```py
        record_label("vigil.service_layer.executor")  # "[run]"
        record_label("urllib3.connectionpool")  # "[urllib3]"
        ```
    """
    head, _, _ = name.partition(".")
    if head != PROJECT_PREFIX:
        return f"[{head}]"
    stage = STAGE_LABELS.get(name.rsplit(".", 1)[-1])
    return f"[{stage}]" if stage else ""


class StageLabelFilter(logging.Filter):
    """Set `record.label` for the console format; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.label = record_label(record.name)
        return True


def config_console_handler(
    level: int = logging.INFO, debug_mode: bool = False, color: bool = True
) -> RichHandler:
    """Configure and return a RichHandler for console output.

    The handler writes to stderr. Node ids contain brackets (``test_x[1]``),
    so Rich markup stays off and messages are printed as they are. In debug
    mode the level is forced to DEBUG and each record shows its logger name
    and source location instead of a stage label.

    Args:
        level: Minimum level for console output (overridden to DEBUG in debug_mode).
        debug_mode: When True, show logger names, timestamps and source paths.
        color: Enable color output when True.

    Returns:
        RichHandler: Configured handler suitable to attach to the root logger.
    """
    ColorSystem: TypeAlias = Literal["auto", "standard", "256", "truecolor", "windows"]
    color_system: ColorSystem | None = "auto" if color else None
    console = Console(color_system=color_system, stderr=True)

    handler = RichHandler(
        level=logging.DEBUG if debug_mode else level,
        console=console,
        markup=False,
        rich_tracebacks=True,
        show_time=debug_mode,
        show_path=debug_mode,
        enable_link_path=debug_mode,
    )
    if debug_mode:
        handler.setFormatter(logging.Formatter(fmt="%(name)s: %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(fmt="%(label)s %(message)s"))
        handler.addFilter(StageLabelFilter())
    return handler


def config_flight_recorder(
    path: Path,
    capacity: int = 5000,
    flush_level: int = logging.ERROR,
) -> MemoryHandler:
    """Configure and return an in-memory flight recorder backed by a file.

    Up to `capacity` records are buffered. They are written to `path` when
    a record at `flush_level` or higher arrives or the buffer fills up.
    Failing tests and collection errors are logged at ERROR, so a short
    clean run leaves no file behind. Records still buffered when the
    handler closes are dropped.

    Args:
        path: Destination file; its directory is created if needed.
        capacity: Number of records to buffer in memory.
        flush_level: Level at or above which the buffer is written out.

    Returns:
        MemoryHandler: A memory-backed handler with a FileHandler target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, mode="w", encoding="utf-8", delay=True)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] %(levelname)-8s %(name)s:%(lineno)d: %(message)s"
        )
    )
    return MemoryHandler(
        capacity=capacity,
        flushLevel=flush_level,
        target=file_handler,
        flushOnClose=False,
    )


def configure_logging(
    config: RunConfig,
    *,
    level: int = logging.WARNING,
    debug_mode: bool = False,
    color: bool = True,
) -> list[logging.Handler]:
    """Install VIGIL's console handler (and flight recorder) on the root logger.

    Args:
        config: Run configuration; `config.log_path` enables the flight recorder.
        level: Console level.
        debug_mode: Enable debug formatting on the console.
        color: Enable color output.

    Returns:
        The handlers that were installed.
    """
    handlers: list[logging.Handler] = [
        config_console_handler(level=level, debug_mode=debug_mode, color=color)
    ]
    if config.log_path is not None:
        handlers.append(config_flight_recorder(path=config.log_path))

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)

    log_startup(
        logging.getLogger(PROJECT_PREFIX),
        level=level,
        handlers=handlers,
        config=config,
    )
    return handlers


def _dist_version(name: str) -> str:
    try:
        return version(name)
    except PackageNotFoundError:
        return "<not installed>"


def log_startup(
    logger: Logger,
    *,
    level: int,
    handlers: list[logging.Handler],
    config: RunConfig,
) -> None:
    """Log a human-friendly startup line and detailed diagnostics.

    Args:
        logger: Logger used to emit startup messages.
        level: Effective console logging level (numeric).
        handlers: Active logging handlers attached to the root logger.
        config: The run configuration.
    """
    logger.info(
        "VIGIL %s: console=%s, flight-recorder=%s",
        _dist_version("vigil"),
        logging.getLevelName(level),
        "ON" if config.log_path else "OFF",
    )

    logger.debug("Python: %s", sys.version.split()[0])
    logger.debug("Platform: %s %s", platform.system(), platform.release())
    logger.debug("PID: %s", os.getpid())
    logger.debug("CWD: %s", Path.cwd())
    logger.debug("Rich: %s", _dist_version("rich"))
    logger.debug("Handlers: %s", [type(h).__name__ for h in handlers])
    logger.debug(
        "Roots: %s, import mode: %s, mark expression: %r, keyword expression: %r",
        list(config.roots),
        config.import_mode.value,
        config.mark_expression,
        config.keyword_expression,
    )
    if config.log_path:
        logger.debug("Flight recorder: path=%s", config.log_path)
