"""Wire a session from a configuration and a reporter adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from vigil.adapters.reporters import LoggingReporter, MemoryReporter
from vigil.config import RunConfig
from vigil.domain.errors import ConfigurationError
from vigil.domain.model import RunResult
from vigil.interfaces.reporter import Reporter
from vigil.logging import configure_logging
from vigil.service_layer.session import Session

REPORTERS: Mapping[str, Callable[[], Reporter]] = {
    "logging": LoggingReporter,
    "memory": MemoryReporter,
}


@dataclass(frozen=True)
class AppContainer:
    """A class to hold application wiring."""

    config: RunConfig
    reporter: Reporter
    session: Session
    handlers: list[logging.Handler] = field(default_factory=list)


def build_reporter(kind: str = "logging") -> Reporter:
    """Build a reporter adapter by name.

    Raises:
        ConfigurationError: If `kind` names no known reporter.
    """
    try:
        factory = REPORTERS[kind]
    except KeyError:
        raise ConfigurationError(
            f"unknown reporter {kind!r}; expected one of {', '.join(sorted(REPORTERS))}"
        ) from None
    return factory()


def bootstrap(
    config: RunConfig | None = None,
    reporter: Reporter | str = "logging",
    *,
    setup_logging: bool = False,
    level: int = logging.INFO,
    debug_mode: bool = False,
) -> AppContainer:
    """Assemble a session ready to run.

    Args:
        config: The run configuration; read from ``VIGIL_*`` environment
            variables when omitted.
        reporter: A reporter instance, or the name of a reporter adapter.
        setup_logging: Install VIGIL's console handler (and flight recorder).
        level: Console level when `setup_logging` is set.
        debug_mode: Debug console formatting when `setup_logging` is set.

    Returns:
        The wired container.
    """
    config = config if config is not None else RunConfig.from_env()
    handlers = (
        configure_logging(config, level=level, debug_mode=debug_mode)
        if setup_logging
        else []
    )
    if isinstance(reporter, str):
        reporter = build_reporter(reporter)
    return AppContainer(
        config=config,
        reporter=reporter,
        session=Session(config, reporter),
        handlers=handlers,
    )


def run(config: RunConfig | None = None, reporter: Reporter | str = "logging", **kwargs) -> RunResult:
    """Bootstrap and execute one run, returning its result."""
    return bootstrap(config, reporter, **kwargs).session.run()
