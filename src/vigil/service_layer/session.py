"""The run use-case: discovery, collection, selection and execution.

`Session.run()` drives one complete run:

1. compile the selection expressions and validate the roots (configuration
   errors stop here, before anything is imported);
2. walk the roots and collect each module, registering fixtures as they are
   found; a module that fails to collect is reported and, unless
   ``continue_on_collection_errors`` is set, aborts the run after collection;
3. resolve every definition's fixture plan, expand parametrizations and
   freeze skip/xfail decisions; a definition that fails here becomes a
   failed report of phase ``collect``;
4. apply the selector;
5. execute the remaining items in collection order, handing each report to
   the reporter.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType

from vigil.config import RunConfig
from vigil.domain.errors import CollectionError, ConfigurationError, DefinitionError
from vigil.domain.model import ExitCode, Outcome, RunResult, TestItem, TestReport
from vigil.interfaces.reporter import Reporter

from . import builtin_fixtures
from .collector import BrokenDefinition, Collector, Definition
from .discovery import walk
from .executor import Executor
from .fixtures import FixtureManager, FixturePlan, FixtureRegistry, FixtureResolver
from .importer import ModuleImporter
from .marks import MarkEvaluator
from .selection import Selector

logger = logging.getLogger(__name__)


@dataclass
class Entry:
    """One collected item: runnable (with a plan) or broken (with an error)."""

    item: TestItem
    plan: FixturePlan | None = None
    error: DefinitionError | None = None


@dataclass
class Collection:
    """Outcome of the collection and selection passes."""

    selected: list[Entry] = field(default_factory=list)
    deselected: list[Entry] = field(default_factory=list)
    errors: list[CollectionError] = field(default_factory=list)

    @property
    def nodeids(self) -> list[str]:
        """Node ids of the selected entries, in execution order."""
        return [entry.item.nodeid for entry in self.selected]


class Session:
    """Runs tests according to a `RunConfig`, reporting to a `Reporter`.

    Args:
        config: The run configuration.
        reporter: Receives collection errors, per-item reports and the result.
    """

    def __init__(self, config: RunConfig, reporter: Reporter) -> None:
        self.config = config
        self.reporter = reporter
        self.registry = FixtureRegistry()
        self.manager = FixtureManager()
        self.evaluator = MarkEvaluator(
            config.registered_marks,
            strict=config.strict_markers,
            xfail_strict=config.xfail_strict,
        )

    # --- Public API ---

    def collect(self) -> Collection:
        """Collect and select without executing anything.

        Raises:
            ConfigurationError: If the configuration or an expression is invalid.
        """
        rootdir = self.config.resolved_rootdir()
        selector = Selector.from_config(self.config, rootdir)
        paths = self._paths()
        with ModuleImporter(rootdir, self.config.import_mode) as importer:
            return self._collect(paths, importer, selector)

    def run(self) -> RunResult:
        """Execute a complete run.

        Configuration errors do not raise: they produce a result with
        `ExitCode.USAGE_ERROR` and `usage_error` set.
        """
        result = RunResult()
        try:
            rootdir = self.config.resolved_rootdir()
            selector = Selector.from_config(self.config, rootdir)
            paths = self._paths()
            with ModuleImporter(rootdir, self.config.import_mode) as importer:
                collection = self._collect(paths, importer, selector)
                result.collection_errors.extend(collection.errors)
                result.deselected = len(collection.deselected)
                if collection.errors and not self.config.continue_on_collection_errors:
                    logger.error(
                        "Interrupted: %d error(s) during collection", len(collection.errors)
                    )
                    result.exit_code = ExitCode.INTERRUPTED
                else:
                    self.reporter.on_collection_finish(
                        len(collection.selected), len(collection.deselected)
                    )
                    interrupted = self._execute(collection.selected, result)
                    result.exit_code = self._exit_code(result, interrupted)
        except ConfigurationError as e:
            logger.error("Usage error: %s", e)
            result.usage_error = e
            result.exit_code = ExitCode.USAGE_ERROR

        self.reporter.on_finish(result)
        logger.info("Run finished with exit code %d", result.exit_code)
        return result

    # --- Collection ---

    def _paths(self) -> Iterator[Path]:
        return walk(
            self.config.root_paths,
            self.config.include_patterns,
            self.config.exclude_dirs,
        )

    def _collect(
        self, paths: Iterable[Path], importer: ModuleImporter, selector: Selector
    ) -> Collection:
        self.registry = FixtureRegistry()
        self.registry.parse(builtin_fixtures, None)
        collector = Collector(self.config, importer, self.registry, self.evaluator)
        resolver = FixtureResolver(self.registry)

        collection = Collection()
        entries: list[Entry] = []
        for path in paths:
            try:
                definitions = collector.collect(path)
            except CollectionError as e:
                logger.error("Collection of %s failed: %s", path, e)
                collection.errors.append(e)
                self.reporter.on_collection_error(e)
                continue
            module = collector.modules[path]
            for definition in definitions:
                entries.extend(self._entries(definition, module, resolver))

        collection.selected, collection.deselected = selector.select(
            entries, key=lambda entry: entry.item
        )
        logger.info(
            "Collected %d items from %d modules",
            len(entries),
            len(collector.modules),
        )
        return collection

    def _entries(
        self, definition: Definition, module: ModuleType, resolver: FixtureResolver
    ) -> list[Entry]:
        if isinstance(definition, BrokenDefinition):
            return [Entry(definition.item, error=definition.error)]
        item = definition
        evaluator = self.evaluator
        try:
            plan = resolver.resolve(
                item.nodeid,
                item.argnames,
                evaluator.usefixtures(item),
                evaluator.direct_params(item),
            )
            namespace = vars(module)
            return [
                Entry(evaluator.evaluate(expanded, namespace), plan)
                for expanded in evaluator.expand(item, plan)
            ]
        except DefinitionError as e:
            logger.error("Cannot set up %s: %s", item.nodeid, e)
            return [Entry(item, error=e)]

    # --- Execution ---

    def _execute(self, entries: list[Entry], result: RunResult) -> bool:
        """Run `entries` in order; return True if interrupted."""
        executor = Executor(self.manager)
        following: list[Entry | None] = [None] * len(entries)
        upcoming: Entry | None = None
        for index in range(len(entries) - 1, -1, -1):
            following[index] = upcoming
            if entries[index].error is None:
                upcoming = entries[index]

        try:
            for entry, nxt in zip(entries, following):
                if entry.error is not None:
                    report = TestReport(
                        nodeid=entry.item.nodeid,
                        outcome=Outcome.FAILED,
                        when="collect",
                        longrepr=str(entry.error),
                    )
                else:
                    assert entry.plan is not None
                    report = executor.run(
                        entry.item,
                        entry.plan,
                        nxt.item if nxt else None,
                        nxt.plan if nxt else None,
                    )
                result.reports.append(report)
                self.reporter.on_report(report)
        except KeyboardInterrupt:
            logger.warning("Interrupted by user; tearing down open fixtures")
            for error in self.manager.close():
                logger.warning("Error during teardown: %s", error)
            return True
        return False

    @staticmethod
    def _exit_code(result: RunResult, interrupted: bool) -> ExitCode:
        if interrupted:
            return ExitCode.INTERRUPTED
        if not result.reports:
            return ExitCode.NO_TESTS_COLLECTED
        if result.failed or result.collection_errors:
            return ExitCode.TESTS_FAILED
        return ExitCode.OK
