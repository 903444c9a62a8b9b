"""Reporter that forwards results to the logging system.

With `vigil.logging.configure_logging` in place this gives Rich-formatted
console output; without it, records follow whatever handlers the host
program installed.
"""

import logging

from vigil.domain.errors import CollectionError
from vigil.domain.model import ExitCode, Outcome, RunResult, TestReport
from vigil.interfaces.reporter import Reporter

_LEVELS = {
    Outcome.PASSED: logging.INFO,
    Outcome.SKIPPED: logging.INFO,
    Outcome.XFAILED: logging.INFO,
    Outcome.XPASSED: logging.WARNING,
    Outcome.FAILED: logging.ERROR,
}


class LoggingReporter(Reporter):
    """Logs one record per notification.

    Args:
        logger: Target logger; defaults to this module's logger.
        show_longrepr: Include failure details in failure records.
    """

    def __init__(
        self, logger: logging.Logger | None = None, *, show_longrepr: bool = True
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.show_longrepr = show_longrepr

    def on_collection_error(self, error: CollectionError) -> None:
        self.logger.error("ERROR collecting %s", error)

    def on_collection_finish(self, selected: int, deselected: int) -> None:
        if deselected:
            self.logger.info("collected %d items / %d deselected", selected + deselected, deselected)
        else:
            self.logger.info("collected %d items", selected)

    def on_report(self, report: TestReport) -> None:
        level = _LEVELS[report.outcome]
        label = report.outcome.value.upper()
        if report.failed and report.when != "call":
            label = f"ERROR at {report.when}"
        if report.longrepr and (self.show_longrepr or not report.failed):
            self.logger.log(level, "%s %s: %s", report.nodeid, label, report.longrepr)
        else:
            self.logger.log(level, "%s %s", report.nodeid, label)

    def on_finish(self, result: RunResult) -> None:
        if result.usage_error is not None:
            self.logger.error("usage error: %s", result.usage_error)
        counts = result.counts
        parts = [
            f"{counts[outcome]} {outcome.value}" for outcome in Outcome if counts[outcome]
        ]
        if result.collection_errors:
            parts.append(f"{len(result.collection_errors)} errors")
        if result.deselected:
            parts.append(f"{result.deselected} deselected")
        summary = ", ".join(parts) or "no tests ran"
        level = logging.INFO if result.exit_code is ExitCode.OK else logging.WARNING
        self.logger.log(level, "%s (exit code %d)", summary, result.exit_code)
