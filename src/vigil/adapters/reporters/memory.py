"""In-memory reporter.

Records every notification it receives. Intended for tests and for embedding
the engine in another program that inspects results afterwards.
"""

from vigil.domain.errors import CollectionError
from vigil.domain.model import Outcome, RunResult, TestReport
from vigil.interfaces.reporter import Reporter


class MemoryReporter(Reporter):
    """Reporter that keeps everything it is told in lists."""

    def __init__(self) -> None:
        self.collection_errors: list[CollectionError] = []
        self.reports: list[TestReport] = []
        self.selected: int | None = None
        self.deselected: int | None = None
        self.result: RunResult | None = None
        self.events: list[str] = []

    def on_collection_error(self, error: CollectionError) -> None:
        self.events.append("collection_error")
        self.collection_errors.append(error)

    def on_collection_finish(self, selected: int, deselected: int) -> None:
        self.events.append("collection_finish")
        self.selected = selected
        self.deselected = deselected

    def on_report(self, report: TestReport) -> None:
        self.events.append("report")
        self.reports.append(report)

    def on_finish(self, result: RunResult) -> None:
        self.events.append("finish")
        self.result = result

    # --- Test helpers ---

    @property
    def nodeids(self) -> list[str]:
        """Node ids of the received reports, in order."""
        return [report.nodeid for report in self.reports]

    def outcome_of(self, nodeid: str) -> Outcome:
        """Outcome reported for `nodeid`.

        Raises:
            KeyError: If nothing was reported for `nodeid`.
        """
        for report in self.reports:
            if report.nodeid == nodeid:
                return report.outcome
        raise KeyError(nodeid)
