"""Reporter port: the output collaborator of a run.

The session calls the hooks in this order:

1. `on_collection_error` for each module that failed to collect;
2. `on_collection_finish` once, with the selected and deselected counts;
3. `on_report` once per item, in execution order;
4. `on_finish` with the aggregated `RunResult`.

Formatting (terminal output, XML, ...) is the adapter's business.
"""

import abc

from vigil.domain.errors import CollectionError
from vigil.domain.model import RunResult, TestReport


class Reporter(abc.ABC):
    """Contract for receiving run progress and results."""

    @abc.abstractmethod
    def on_collection_error(self, error: CollectionError) -> None:
        """A module could not be collected."""

    @abc.abstractmethod
    def on_collection_finish(self, selected: int, deselected: int) -> None:
        """Collection and selection are done; execution is about to start."""

    @abc.abstractmethod
    def on_report(self, report: TestReport) -> None:
        """An item finished (or failed to collect)."""

    @abc.abstractmethod
    def on_finish(self, result: RunResult) -> None:
        """The run is over."""
