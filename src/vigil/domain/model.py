"""Core value objects: scopes, fixtures, test items, outcomes, reports and results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

from .marks import MarkVariant, XFail


class Scope(Enum):
    """Fixture lifetime boundaries, ordered from narrowest to broadest."""

    FUNCTION = "function"
    CLASS = "class"
    MODULE = "module"
    SESSION = "session"

    @property
    def rank(self) -> int:
        """0 for the narrowest scope, increasing with breadth."""
        return _SCOPE_ORDER.index(self)

    @classmethod
    def shared(cls) -> tuple[Scope, ...]:
        """Scopes whose instances outlive a single item, broadest first."""
        return (cls.SESSION, cls.MODULE, cls.CLASS)


_SCOPE_ORDER = (Scope.FUNCTION, Scope.CLASS, Scope.MODULE, Scope.SESSION)


class Outcome(Enum):
    """Final result of a test item."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    XFAILED = "xfailed"
    XPASSED = "xpassed"


@dataclass(frozen=True, eq=False)
class FixtureDef:
    """A registered fixture definition.

    Instances compare by identity: two definitions with the same name at
    different visibility levels are distinct fixtures.

    Notes:
      - `baseid` is the node id prefix under which the fixture is visible
        ("" for the rootdir, `None` for builtins visible everywhere).
      - `params` makes the fixture parametrized; each requesting item is
        expanded once per value.
    """

    # pylint: disable=too-many-instance-attributes

    name: str
    func: Callable[..., Any]
    scope: Scope = Scope.FUNCTION
    baseid: str | None = None
    argnames: tuple[str, ...] = ()
    params: tuple[Any, ...] | None = None
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None
    autouse: bool = False
    cls: type | None = None

    def __repr__(self) -> str:
        return f"<FixtureDef {self.name!r} scope={self.scope.value} baseid={self.baseid!r}>"


@dataclass(frozen=True)
class CallSpec:
    """Parameter bindings of one expanded item.

    Attributes:
        params: Argument name -> value, for direct parametrization and
            parametrized fixtures alike. Values are bound by reference.
        indices: Argument name -> index of the parameter set it came from.
        ids: The id fragments, in the order they were added.
    """

    params: Mapping[str, Any] = field(default_factory=dict)
    indices: Mapping[str, int] = field(default_factory=dict)
    ids: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        """The combined parameter id used as the nodeid suffix."""
        return "-".join(self.ids)

    def extend(
        self, names: Sequence[str], values: Sequence[Any], index: int, id_: str
    ) -> CallSpec:
        """Return a new CallSpec with one more parameter set bound."""
        params = dict(self.params)
        indices = dict(self.indices)
        for name, value in zip(names, values):
            params[name] = value
            indices[name] = index
        return CallSpec(params=params, indices=indices, ids=(*self.ids, id_))


@dataclass(frozen=True)
class TestItem:
    """A collected, fully expanded test.

    `nodeid` is the reporting identity: the rootdir-relative module path,
    the `::`-joined qualified name and, for expanded items, a `[id]` suffix.
    """

    # pylint: disable=too-many-instance-attributes

    __test__ = False  # keep pytest from collecting this class

    nodeid: str
    path: Path
    module_name: str
    qualname: str
    func: Callable[..., Any]
    cls: type | None = None
    is_static: bool = False
    argnames: tuple[str, ...] = ()
    marks: tuple[MarkVariant, ...] = ()
    callspec: CallSpec | None = None
    skip_reason: str | None = None
    xfail: XFail | None = None

    @property
    def name(self) -> str:
        """The function name plus parameter id suffix, if any."""
        base = self.qualname.rsplit(".", 1)[-1]
        return f"{base}[{self.callspec.id}]" if self.callspec else base

    @property
    def fqname(self) -> str:
        """Module-qualified name, used to detect collisions."""
        return f"{self.module_name}.{self.qualname}"

    @property
    def mark_names(self) -> frozenset[str]:
        """Names of every mark attached to the item."""
        return frozenset(mark.name for mark in self.marks)


@dataclass(frozen=True)
class TestReport:
    """What the output collaborator receives for each item."""

    __test__ = False

    nodeid: str
    outcome: Outcome
    when: str = "call"
    duration: float = 0.0
    longrepr: str | None = None

    @property
    def passed(self) -> bool:
        """True if the item passed."""
        return self.outcome is Outcome.PASSED

    @property
    def failed(self) -> bool:
        """True if the item failed (including strict xpass)."""
        return self.outcome is Outcome.FAILED

    @property
    def skipped(self) -> bool:
        """True if the item was skipped."""
        return self.outcome is Outcome.SKIPPED


class ExitCode(IntEnum):
    """Process exit status an entry point would return for a run."""

    OK = 0
    TESTS_FAILED = 1
    INTERRUPTED = 2
    USAGE_ERROR = 4
    NO_TESTS_COLLECTED = 5


@dataclass
class RunResult:
    """Aggregate of one run.

    Attributes:
        reports: One report per executed item (or broken definition), in
            execution order.
        collection_errors: Errors of modules that could not be collected.
        deselected: Number of items removed by selection.
        exit_code: Summary status of the run.
        usage_error: The configuration error that prevented the run, if any.
    """

    reports: list[TestReport] = field(default_factory=list)
    collection_errors: list[Exception] = field(default_factory=list)
    deselected: int = 0
    exit_code: ExitCode = ExitCode.OK
    usage_error: Exception | None = None

    @property
    def counts(self) -> Counter[Outcome]:
        """Number of reports per outcome."""
        return Counter(report.outcome for report in self.reports)

    @property
    def failed(self) -> list[TestReport]:
        """Reports of failed items."""
        return [report for report in self.reports if report.failed]

    def report_for(self, nodeid: str) -> TestReport:
        """Return the report of `nodeid`.

        Raises:
            KeyError: If no item with that node id was reported.
        """
        for report in self.reports:
            if report.nodeid == nodeid:
                return report
        raise KeyError(nodeid)

    def outcomes(self) -> dict[str, Outcome]:
        """Node id -> outcome, in execution order."""
        return {report.nodeid: report.outcome for report in self.reports}
