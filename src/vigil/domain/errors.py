"""Domain-layer error definitions."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

# ============================================================================
#                           General errors
# ============================================================================


class VigilError(Exception):
    """Base class for VIGIL errors."""


class ConfigurationError(VigilError):
    """Raised when the run configuration is unusable.

    Configuration errors are fatal and abort the run before collection.
    """


class ParseError(ConfigurationError):
    """Raised when a selection expression is malformed.

    Attributes:
        expression (str): The expression being parsed.
        column (int): 1-based column of the offending token.
        token (str): The offending token text ("" at end of input).
    """

    def __init__(self, expression: str, column: int, token: str, message: str):
        super().__init__(
            f"Invalid expression {expression!r} at column {column}: {message}"
        )
        self.expression = expression
        self.column = column
        self.token = token
        self.message = message


# ============================================================================
#                   Module-level collection errors
# ============================================================================


class CollectionError(VigilError):
    """Raised when a module cannot be collected.

    Attributes:
        path (Path): The module that failed to collect.
    """

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class CollisionError(CollectionError):
    """Raised when two sources resolve to the same qualified name."""

    def __init__(self, name: str, existing: Path | str, path: Path) -> None:
        super().__init__(
            path,
            f"name {name!r} is already provided by {existing}. "
            "Use unique basenames for test modules or the 'importlib' import mode.",
        )
        self.name = name
        self.existing = existing


# ============================================================================
#                   Item-level collection errors
# ============================================================================


class DefinitionError(VigilError):
    """Base class for errors that fail a single test definition.

    These never abort sibling items; the affected item is reported as failed
    during collection.
    """


class FixtureLookupError(DefinitionError, LookupError):
    """Raised when a requested fixture name cannot be resolved.

    Attributes:
        name (str): The fixture name that was requested.
        requested_by (str): The item or fixture that requested it.
        available (list[str]): Fixture names visible from the requester.
    """

    def __init__(self, name: str, requested_by: str, available: Sequence[str]):
        super().__init__(
            f"fixture {name!r} not found (requested by {requested_by}). "
            f"Available fixtures: {', '.join(sorted(available)) or '<none>'}"
        )
        self.name = name
        self.requested_by = requested_by
        self.available = sorted(available)


class CyclicDependencyError(DefinitionError):
    """Raised when fixtures depend on each other in a cycle.

    Attributes:
        cycle (list[str]): Fixture names forming the cycle, with the first
            name repeated at the end.
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        super().__init__(f"cyclic fixture dependency: {' -> '.join(cycle)}")
        self.cycle = list(cycle)


class ScopeMismatchError(DefinitionError):
    """Raised when a fixture requests a fixture with a narrower scope."""

    def __init__(
        self, name: str, scope: str, requested: str, requested_scope: str
    ) -> None:
        super().__init__(
            f"{scope}-scoped fixture {name!r} cannot request "
            f"{requested_scope}-scoped fixture {requested!r}"
        )
        self.name = name
        self.scope = scope
        self.requested = requested
        self.requested_scope = requested_scope


class InvalidMarkError(DefinitionError):
    """Raised when a mark is declared with unusable arguments."""


# ============================================================================
#                   Outcome signals raised from test code
# ============================================================================


class OutcomeException(BaseException):  # noqa: N818
    """Base class for control-flow signals raised inside tests and fixtures.

    Derives from BaseException so that `except Exception` blocks in test
    code do not swallow them.
    """

    def __init__(self, msg: str = "") -> None:
        super().__init__(msg)
        self.msg = msg


class Skipped(OutcomeException):
    """Raised by `vigil.skip()` to skip the running test."""


class Failed(OutcomeException):
    """Raised by `vigil.fail()` to fail the running test without a traceback."""


# ============================================================================
#                               Warnings
# ============================================================================


class UnknownMarkWarning(UserWarning):
    """Emitted when a test uses a mark name that was never registered."""
