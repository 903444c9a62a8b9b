"""Public API used inside test modules.

Test authors decorate functions and classes with the objects defined here:

- ``@fixture`` / ``@fixture(scope="module", params=[...], autouse=True)``
- ``@mark.skip(reason=...)``, ``@mark.skipif(cond, reason=...)``,
  ``@mark.xfail(...)``, ``@mark.parametrize("a, b", [...])``,
  ``@mark.usefixtures("name")`` and any custom ``@mark.<name>``
- ``param(*values, marks=..., id=...)`` for a single parameter set
- ``skip(reason)`` / ``fail(reason)`` to end a running test imperatively

Decorators only *record* metadata (a `FixtureMarker` or a list of raw
`Mark`s) on the decorated object. The collector reads it once and turns it
into explicit registry entries and tagged mark variants; nothing else ever
looks at these attributes.

Example:
    ```py
    import vigil

    @vigil.fixture(scope="module")
    def db():
        conn = connect()
        yield conn
        conn.close()

    @vigil.mark.parametrize("n", [1, 2, 3])
    def test_positive(db, n):
        assert n > 0
    ```
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, NoReturn, TypeVar, overload

from vigil.domain.errors import Failed, Skipped
from vigil.domain.marks import Mark, ParameterSet
from vigil.domain.model import Scope

# pylint: disable=too-few-public-methods

FIXTURE_ATTR = "_vigil_fixture"
MARKS_ATTR = "_vigil_marks"
MODULE_MARKS_ATTR = "vigilmark"

F = TypeVar("F", bound=Callable[..., Any])


# ============================================================================
#                               Fixtures
# ============================================================================


@dataclass(frozen=True)
class FixtureMarker:
    """Metadata recorded by `@fixture` on a fixture function."""

    scope: Scope = Scope.FUNCTION
    params: tuple[Any, ...] | None = None
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None
    autouse: bool = False
    name: str | None = None

    def __call__(self, function: F) -> F:
        if inspect.isclass(function):
            raise ValueError("class fixtures are not supported")
        if getattr(function, FIXTURE_ATTR, None) is not None:
            raise ValueError(
                f"fixture is being applied more than once to {function.__name__!r}"
            )
        setattr(function, FIXTURE_ATTR, self)
        return function


@overload
def fixture(function: F) -> F: ...


@overload
def fixture(
    function: None = None,
    *,
    scope: str | Scope = "function",
    params: Iterable[Any] | None = None,
    autouse: bool = False,
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None,
    name: str | None = None,
) -> FixtureMarker: ...


def fixture(
    function: F | None = None,
    *,
    scope: str | Scope = "function",
    params: Iterable[Any] | None = None,
    autouse: bool = False,
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None,
    name: str | None = None,
) -> F | FixtureMarker:
    """Declare a fixture producer.

    Usable bare (``@fixture``) or with options (``@fixture(scope="module")``).
    A generator function is torn down by resuming it after its single
    ``yield``.

    Args:
        function: The fixture function when used as a bare decorator.
        scope: Lifetime of an instance: "function", "class", "module" or
            "session".
        params: Optional values; every requesting test runs once per value,
            available to the fixture as ``request.param``.
        autouse: When True, the fixture is used by every test that can see it.
        ids: Optional ids (list or callable) for the params.
        name: Register the fixture under this name instead of the function name.

    Returns:
        The decorated function, or a `FixtureMarker` to apply.

    Raises:
        ValueError: If `scope` is not a known scope name.
    """
    try:
        resolved_scope = scope if isinstance(scope, Scope) else Scope(scope)
    except ValueError:
        raise ValueError(
            f"unknown fixture scope {scope!r}; expected one of "
            f"{', '.join(s.value for s in Scope)}"
        ) from None

    marker = FixtureMarker(
        scope=resolved_scope,
        params=tuple(params) if params is not None else None,
        ids=ids,
        autouse=autouse,
        name=name,
    )
    if function is not None:
        return marker(function)
    return marker


# ============================================================================
#                               Marks
# ============================================================================


def store_mark(obj: Any, mark: Mark) -> None:
    """Append a raw mark to a function or class.

    Classes get a fresh list so marks never leak to their base classes.
    """
    existing = list(obj.__dict__.get(MARKS_ATTR, ())) if inspect.isclass(obj) else list(
        getattr(obj, MARKS_ATTR, ())
    )
    setattr(obj, MARKS_ATTR, [*existing, mark])


def get_marks(obj: Any) -> list[Mark]:
    """Return the raw marks stored on `obj`, in decoration order (innermost first)."""
    if inspect.isclass(obj):
        return list(obj.__dict__.get(MARKS_ATTR, ()))
    return list(getattr(obj, MARKS_ATTR, ()))


@dataclass(frozen=True)
class MarkDecorator:
    """A mark that can be applied to a test function or class.

    Calling it with a single class or function (and nothing else) applies the
    mark; calling it with other arguments returns a new decorator carrying
    those arguments.
    """

    mark: Mark

    @property
    def name(self) -> str:
        """Name of the wrapped mark."""
        return self.mark.name

    def with_args(self, *args: Any, **kwargs: Any) -> MarkDecorator:
        """Return a decorator with additional arguments."""
        return MarkDecorator(
            Mark(
                self.mark.name,
                (*self.mark.args, *args),
                {**self.mark.kwargs, **kwargs},
            )
        )

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if args and not kwargs and len(args) == 1:
            func = args[0]
            if inspect.isclass(func) or inspect.isfunction(func) or isinstance(
                func, staticmethod
            ):
                target = func.__func__ if isinstance(func, staticmethod) else func
                store_mark(target, self.mark)
                return func
        return self.with_args(*args, **kwargs)


@dataclass
class MarkGenerator:
    """Factory for `MarkDecorator` objects, exposed as ``vigil.mark``.

    ``mark.slow`` returns a decorator for a mark named "slow". Whether the
    name is registered is checked during collection, not here.
    """

    _cache: dict[str, MarkDecorator] = field(default_factory=dict)

    def __getattr__(self, name: str) -> MarkDecorator:
        if name.startswith("_"):
            raise AttributeError("Marker name must NOT start with underscore")
        if name not in self._cache:
            self._cache[name] = MarkDecorator(Mark(name))
        return self._cache[name]


mark = MarkGenerator()


def param(
    *values: Any,
    marks: MarkDecorator | Mark | Sequence[MarkDecorator | Mark] = (),
    id: str | None = None,  # pylint: disable=redefined-builtin
) -> ParameterSet:
    """Specify one parameter set with its own marks or id.

    Example:
        ```py
        @mark.parametrize("n", [1, param(0, marks=mark.xfail), 2])
        def test_nonzero(n): ...
        ```
    """
    if isinstance(marks, (MarkDecorator, Mark)):
        marks = (marks,)
    raw = tuple(m.mark if isinstance(m, MarkDecorator) else m for m in marks)
    if id is not None and not isinstance(id, str):
        raise TypeError(f"Expected id to be a string, got {type(id)}: {id!r}")
    return ParameterSet(values=values, marks=raw, id=id)


# ============================================================================
#                       Imperative outcome helpers
# ============================================================================


def skip(reason: str = "") -> NoReturn:
    """Skip the running test (or fixture setup) with the given reason."""
    raise Skipped(reason)


def fail(reason: str = "") -> NoReturn:
    """Fail the running test with the given message, without a traceback."""
    raise Failed(reason)
