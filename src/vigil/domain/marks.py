"""Mark value objects.

Decorators record raw `Mark` objects on the decorated function, class or
module. During collection every raw mark is normalized exactly once into one
of the tagged variants below and the resulting tuple is attached to the
`TestItem`. Nothing downstream reflects on function attributes again.

Variants
- `Skip`        unconditional skip with a reason.
- `SkipIf`      skip when a condition holds (bool or source string).
- `XFail`       expected failure, optionally conditional / strict / not run.
- `Parametrize` argument names plus ordered parameter sets.
- `UseFixtures` extra fixture names requested without being arguments.
- `Tag`         any other (custom) mark; only its name matters for selection.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from .errors import InvalidMarkError

BUILTIN_MARKS: dict[str, str] = {
    "skip": "skip(reason=None): skip the given test function with an optional reason.",
    "skipif": "skipif(condition, ..., *, reason=...): skip the given test if the condition holds.",
    "xfail": "xfail(condition, ..., *, reason=..., run=True, raises=None, strict=False): "
    "mark the test function as an expected failure.",
    "parametrize": "parametrize(argnames, argvalues, ids=None): call a test function "
    "multiple times passing in different arguments in turn.",
    "usefixtures": "usefixtures(fixturename1, fixturename2, ...): mark tests as "
    "needing all of the specified fixtures.",
}


@dataclass(frozen=True)
class Mark:
    """A raw mark as recorded by a decorator."""

    name: str
    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParameterSet:
    """One set of values for a parametrized test.

    Values are held by reference; expanded items share the same objects.
    """

    values: tuple[Any, ...]
    marks: tuple[Mark, ...] = ()
    id: str | None = None


# ============================================================================
#                               Variants
# ============================================================================


@dataclass(frozen=True)
class Skip:
    """Unconditional skip."""

    reason: str = "unconditional skip"
    name: str = field(default="skip", init=False)


@dataclass(frozen=True)
class SkipIf:
    """Conditional skip; the conditions are evaluated at collection time."""

    conditions: tuple[Any, ...]
    reason: str | None = None
    name: str = field(default="skipif", init=False)


@dataclass(frozen=True)
class XFail:
    """Expected failure."""

    conditions: tuple[Any, ...] = ()
    reason: str = ""
    raises: type[BaseException] | tuple[type[BaseException], ...] | None = None
    run: bool = True
    strict: bool | None = None
    name: str = field(default="xfail", init=False)


@dataclass(frozen=True)
class Parametrize:
    """Parametrization over one or more argument names."""

    argnames: tuple[str, ...]
    parametersets: tuple[ParameterSet, ...]
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None
    name: str = field(default="parametrize", init=False)


@dataclass(frozen=True)
class UseFixtures:
    """Request fixtures that are not function arguments."""

    fixturenames: tuple[str, ...]
    name: str = field(default="usefixtures", init=False)


@dataclass(frozen=True)
class Tag:
    """A custom mark with an arbitrary payload."""

    name: str
    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)


MarkVariant: TypeAlias = Skip | SkipIf | XFail | Parametrize | UseFixtures | Tag


# ============================================================================
#                               Normalization
# ============================================================================


def normalize(mark: Mark) -> MarkVariant:
    """Convert a raw mark into its tagged variant.

    Args:
        mark: The raw mark recorded by a decorator.

    Returns:
        The matching variant; unknown names become `Tag`.

    Raises:
        InvalidMarkError: If a builtin mark is declared with unusable arguments.
    """
    if mark.name == "skip":
        return _normalize_skip(mark)
    if mark.name == "skipif":
        return SkipIf(conditions=mark.args, reason=mark.kwargs.get("reason"))
    if mark.name == "xfail":
        return XFail(
            conditions=mark.args,
            reason=mark.kwargs.get("reason", ""),
            raises=mark.kwargs.get("raises"),
            run=mark.kwargs.get("run", True),
            strict=mark.kwargs.get("strict"),
        )
    if mark.name == "parametrize":
        return _normalize_parametrize(mark)
    if mark.name == "usefixtures":
        return UseFixtures(fixturenames=tuple(mark.args))
    return Tag(name=mark.name, args=mark.args, kwargs=dict(mark.kwargs))


def _normalize_skip(mark: Mark) -> Skip:
    if len(mark.args) > 1:
        raise InvalidMarkError("skip() takes at most one positional argument (reason)")
    reason = mark.kwargs.get("reason", mark.args[0] if mark.args else None)
    return Skip() if reason is None else Skip(reason=reason)


def _normalize_parametrize(mark: Mark) -> Parametrize:
    try:
        raw_argnames, argvalues = mark.args
    except ValueError as e:
        raise InvalidMarkError(
            "parametrize() requires exactly two arguments: argnames, argvalues"
        ) from e

    if isinstance(raw_argnames, str):
        argnames = tuple(n.strip() for n in raw_argnames.split(",") if n.strip())
    else:
        try:
            argnames = tuple(raw_argnames)
        except TypeError as e:
            raise InvalidMarkError(
                f"parametrize(): argnames must be a string or a sequence, got {raw_argnames!r}"
            ) from e
    if not argnames:
        raise InvalidMarkError("parametrize() requires at least one argument name")

    try:
        values = list(argvalues)
    except TypeError as e:
        raise InvalidMarkError(
            f"parametrize(): argvalues must be iterable, got {argvalues!r}"
        ) from e
    parametersets = tuple(_to_parameterset(value, len(argnames)) for value in values)
    ids = mark.kwargs.get("ids")
    if ids is not None and not callable(ids):
        check_ids(ids, len(parametersets), "parametrize()")
    return Parametrize(argnames=argnames, parametersets=parametersets, ids=ids)


def _to_parameterset(value: Any, width: int) -> ParameterSet:
    """Wrap a single argvalues entry into a ParameterSet (identity preserved)."""
    if isinstance(value, ParameterSet):
        parameterset = value
    elif width == 1:
        parameterset = ParameterSet(values=(value,))
    else:
        try:
            parameterset = ParameterSet(values=tuple(value))
        except TypeError as e:
            raise InvalidMarkError(
                f"parametrize(): expected {width} values per set, got {value!r}"
            ) from e

    if len(parameterset.values) != width:
        raise InvalidMarkError(
            f"parametrize(): expected {width} values per set, "
            f"got {len(parameterset.values)}: {parameterset.values!r}"
        )
    return parameterset


def check_ids(ids: Any, count: int, owner: str) -> None:
    """Check that an explicit ids sequence names every parameter set.

    Raises:
        InvalidMarkError: If `ids` is not a sequence of `count` entries.
    """
    try:
        given = len(ids)
    except TypeError as e:
        raise InvalidMarkError(f"{owner}: ids must be a sequence or a callable") from e
    if given != count:
        raise InvalidMarkError(f"{owner}: {count} parameter sets but {given} ids")
