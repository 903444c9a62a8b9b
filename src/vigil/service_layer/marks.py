"""Mark evaluation: normalization, registration checks, expansion and skip/xfail.

All mark-driven decisions are taken here, once, at collection time:

- raw marks from the function, its class hierarchy and its module are
  normalized into tagged variants (closest declaration first);
- unregistered names warn (or fail under strict markers);
- ``parametrize`` marks and parametrized fixtures expand one definition into
  one item per parameter combination, in declared order, binding values by
  reference;
- ``skip``/``skipif`` and ``xfail`` conditions are evaluated and the result
  is frozen onto the item.
"""

from __future__ import annotations

import enum
import inspect
import logging
import os
import platform
import re
import sys
import warnings
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from types import ModuleType
from typing import Any

from vigil.api import MODULE_MARKS_ATTR, MarkDecorator, get_marks
from vigil.domain.errors import ConfigurationError, InvalidMarkError, UnknownMarkWarning
from vigil.domain.marks import (
    Mark,
    MarkVariant,
    Parametrize,
    ParameterSet,
    Skip,
    SkipIf,
    UseFixtures,
    XFail,
    check_ids,
    normalize,
)
from vigil.domain.model import CallSpec, TestItem

from .fixtures import FixturePlan

logger = logging.getLogger(__name__)


# ============================================================================
#                           Raw mark gathering
# ============================================================================


def module_marks(module: ModuleType) -> list[Mark]:
    """Marks declared with a module-level ``vigilmark`` variable."""
    declared = getattr(module, MODULE_MARKS_ATTR, ())
    if isinstance(declared, (Mark, MarkDecorator)):
        declared = [declared]
    try:
        entries = list(declared)
    except TypeError as e:
        raise InvalidMarkError(
            f"{MODULE_MARKS_ATTR} must be a mark or a list of marks, got {declared!r}"
        ) from e
    marks: list[Mark] = []
    for entry in entries:
        if isinstance(entry, MarkDecorator):
            marks.append(entry.mark)
        elif isinstance(entry, Mark):
            marks.append(entry)
        else:
            raise InvalidMarkError(
                f"{MODULE_MARKS_ATTR} must contain marks, got {entry!r}"
            )
    return marks


def class_marks(cls: type | None) -> list[Mark]:
    """Marks of a class and its bases, the class's own first."""
    if cls is None:
        return []
    marks: list[Mark] = []
    for klass in inspect.getmro(cls):
        marks.extend(get_marks(klass))
    return marks


def gather_marks(
    func: Callable[..., Any], cls: type | None, module: ModuleType
) -> list[Mark]:
    """All raw marks for a test function, closest declaration first."""
    return [*get_marks(func), *class_marks(cls), *module_marks(module)]


# ============================================================================
#                               Ids
# ============================================================================


def _ascii_escaped(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("ascii", "backslashreplace")
    return value.encode("unicode_escape").decode("ascii")


def _idval(value: Any, argname: str, index: int, idfn: Callable[[Any], Any] | None) -> str:
    if idfn is not None:
        try:
            generated = idfn(value)
        except Exception as e:
            raise InvalidMarkError(
                f"error raised while trying to determine id of parameter "
                f"{argname!r} at position {index}"
            ) from e
        if generated is not None:
            return _idval(generated, argname, index, None)
    if isinstance(value, (str, bytes)):
        return _ascii_escaped(value)
    if value is None or isinstance(value, (float, int, bool, complex)):
        return str(value)
    if isinstance(value, re.Pattern):
        return _ascii_escaped(value.pattern)
    if isinstance(value, enum.Enum):
        return str(value)
    if isinstance(getattr(value, "__name__", None), str):
        return value.__name__
    return f"{argname}{index}"


def make_ids(
    argnames: Sequence[str],
    parametersets: Sequence[ParameterSet],
    ids: Sequence[str | None] | Callable[[Any], Any] | None = None,
) -> list[str]:
    """Make a unique id for each parameter set.

    Explicit ids (``param(..., id=)`` or ``ids=[...]``) win; otherwise each
    value contributes a token and tokens are joined with "-". Duplicates get
    a numeric suffix.

    Raises:
        InvalidMarkError: If explicit ids do not match the parameter sets, or
            an id function fails.
    """
    idfn = ids if callable(ids) else None
    explicit = ids if ids is not None and not callable(ids) else None
    if explicit is not None:
        check_ids(explicit, len(parametersets), f"ids for {', '.join(argnames)!r}")

    resolved: list[str] = []
    for index, parameterset in enumerate(parametersets):
        if parameterset.id is not None:
            resolved.append(parameterset.id)
        elif explicit is not None and explicit[index] is not None:
            resolved.append(_idval(explicit[index], argnames[0], index, None))
        else:
            resolved.append(
                "-".join(
                    _idval(value, argname, index, idfn)
                    for value, argname in zip(parameterset.values, argnames)
                )
            )

    counts = Counter(resolved)
    if len(counts) == len(resolved):
        return resolved
    suffixes: dict[str, int] = defaultdict(int)
    taken = set(resolved)
    for index, id_ in enumerate(resolved):
        if counts[id_] > 1:
            sep = "_" if id_ and id_[-1].isdigit() else ""
            candidate = f"{id_}{sep}{suffixes[id_]}"
            while candidate in taken:
                suffixes[id_] += 1
                candidate = f"{id_}{sep}{suffixes[id_]}"
            resolved[index] = candidate
            taken.add(candidate)
            suffixes[id_] += 1
    return resolved


# ============================================================================
#                               Evaluator
# ============================================================================


class MarkEvaluator:
    """Evaluates marks for collected definitions.

    Args:
        registered: Registered mark names (with descriptions).
        strict: Raise instead of warning for unregistered names.
        xfail_strict: Default strictness for ``xfail`` marks.
    """

    def __init__(
        self,
        registered: Mapping[str, str],
        *,
        strict: bool = False,
        xfail_strict: bool = False,
    ) -> None:
        self.registered = dict(registered)
        self.strict = strict
        self.xfail_strict = xfail_strict
        self._warned: set[str] = set()

    # --- Normalization ---

    def normalize_all(self, marks: Iterable[Mark], nodeid: str) -> tuple[MarkVariant, ...]:
        """Check registration and normalize raw marks into variants.

        Raises:
            ConfigurationError: On unregistered names under strict markers.
            InvalidMarkError: On malformed builtin marks.
        """
        variants = []
        for mark in marks:
            self.check_registered(mark.name, nodeid)
            variants.append(normalize(mark))
        return tuple(variants)

    def check_registered(self, name: str, nodeid: str) -> None:
        """Warn (or raise under strict markers) about an unregistered name."""
        if name in self.registered:
            return
        if self.strict:
            raise ConfigurationError(
                f"{nodeid}: mark {name!r} is not registered (strict markers enabled)"
            )
        if name not in self._warned:
            self._warned.add(name)
            logger.warning("Unknown mark %r used by %s", name, nodeid)
            warnings.warn(
                UnknownMarkWarning(
                    f"Unknown mark {name!r} used by {nodeid}. Register it in the "
                    "run configuration's markers to avoid this warning."
                ),
                stacklevel=2,
            )

    # --- Expansion ---

    @staticmethod
    def direct_params(item: TestItem) -> list[str]:
        """Argument names provided by the item's parametrize marks."""
        names: list[str] = []
        for mark in item.marks:
            if isinstance(mark, Parametrize):
                names.extend(n for n in mark.argnames if n not in names)
        return names

    @staticmethod
    def usefixtures(item: TestItem) -> list[str]:
        """Fixture names requested through usefixtures marks, outermost first."""
        names: list[str] = []
        for mark in reversed(item.marks):
            if isinstance(mark, UseFixtures):
                names.extend(n for n in mark.fixturenames if n not in names)
        return names

    def expand(self, item: TestItem, plan: FixturePlan) -> list[TestItem]:
        """Expand a definition into one item per parameter combination.

        Parametrize marks are applied in decoration order (innermost first),
        then parametrized fixtures of the closure. Earlier parametrizations
        vary slowest. Parameter values are shared, not copied.

        Raises:
            InvalidMarkError: If a parametrized name is not a test argument,
                or an id cannot be generated.
        """
        parametrizes = [m for m in item.marks if isinstance(m, Parametrize)]
        fixture_params = [
            f for f in plan.parametrized if f.name not in self.direct_params(item)
        ]
        if not parametrizes and not fixture_params:
            return [item]

        calls: list[tuple[CallSpec, tuple[MarkVariant, ...]]] = [(CallSpec(), ())]
        for mark in parametrizes:
            for argname in mark.argnames:
                if argname not in item.argnames:
                    raise InvalidMarkError(
                        f"In {item.qualname}: function uses no argument {argname!r}"
                    )
            ids = make_ids(mark.argnames, mark.parametersets, mark.ids)
            set_marks = [
                self.normalize_all(ps.marks, item.nodeid) for ps in mark.parametersets
            ]
            if not mark.parametersets:
                logger.warning(
                    "%s: empty parameter set for %s, no items generated",
                    item.nodeid,
                    ", ".join(mark.argnames),
                )
            calls = [
                (
                    callspec.extend(mark.argnames, parameterset.values, index, ids[index]),
                    (*set_marks[index], *marks),
                )
                for callspec, marks in calls
                for index, parameterset in enumerate(mark.parametersets)
            ]

        for fixturedef in fixture_params:
            parametersets = [ParameterSet(values=(value,)) for value in fixturedef.params or ()]
            ids = make_ids((fixturedef.name,), parametersets, fixturedef.ids)
            calls = [
                (
                    callspec.extend((fixturedef.name,), parameterset.values, index, ids[index]),
                    marks,
                )
                for callspec, marks in calls
                for index, parameterset in enumerate(parametersets)
            ]

        expanded = [
            replace(
                item,
                nodeid=f"{item.nodeid}[{callspec.id}]",
                callspec=callspec,
                marks=(*param_marks, *item.marks),
            )
            for callspec, param_marks in calls
        ]
        logger.debug("Expanded %s into %d items", item.nodeid, len(expanded))
        return expanded

    # --- Skip / xfail ---

    def evaluate(self, item: TestItem, namespace: Mapping[str, Any]) -> TestItem:
        """Freeze skip and xfail decisions onto the item.

        Args:
            item: The expanded item.
            namespace: Globals of the defining module, for string conditions.

        Returns:
            A copy with `skip_reason` and `xfail` set.

        Raises:
            InvalidMarkError: If a condition cannot be evaluated.
        """
        skip_reason = self._skip_reason(item, namespace)
        xfail = self._xfail(item, namespace)
        if skip_reason is None and xfail is None:
            return item
        return replace(item, skip_reason=skip_reason, xfail=xfail)

    def _skip_reason(self, item: TestItem, namespace: Mapping[str, Any]) -> str | None:
        for mark in item.marks:
            if isinstance(mark, Skip):
                return mark.reason
        for mark in item.marks:
            if isinstance(mark, SkipIf):
                if (reason := self._first_true(mark.conditions, mark.reason, namespace, item)) is not None:
                    return reason
        return None

    def _xfail(self, item: TestItem, namespace: Mapping[str, Any]) -> XFail | None:
        for mark in item.marks:
            if not isinstance(mark, XFail):
                continue
            strict = self.xfail_strict if mark.strict is None else mark.strict
            if not mark.conditions:
                return replace(mark, strict=strict)
            reason = self._first_true(mark.conditions, mark.reason or None, namespace, item)
            if reason is not None:
                return replace(mark, reason=reason, strict=strict)
        return None

    @staticmethod
    def _first_true(
        conditions: Sequence[Any],
        reason: str | None,
        namespace: Mapping[str, Any],
        item: TestItem,
    ) -> str | None:
        """Return the reason of the first true condition, or None."""
        for condition in conditions:
            if isinstance(condition, str):
                globals_ = {"os": os, "sys": sys, "platform": platform, **namespace}
                try:
                    result = eval(condition, globals_)  # pylint: disable=eval-used
                except Exception as e:
                    raise InvalidMarkError(
                        f"{item.nodeid}: error evaluating condition {condition!r}: {e}"
                    ) from e
                if result:
                    return reason or f"condition: {condition}"
            elif condition:
                if reason is None:
                    raise InvalidMarkError(
                        f"{item.nodeid}: you need to specify reason=STRING "
                        "when using booleans as conditions"
                    )
                return reason
        return None
