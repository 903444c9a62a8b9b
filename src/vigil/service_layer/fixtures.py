"""Fixture registry, dependency resolution and scoped lifetimes.

Three collaborators live here:

- `FixtureRegistry`: explicit registry filled during the collection pass.
  Definitions are anchored at a *baseid* (a conftest directory, a module or
  a class node id, or `None` for builtins) and visible to every node id
  below it. Lookups return the visible definitions most specific first, so
  class fixtures shadow module fixtures, which shadow conftest fixtures,
  which shadow builtins.
- `FixtureResolver`: computes a `FixturePlan` for a test definition: the
  depth-first dependency closure, the name -> definition binding table and
  the setup order. Cycles, unknown names and scope mismatches are reported
  here, before any fixture runs.
- `FixtureManager`: instantiates fixtures inside *scope frames* (function,
  class, module, session). A frame caches each fixture once per activation
  and keeps a stack of finalizers that is unwound in reverse acquisition
  order when the frame closes. Function frames close after every item;
  shared frames close as soon as the next item can no longer reuse them.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from types import ModuleType
from typing import Any

from vigil.api import FIXTURE_ATTR, FixtureMarker
from vigil.domain.errors import (
    CyclicDependencyError,
    FixtureLookupError,
    OutcomeException,
    ScopeMismatchError,
)
from vigil.domain.model import FixtureDef, Scope, TestItem

logger = logging.getLogger(__name__)

REQUEST_NAME = "request"

_NOTSET = object()


def getfuncargnames(func: Callable[..., Any], *, is_method: bool = False) -> tuple[str, ...]:
    """Return the names of a callable's required arguments.

    Arguments with defaults, ``*args`` and ``**kwargs`` are ignored; for
    methods the bound first argument is dropped.
    """
    try:
        parameters = list(inspect.signature(func).parameters.values())
    except (ValueError, TypeError):
        return ()
    names = tuple(
        p.name
        for p in parameters
        if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        and p.default is p.empty
    )
    return names[1:] if is_method and names else names


def is_visible(baseid: str | None, nodeid: str) -> bool:
    """Return True if a definition anchored at `baseid` is visible from `nodeid`."""
    if baseid is None or baseid == "":
        return True
    return (
        nodeid == baseid
        or nodeid.startswith(baseid + "/")
        or nodeid.startswith(baseid + "::")
    )


def _specificity(fixturedef: FixtureDef) -> int:
    return -1 if fixturedef.baseid is None else len(fixturedef.baseid)


# ============================================================================
#                               Registry
# ============================================================================


class FixtureRegistry:
    """Explicit registry of fixture definitions."""

    def __init__(self) -> None:
        self._defs: dict[str, list[FixtureDef]] = defaultdict(list)

    def __len__(self) -> int:
        return sum(len(defs) for defs in self._defs.values())

    def register(self, fixturedef: FixtureDef) -> None:
        """Add a definition to the registry."""
        self._defs[fixturedef.name].append(fixturedef)
        logger.debug("Registered fixture %r", fixturedef)

    def parse(
        self, holder: ModuleType | type, baseid: str | None
    ) -> list[FixtureDef]:
        """Register every fixture function defined directly on `holder`.

        Args:
            holder: A module or a test class.
            baseid: Visibility anchor of the holder.

        Returns:
            The definitions that were registered, in definition order.
        """
        is_class = inspect.isclass(holder)
        registered: list[FixtureDef] = []
        for attr_name, obj in list(vars(holder).items()):
            is_static = isinstance(obj, staticmethod)
            func = obj.__func__ if isinstance(obj, (staticmethod, classmethod)) else obj
            marker = getattr(func, FIXTURE_ATTR, None)
            if not isinstance(marker, FixtureMarker):
                continue
            needs_instance = is_class and not is_static
            fixturedef = FixtureDef(
                name=marker.name or attr_name,
                func=func,
                scope=marker.scope,
                baseid=baseid,
                argnames=getfuncargnames(func, is_method=needs_instance),
                params=marker.params,
                ids=marker.ids,
                autouse=marker.autouse,
                cls=holder if needs_instance else None,
            )
            self.register(fixturedef)
            registered.append(fixturedef)
        return registered

    def visible(self, name: str, nodeid: str) -> list[FixtureDef]:
        """Definitions of `name` visible from `nodeid`, most specific first.

        Among equally specific definitions the latest registration wins.
        """
        candidates = [d for d in reversed(self._defs.get(name, ())) if is_visible(d.baseid, nodeid)]
        return sorted(candidates, key=_specificity, reverse=True)

    def names_visible(self, nodeid: str) -> list[str]:
        """All fixture names visible from `nodeid`."""
        return sorted(
            name
            for name, defs in self._defs.items()
            if any(is_visible(d.baseid, nodeid) for d in defs)
        )

    def autouse_names(self, nodeid: str) -> list[str]:
        """Names of autouse fixtures visible from `nodeid`, broadest anchor first."""
        defs = [
            d
            for defs in self._defs.values()
            for d in defs
            if d.autouse and is_visible(d.baseid, nodeid)
        ]
        names: list[str] = []
        for fixturedef in sorted(defs, key=_specificity):
            if fixturedef.name not in names:
                names.append(fixturedef.name)
        return names


# ============================================================================
#                               Resolution
# ============================================================================


@dataclass(frozen=True)
class FixturePlan:
    """Resolved fixture closure of one test definition.

    Attributes:
        fixtures: Definitions in setup order (dependencies first, broader
            scopes before narrower ones).
        bindings: For each definition, its argument name -> definition table.
        item_bindings: The test's own argument name -> definition table,
            including autouse and usefixtures names.
        direct_params: Names provided by direct parametrization. They are
            bound to the item's callspec values for the test and for every
            fixture of the closure.
    """

    fixtures: tuple[FixtureDef, ...] = ()
    bindings: Mapping[FixtureDef, Mapping[str, FixtureDef]] = field(default_factory=dict)
    item_bindings: Mapping[str, FixtureDef] = field(default_factory=dict)
    direct_params: frozenset[str] = frozenset()

    @property
    def names(self) -> list[str]:
        """Names of every fixture in the closure, in setup order."""
        return [f.name for f in self.fixtures]

    @property
    def parametrized(self) -> list[FixtureDef]:
        """Fixtures of the closure that carry params."""
        return [f for f in self.fixtures if f.params is not None]


class FixtureResolver:
    """Resolves fixture closures against a registry."""

    def __init__(self, registry: FixtureRegistry) -> None:
        self.registry = registry

    def resolve(
        self,
        nodeid: str,
        argnames: Sequence[str],
        usefixtures: Iterable[str] = (),
        direct_params: Iterable[str] = (),
    ) -> FixturePlan:
        """Compute the fixture plan of a test definition.

        Args:
            nodeid: Node id of the test (used for visibility).
            argnames: The test function's required argument names.
            usefixtures: Extra names requested through ``usefixtures`` marks.
            direct_params: Names provided by direct parametrization; they are
                not looked up as fixtures, neither for the test nor for the
                fixtures it depends on.

        Returns:
            The resolved plan.

        Raises:
            FixtureLookupError: If a name does not resolve.
            CyclicDependencyError: If fixtures depend on each other in a cycle.
            ScopeMismatchError: If a fixture requests a narrower-scoped one,
                including a shared fixture requesting a direct parameter.
        """
        direct = frozenset(direct_params)
        excluded = {REQUEST_NAME, *direct}
        requested: list[str] = []
        for name in [*self.registry.autouse_names(nodeid), *usefixtures, *argnames]:
            if name not in excluded and name not in requested:
                requested.append(name)

        order: list[FixtureDef] = []
        bindings: dict[FixtureDef, dict[str, FixtureDef]] = {}
        stack: list[FixtureDef] = []

        def visit(fixturedef: FixtureDef) -> None:
            if fixturedef in bindings:
                return
            if fixturedef in stack:
                start = stack.index(fixturedef)
                cycle = [f.name for f in stack[start:]] + [fixturedef.name]
                raise CyclicDependencyError(cycle)
            stack.append(fixturedef)
            deps: dict[str, FixtureDef] = {}
            for argname in fixturedef.argnames:
                if argname == REQUEST_NAME:
                    continue
                if argname in direct:
                    # direct parameters behave as function-scoped values
                    if fixturedef.scope is not Scope.FUNCTION:
                        raise ScopeMismatchError(
                            fixturedef.name,
                            fixturedef.scope.value,
                            argname,
                            Scope.FUNCTION.value,
                        )
                    continue
                dep = self._select(argname, nodeid, fixturedef)
                if dep.scope.rank < fixturedef.scope.rank:
                    raise ScopeMismatchError(
                        fixturedef.name, fixturedef.scope.value, dep.name, dep.scope.value
                    )
                visit(dep)
                deps[argname] = dep
            stack.pop()
            bindings[fixturedef] = deps
            order.append(fixturedef)

        item_bindings: dict[str, FixtureDef] = {}
        for name in requested:
            fixturedef = self._select(name, nodeid, None)
            visit(fixturedef)
            item_bindings[name] = fixturedef

        ordered = sorted(order, key=lambda f: f.scope.rank, reverse=True)
        logger.debug("Resolved fixtures for %s: %s", nodeid, [f.name for f in ordered])
        return FixturePlan(
            fixtures=tuple(ordered),
            bindings=bindings,
            item_bindings=item_bindings,
            direct_params=direct,
        )

    def _select(
        self, name: str, nodeid: str, requester: FixtureDef | None
    ) -> FixtureDef:
        candidates = self.registry.visible(name, nodeid)
        if requester is not None and requester.name == name and requester in candidates:
            # a fixture overriding a less specific one of the same name
            candidates = candidates[candidates.index(requester) + 1 :]
        if not candidates:
            raise FixtureLookupError(
                name,
                requester.name if requester is not None else nodeid,
                self.registry.names_visible(nodeid),
            )
        return candidates[0]


# ============================================================================
#                               Runtime
# ============================================================================


class FixtureRequest:
    """Runtime information available to fixtures (and tests) as ``request``."""

    def __init__(
        self,
        manager: FixtureManager,
        item: TestItem,
        fixturedef: FixtureDef | None,
        frame: _ScopeFrame,
        param: Any = _NOTSET,
    ) -> None:
        self._manager = manager
        self._frame = frame
        self._param = param
        self.node = item
        self.fixturedef = fixturedef

    @property
    def fixturename(self) -> str | None:
        """Name of the fixture being set up (None for the test itself)."""
        return self.fixturedef.name if self.fixturedef else None

    @property
    def scope(self) -> str:
        """Scope name of the requesting fixture or "function" for tests."""
        return self._frame.scope.value

    @property
    def nodeid(self) -> str:
        """Node id of the requesting test item."""
        return self.node.nodeid

    @property
    def param(self) -> Any:
        """Current value of a parametrized fixture."""
        if self._param is _NOTSET:
            raise AttributeError(
                f"fixture {self.fixturename!r} is not parametrized; request.param is unavailable"
            )
        return self._param

    def addfinalizer(self, finalizer: Callable[[], object]) -> None:
        """Run `finalizer` when the requesting scope ends."""
        label = f"finalizer of {self.fixturename or self.nodeid}"
        self._frame.finalizers.append((label, finalizer))


@dataclass
class _CachedValue:
    value: Any = None
    error: BaseException | None = None


@dataclass
class _ScopeFrame:
    """One activation of a scope."""

    scope: Scope
    base: tuple[Any, ...]
    params: dict[str, int] = field(default_factory=dict)
    cache: dict[FixtureDef, _CachedValue] = field(default_factory=dict)
    finalizers: list[tuple[str, Callable[[], object]]] = field(default_factory=list)

    def compatible(self, base: tuple[Any, ...], params: Mapping[str, int]) -> bool:
        """True if an item with this base and parameter indices can reuse the frame."""
        if base != self.base:
            return False
        return all(self.params.get(name, index) == index for name, index in params.items())


def _frame_base(scope: Scope, item: TestItem) -> tuple[Any, ...]:
    if scope is Scope.SESSION:
        return ()
    if scope is Scope.MODULE:
        return (item.path,)
    if scope is Scope.CLASS:
        return (item.path, item.cls)
    return (item.nodeid,)


def _frame_params(scope: Scope, item: TestItem, plan: FixturePlan) -> dict[str, int]:
    if item.callspec is None:
        return {}
    return {
        f.name: item.callspec.indices[f.name]
        for f in plan.parametrized
        if f.scope is scope and f.name in item.callspec.indices
    }


def _teardown_generator(name: str, generator: Any) -> None:
    try:
        next(generator)
    except StopIteration:
        return
    raise ValueError(f"fixture function {name!r} has more than one 'yield'")


class FixtureManager:
    """Instantiates and tears down fixtures for a sequence of items."""

    def __init__(self) -> None:
        self._frames: dict[Scope, _ScopeFrame] = {}
        self.instantiations: dict[str, int] = defaultdict(int)

    # --- Setup ---

    def setup(
        self, item: TestItem, plan: FixturePlan, instance: object | None = None
    ) -> dict[str, Any]:
        """Set up every fixture of `plan` and return the test's keyword arguments.

        Fixtures acquired before a failing one stay registered in their
        frames, so the following `teardown` unwinds the partial setup.

        Args:
            item: The item about to run.
            plan: Its fixture plan.
            instance: The test class instance for method items.

        Returns:
            Argument name -> value for the test function.

        Raises:
            Exception: Whatever a fixture raised during setup.
        """
        self._open_frames(item, plan)
        values: dict[FixtureDef, Any] = {}
        for fixturedef in plan.fixtures:
            values[fixturedef] = self._get_value(fixturedef, item, plan, values, instance)

        kwargs: dict[str, Any] = {}
        params = item.callspec.params if item.callspec else {}
        for name in item.argnames:
            if name in plan.item_bindings:
                kwargs[name] = values[plan.item_bindings[name]]
            elif name in params:
                kwargs[name] = params[name]
            elif name == REQUEST_NAME:
                kwargs[name] = FixtureRequest(
                    self, item, None, self._frames[Scope.FUNCTION]
                )
        return kwargs

    def _open_frames(self, item: TestItem, plan: FixturePlan) -> None:
        stale = self._close_incompatible(item, plan)
        for error in stale:
            logger.warning("Error while closing a stale fixture scope: %s", error)
        for scope in Scope.shared():
            if scope not in self._frames:
                self._frames[scope] = _ScopeFrame(scope, _frame_base(scope, item))
        self._frames[Scope.FUNCTION] = _ScopeFrame(
            Scope.FUNCTION, _frame_base(Scope.FUNCTION, item)
        )

    def _get_value(
        self,
        fixturedef: FixtureDef,
        item: TestItem,
        plan: FixturePlan,
        values: Mapping[FixtureDef, Any],
        instance: object | None,
    ) -> Any:
        frame = self._frames[fixturedef.scope]
        if (cached := frame.cache.get(fixturedef)) is not None:
            if cached.error is not None:
                raise cached.error
            return cached.value

        kwargs = {arg: values[dep] for arg, dep in plan.bindings[fixturedef].items()}
        callspec_params = item.callspec.params if item.callspec else {}
        for argname in fixturedef.argnames:
            if argname in plan.direct_params and argname in callspec_params:
                kwargs[argname] = callspec_params[argname]
        param: Any = _NOTSET
        if (
            fixturedef.params is not None
            and fixturedef.name not in plan.direct_params
            and item.callspec is not None
            and fixturedef.name in item.callspec.indices
        ):
            index = item.callspec.indices[fixturedef.name]
            param = fixturedef.params[index]
            frame.params[fixturedef.name] = index
        if REQUEST_NAME in fixturedef.argnames:
            kwargs[REQUEST_NAME] = FixtureRequest(self, item, fixturedef, frame, param)

        func = self._bind(fixturedef, instance)
        logger.debug("SETUP %s %s", fixturedef.scope.value[0].upper(), fixturedef.name)
        self.instantiations[fixturedef.name] += 1
        try:
            if inspect.isgeneratorfunction(fixturedef.func):
                generator = func(**kwargs)
                try:
                    value = next(generator)
                except StopIteration:
                    raise ValueError(f"{fixturedef.name} did not yield a value") from None
                frame.finalizers.append(
                    (fixturedef.name, partial(_teardown_generator, fixturedef.name, generator))
                )
            else:
                value = func(**kwargs)
        except (Exception, OutcomeException) as e:
            if fixturedef.scope is not Scope.FUNCTION:
                frame.cache[fixturedef] = _CachedValue(error=e)
            raise
        frame.cache[fixturedef] = _CachedValue(value=value)
        return value

    @staticmethod
    def _bind(fixturedef: FixtureDef, instance: object | None) -> Callable[..., Any]:
        if fixturedef.cls is None:
            return fixturedef.func
        target = instance if isinstance(instance, fixturedef.cls) else fixturedef.cls()
        return fixturedef.func.__get__(target, fixturedef.cls)

    # --- Teardown ---

    def teardown(
        self,
        item: TestItem,
        nextitem: TestItem | None = None,
        next_plan: FixturePlan | None = None,
    ) -> list[BaseException]:
        """Tear down after `item`, keeping frames `nextitem` can reuse.

        The function frame always closes. Shared frames close when the next
        item cannot reuse them (different module/class, different parameter
        of a shared parametrized fixture) or when there is no next item.

        Returns:
            Errors raised by finalizers; every finalizer runs regardless.
        """
        errors = self._close_frame(Scope.FUNCTION)
        if nextitem is None:
            return errors + self.close()
        return errors + self._close_incompatible(nextitem, next_plan or FixturePlan())

    def close(self) -> list[BaseException]:
        """Close every open frame, narrowest first."""
        errors: list[BaseException] = []
        for scope in (Scope.FUNCTION, *reversed(Scope.shared())):
            errors.extend(self._close_frame(scope))
        return errors

    def _close_incompatible(self, item: TestItem, plan: FixturePlan) -> list[BaseException]:
        incompatible = [
            scope
            for scope in Scope.shared()
            if (frame := self._frames.get(scope)) is not None
            and not frame.compatible(
                _frame_base(scope, item), _frame_params(scope, item, plan)
            )
        ]
        if not incompatible:
            return []
        broadest = max(incompatible, key=lambda s: s.rank)
        errors: list[BaseException] = []
        for scope in reversed(Scope.shared()):
            if scope.rank <= broadest.rank:
                errors.extend(self._close_frame(scope))
        return errors

    def _close_frame(self, scope: Scope) -> list[BaseException]:
        frame = self._frames.pop(scope, None)
        if frame is None:
            return []
        errors: list[BaseException] = []
        while frame.finalizers:
            label, finalizer = frame.finalizers.pop()
            logger.debug("TEARDOWN %s %s", scope.value[0].upper(), label)
            try:
                finalizer()
            except (Exception, OutcomeException) as e:  # pylint: disable=broad-except
                logger.debug("Teardown of %s raised %r", label, e)
                errors.append(e)
        frame.cache.clear()
        return errors
