"""Collection of test definitions and fixtures from imported modules.

The collector turns one module path into a list of *definitions*: unexpanded
`TestItem`s carrying normalized marks. Along the way it registers fixtures
from the conftest files above the module, the module itself and its test
classes, each anchored at the node id that bounds its visibility.

A definition whose marks cannot be normalized is returned as a
`BrokenDefinition` so that only that item fails; problems with the module as
a whole raise `CollectionError`.
"""

from __future__ import annotations

import inspect
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from types import ModuleType
from typing import Any

from vigil.api import FIXTURE_ATTR
from vigil.config import NODEID_SEPARATOR, RunConfig
from vigil.domain.errors import CollectionError, CollisionError, DefinitionError
from vigil.domain.model import TestItem

from .fixtures import FixtureRegistry, getfuncargnames
from .importer import ModuleImporter
from .marks import MarkEvaluator, gather_marks

logger = logging.getLogger(__name__)

CONFTEST = "conftest.py"


def nodeid_for(path: Path, rootdir: Path) -> str:
    """Rootdir-relative, "/"-separated id of a file or directory."""
    try:
        relative = path.relative_to(rootdir)
    except ValueError:
        relative = Path(os.path.relpath(path, rootdir))
    return "" if relative == Path(".") else relative.as_posix()


def _hasinit(cls: type) -> bool:
    return cls.__init__ is not object.__init__


def _hasnew(cls: type) -> bool:
    return cls.__new__ is not object.__new__


@dataclass(frozen=True)
class BrokenDefinition:
    """A test definition that failed before it could be expanded."""

    item: TestItem
    error: DefinitionError


Definition = TestItem | BrokenDefinition


class Collector:
    """Collects definitions and fixtures module by module.

    Args:
        config: The run configuration (prefixes, rootdir).
        importer: Imports modules and conftest files.
        registry: Receives every fixture definition found.
        evaluator: Normalizes marks and checks their registration.
    """

    def __init__(
        self,
        config: RunConfig,
        importer: ModuleImporter,
        registry: FixtureRegistry,
        evaluator: MarkEvaluator,
    ) -> None:
        self.config = config
        self.rootdir = importer.rootdir
        self.importer = importer
        self.registry = registry
        self.evaluator = evaluator
        self._conftests: dict[Path, ModuleType | CollectionError | None] = {}
        self._fqnames: dict[str, Path] = {}
        self.modules: dict[Path, ModuleType] = {}

    # --- Public API ---

    def collect(self, path: Path) -> list[Definition]:
        """Import `path` and return its test definitions in definition order.

        Raises:
            CollectionError: If the module (or a conftest above it) cannot be
                imported, or a qualified name collides with another module's.
        """
        self._load_conftests(path.parent)
        module = self.importer.import_module(path)
        self.modules[path] = module

        module_id = nodeid_for(path, self.rootdir)
        self.registry.parse(module, module_id)

        definitions: list[Definition] = []
        for name, obj in list(vars(module).items()):
            if self._is_test_function(name, obj):
                definitions.append(
                    self._definition(module, path, module_id, name, obj, cls=None)
                )
            elif self._is_test_class(name, obj):
                definitions.extend(self._collect_class(module, path, module_id, obj))

        for definition in definitions:
            item = definition.item if isinstance(definition, BrokenDefinition) else definition
            self._check_collision(item)
        logger.debug("Collected %d definitions from %s", len(definitions), module_id)
        return definitions

    # --- Conftest files ---

    def _load_conftests(self, directory: Path) -> None:
        """Import conftest files from the rootdir down to `directory`."""
        try:
            relative = directory.relative_to(self.rootdir)
        except ValueError:
            chain = [directory]
        else:
            chain = [self.rootdir]
            for part in relative.parts:
                chain.append(chain[-1] / part)

        for current in chain:
            if current not in self._conftests:
                self._conftests[current] = self._import_conftest(current)
            loaded = self._conftests[current]
            if isinstance(loaded, CollectionError):
                raise loaded

    def _import_conftest(self, directory: Path) -> ModuleType | CollectionError | None:
        conftest = directory / CONFTEST
        if not conftest.is_file():
            return None
        try:
            module = self.importer.import_conftest(conftest)
        except CollectionError as e:
            logger.error("Failed to import %s", conftest)
            return e
        registered = self.registry.parse(module, nodeid_for(directory, self.rootdir))
        logger.debug("Loaded %s with %d fixtures", conftest, len(registered))
        return module

    # --- Functions and classes ---

    def _is_test_function(self, name: str, obj: Any) -> bool:
        return (
            name.startswith(self.config.function_prefix)
            and inspect.isfunction(obj)
            and getattr(obj, FIXTURE_ATTR, None) is None
            and getattr(obj, "__test__", True)
        )

    def _is_test_class(self, name: str, obj: Any) -> bool:
        if not (inspect.isclass(obj) and name.startswith(self.config.class_prefix)):
            return False
        if not getattr(obj, "__test__", True):
            return False
        if _hasinit(obj) or _hasnew(obj):
            logger.warning(
                "cannot collect test class %r because it has a %s constructor",
                obj.__name__,
                "__init__" if _hasinit(obj) else "__new__",
            )
            return False
        return True

    def _collect_class(
        self, module: ModuleType, path: Path, module_id: str, cls: type
    ) -> list[Definition]:
        class_id = f"{module_id}{NODEID_SEPARATOR}{cls.__name__}"
        # bases first: among equal baseids the latest registration wins
        for klass in reversed(cls.__mro__[:-1]):
            self.registry.parse(klass, class_id)
        members: dict[str, Any] = {}
        for klass in cls.__mro__[:-1]:
            for name, obj in vars(klass).items():
                members.setdefault(name, obj)

        definitions: list[Definition] = []
        for name, obj in members.items():
            if not name.startswith(self.config.function_prefix):
                continue
            func = obj.__func__ if isinstance(obj, staticmethod) else obj
            if not inspect.isfunction(func) or getattr(func, FIXTURE_ATTR, None) is not None:
                continue
            definitions.append(self._definition(module, path, module_id, name, obj, cls=cls))
        return definitions

    def _definition(
        self,
        module: ModuleType,
        path: Path,
        module_id: str,
        name: str,
        obj: Any,
        cls: type | None,
    ) -> Definition:
        is_static = isinstance(obj, staticmethod)
        func: Callable[..., Any] = obj.__func__ if is_static else obj
        if cls is None:
            qualname, nodeid = name, f"{module_id}{NODEID_SEPARATOR}{name}"
        else:
            qualname = f"{cls.__name__}.{name}"
            nodeid = NODEID_SEPARATOR.join((module_id, cls.__name__, name))
        item = TestItem(
            nodeid=nodeid,
            path=path,
            module_name=module.__name__,
            qualname=qualname,
            func=func,
            cls=cls,
            is_static=is_static,
            argnames=getfuncargnames(func, is_method=cls is not None and not is_static),
        )
        try:
            marks = self.evaluator.normalize_all(gather_marks(func, cls, module), nodeid)
        except DefinitionError as e:
            logger.error("Invalid marks on %s: %s", nodeid, e)
            return BrokenDefinition(item, e)
        return replace(item, marks=marks)

    def _check_collision(self, item: TestItem) -> None:
        existing = self._fqnames.setdefault(item.fqname, item.path)
        if existing != item.path:
            raise CollisionError(item.fqname, existing, item.path)
