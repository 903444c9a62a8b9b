"""Import test modules (and conftest files) from filesystem paths.

Two strategies are supported (see `vigil.config.ImportMode`):

- **prepend / append**: find the module's *base directory* (the first
  directory upward that is not a package, i.e. has no ``__init__.py``), add it
  to `sys.path` and import the module under its package-derived dotted name.
  Two different files that resolve to the same dotted name collide and raise
  `CollisionError`.
- **importlib**: load the module straight from its file under a unique name
  derived from its rootdir-relative path. `sys.path` is left alone and
  collisions are impossible; test modules cannot import each other by name.

Conftest files are always loaded the importlib way, since sibling
directories commonly each carry one.

The importer is a context manager: on exit it restores `sys.path` and
removes every module it inserted into `sys.modules`, so sequential sessions
never see each other's modules.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
import traceback
from pathlib import Path
from types import ModuleType, TracebackType

from vigil.config import ImportMode
from vigil.domain.errors import CollectionError, CollisionError, OutcomeException

logger = logging.getLogger(__name__)

UNIQUE_PREFIX = "vigil_collected"


def resolve_package_path(path: Path) -> tuple[Path, str]:
    """Return the base directory and dotted module name for `path`.

    Example:
        ``/src/pkg/sub/test_x.py`` with ``pkg/__init__.py`` and
        ``pkg/sub/__init__.py`` gives ``(/src, "pkg.sub.test_x")``.
    """
    parts = [path.stem]
    directory = path.parent
    while (directory / "__init__.py").is_file():
        parts.append(directory.name)
        directory = directory.parent
    return directory, ".".join(reversed(parts))


def unique_module_name(path: Path, rootdir: Path) -> str:
    """Path-scoped module name used by the importlib strategy."""
    try:
        relative = path.with_suffix("").relative_to(rootdir)
    except ValueError:
        relative = path.with_suffix("")
        parts = [p for p in relative.parts if p not in (relative.anchor, "/", "\\")]
    else:
        parts = list(relative.parts)
    safe = [part.replace(".", "_").replace("-", "_") for part in parts]
    return ".".join([UNIQUE_PREFIX, *safe])


class ModuleImporter:
    """Imports each path once and undoes its global side effects on close.

    Args:
        rootdir: Base directory used for path-scoped module names.
        mode: The import strategy for test modules.
    """

    def __init__(self, rootdir: Path, mode: ImportMode = ImportMode.PREPEND) -> None:
        self.rootdir = rootdir
        self.mode = mode
        self._loaded: dict[Path, ModuleType] = {}
        self._inserted: list[str] = []
        self._saved_sys_path: list[str] | None = None

    def __enter__(self) -> ModuleImporter:
        self._saved_sys_path = list(sys.path)
        importlib.invalidate_caches()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Restore `sys.path` and drop modules this importer inserted."""
        if self._saved_sys_path is not None:
            sys.path[:] = self._saved_sys_path
            self._saved_sys_path = None
        for name in reversed(self._inserted):
            sys.modules.pop(name, None)
        logger.debug("Unloaded %d collected modules", len(self._inserted))
        self._inserted.clear()
        self._loaded.clear()

    # --- Public API ---

    def import_module(self, path: Path) -> ModuleType:
        """Import a test module according to the configured mode.

        Raises:
            CollisionError: If another file already provides the same module name.
            CollectionError: If the module cannot be imported.
        """
        if (module := self._loaded.get(path)) is not None:
            return module
        if self.mode is ImportMode.IMPORTLIB:
            module = self._import_from_file(path, unique_module_name(path, self.rootdir))
        else:
            module = self._import_from_sys_path(path)
        self._loaded[path] = module
        return module

    def import_conftest(self, path: Path) -> ModuleType:
        """Import a conftest file under a path-scoped name."""
        if (module := self._loaded.get(path)) is not None:
            return module
        module = self._import_from_file(path, unique_module_name(path, self.rootdir))
        self._loaded[path] = module
        return module

    # --- Strategies ---

    def _import_from_file(self, path: Path, name: str) -> ModuleType:
        if (existing := sys.modules.get(name)) is not None:
            existing_file = getattr(existing, "__file__", None)
            if existing_file is None or Path(existing_file).resolve() != path:
                raise CollisionError(name, existing_file or "<builtin>", path)
            return existing

        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise CollectionError(path, "cannot create an import spec")
        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        self._inserted.append(name)
        logger.debug("Importing %s as %s", path, name)
        try:
            spec.loader.exec_module(module)
        except (Exception, OutcomeException) as e:
            sys.modules.pop(name, None)
            self._inserted.remove(name)
            raise self._import_error(path, e) from e
        return module

    def _import_from_sys_path(self, path: Path) -> ModuleType:
        basedir, name = resolve_package_path(path)
        entry = str(basedir)
        if self.mode is ImportMode.APPEND:
            if entry not in sys.path:
                sys.path.append(entry)
        elif not sys.path or sys.path[0] != entry:
            sys.path.insert(0, entry)

        dotted = name.split(".")
        candidates = [".".join(dotted[: i + 1]) for i in range(len(dotted))]
        missing = [n for n in candidates if n not in sys.modules]

        logger.debug("Importing %s as %s (base %s)", path, name, basedir)
        try:
            module = importlib.import_module(name)
        except (Exception, OutcomeException) as e:
            raise self._import_error(path, e) from e
        finally:
            self._inserted.extend(n for n in missing if n in sys.modules)

        module_file = getattr(module, "__file__", None)
        if module_file is None or Path(module_file).resolve() != path:
            raise CollisionError(name, module_file or "<namespace>", path)
        return module

    @staticmethod
    def _import_error(path: Path, error: BaseException) -> CollectionError:
        if isinstance(error, OutcomeException):
            return CollectionError(
                path,
                "skip()/fail() called at module level; use a module-level "
                "'vigilmark' with mark.skip or mark.skipif instead",
            )
        formatted = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        return CollectionError(
            path,
            "ImportError while importing test module.\n"
            "Hint: make sure your test modules/packages have valid Python names.\n"
            f"Traceback:\n{formatted}",
        )
