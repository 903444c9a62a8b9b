"""Configuration for VIGIL runs.

`RunConfig` is the contract an entry point (command line, config file, IDE)
fills in before a run. It can also be built from ``VIGIL_*`` environment
variables with `RunConfig.from_env()`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

from platformdirs import user_log_dir

from vigil.domain.errors import ConfigurationError
from vigil.domain.marks import BUILTIN_MARKS

DEFAULT_INCLUDE_PATTERNS = ("test_*.py", "*_test.py")  # pragma: no mutate
DEFAULT_EXCLUDE_DIRS = (
    "*.egg",
    ".*",
    "_darcs",
    "build",
    "CVS",
    "dist",
    "node_modules",
    "venv",
    "{arch}",
    "__pycache__",
)  # pragma: no mutate
DEFAULT_FUNCTION_PREFIX = "test"
DEFAULT_CLASS_PREFIX = "Test"

NODEID_SEPARATOR = "::"


class ImportMode(Enum):
    """How test modules are imported.

    - ``prepend``/``append``: the module's base directory is added to
      `sys.path` and the module gets a package-derived name. Two modules with
      the same name collide.
    - ``importlib``: modules are loaded from their files under unique,
      path-scoped names without touching `sys.path`.
    """

    PREPEND = "prepend"
    APPEND = "append"
    IMPORTLIB = "importlib"

    @property
    def collision_tolerant(self) -> bool:
        """True if module names are scoped by package path."""
        return self is ImportMode.IMPORTLIB


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    return [s for s in os.environ.get(name, "").replace(",", " ").split() if s]


def default_log_path() -> Path:
    """Default flight-recorder file in the user's log directory."""
    return Path(user_log_dir("vigil", appauthor=False, ensure_exists=True)) / "latest.log"


@dataclass(frozen=True)
class RunConfig:
    """Settings for one run.

    Args:
        roots: Paths or node ids (``path::Class::name``) to collect from.
            Defaults to the current directory.
        rootdir: Base for node ids; defaults to the common parent of `roots`.
        mark_expression: Boolean expression over mark names (``-m``).
        keyword_expression: Boolean expression over item keywords (``-k``).
        include_patterns: Glob patterns for test module file names.
        exclude_dirs: Glob patterns for directory names never descended into.
        function_prefix: Name prefix of test functions and methods.
        class_prefix: Name prefix of test classes.
        markers: Registered mark names and their descriptions, in addition
            to the builtin marks.
        strict_markers: Treat unregistered marks as configuration errors.
        import_mode: How test modules are imported.
        xfail_strict: Default for `xfail(strict=...)`.
        continue_on_collection_errors: Run the remaining items even if some
            modules failed to collect.
        log_path: Flight-recorder file; `None` disables the recorder.
    """

    # pylint: disable=too-many-instance-attributes

    roots: tuple[str, ...] = (".",)
    rootdir: Path | None = None
    mark_expression: str | None = None
    keyword_expression: str | None = None
    include_patterns: tuple[str, ...] = DEFAULT_INCLUDE_PATTERNS
    exclude_dirs: tuple[str, ...] = DEFAULT_EXCLUDE_DIRS
    function_prefix: str = DEFAULT_FUNCTION_PREFIX
    class_prefix: str = DEFAULT_CLASS_PREFIX
    markers: Mapping[str, str] = field(default_factory=dict)
    strict_markers: bool = False
    import_mode: ImportMode = ImportMode.PREPEND
    xfail_strict: bool = False
    continue_on_collection_errors: bool = False
    log_path: Path | None = None

    def __post_init__(self) -> None:
        if isinstance(self.roots, str):
            object.__setattr__(self, "roots", (self.roots,))
        if not self.roots:
            raise ConfigurationError("at least one root path is required")
        if isinstance(self.import_mode, str):
            try:
                object.__setattr__(self, "import_mode", ImportMode(self.import_mode))
            except ValueError:
                raise ConfigurationError(
                    f"unknown import mode {self.import_mode!r}; expected one of "
                    f"{', '.join(m.value for m in ImportMode)}"
                ) from None

    @property
    def root_paths(self) -> list[Path]:
        """Filesystem part of every root, resolved."""
        return [Path(root.split(NODEID_SEPARATOR, 1)[0]).resolve() for root in self.roots]

    @property
    def registered_marks(self) -> dict[str, str]:
        """Builtin marks plus the configured ones."""
        return {**BUILTIN_MARKS, **self.markers}

    def resolved_rootdir(self) -> Path:
        """The directory node ids are relative to.

        Uses `rootdir` if set, otherwise the common ancestor of the roots
        (a file root contributes its parent directory).
        """
        if self.rootdir is not None:
            return Path(self.rootdir).resolve()
        dirs = [p if p.is_dir() else p.parent for p in self.root_paths]
        return Path(os.path.commonpath([str(d) for d in dirs]))

    def with_overrides(self, **changes) -> RunConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> RunConfig:
        """Build a configuration from ``VIGIL_*`` environment variables.

        Recognized variables:
            VIGIL_ROOTS: comma/space separated paths or node ids.
            VIGIL_MARK_EXPR: mark selection expression.
            VIGIL_KEYWORD_EXPR: keyword selection expression.
            VIGIL_IMPORT_MODE: prepend, append or importlib.
            VIGIL_STRICT_MARKERS: enable strict markers when truthy.
            VIGIL_MARKERS: comma/space separated extra mark names.
            VIGIL_FLIGHT_RECORDER: enable the flight recorder when truthy.
            VIGIL_LOG_PATH: flight-recorder file (implies the recorder).

        Returns:
            A `RunConfig`; unset variables keep their defaults.

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        kwargs: dict = {}
        if roots := _env_list("VIGIL_ROOTS"):
            kwargs["roots"] = tuple(roots)
        if expr := os.environ.get("VIGIL_MARK_EXPR"):
            kwargs["mark_expression"] = expr
        if expr := os.environ.get("VIGIL_KEYWORD_EXPR"):
            kwargs["keyword_expression"] = expr
        if mode := os.environ.get("VIGIL_IMPORT_MODE"):
            kwargs["import_mode"] = mode.strip().lower()
        if markers := _env_list("VIGIL_MARKERS"):
            kwargs["markers"] = {name: "" for name in markers}
        kwargs["strict_markers"] = _env_flag("VIGIL_STRICT_MARKERS")
        if log_path := os.environ.get("VIGIL_LOG_PATH"):
            kwargs["log_path"] = Path(log_path)
        elif _env_flag("VIGIL_FLIGHT_RECORDER"):
            kwargs["log_path"] = default_log_path()
        return cls(**kwargs)
