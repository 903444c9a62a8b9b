"""Fixtures available to every test without being defined anywhere.

- ``tmp_path_factory`` (session): creates numbered directories under one
  base temporary directory, removed when the session ends.
- ``tmp_path`` (function): a fresh, empty directory for each test.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

from vigil.api import fixture

from .fixtures import FixtureRequest

logger = logging.getLogger(__name__)

_MAX_NAME = 30


class TempPathFactory:
    """Creates unique temporary directories below a common base directory."""

    def __init__(self, basetemp: Path | None = None) -> None:
        self._given = basetemp
        self._basetemp: Path | None = None
        self._counters: dict[str, int] = {}

    def getbasetemp(self) -> Path:
        """Return (creating it on first use) the base temporary directory."""
        if self._basetemp is None:
            if self._given is not None:
                self._given.mkdir(parents=True, exist_ok=True)
                self._basetemp = self._given.resolve()
            else:
                self._basetemp = Path(tempfile.mkdtemp(prefix="vigil-")).resolve()
            logger.debug("Base temporary directory: %s", self._basetemp)
        return self._basetemp

    def mktemp(self, basename: str, numbered: bool = True) -> Path:
        """Create a new directory named after `basename`.

        Raises:
            ValueError: If `basename` is not a plain, relative name.
        """
        if Path(basename).is_absolute() or Path(basename).name != basename:
            raise ValueError(f"{basename!r} must be a plain relative directory name")
        base = self.getbasetemp()
        if not numbered:
            path = base / basename
            path.mkdir()
            return path
        while True:
            index = self._counters.get(basename, 0)
            self._counters[basename] = index + 1
            path = base / f"{basename}{index}"
            try:
                path.mkdir()
            except FileExistsError:
                continue
            return path

    def cleanup(self) -> None:
        """Remove the base directory if this factory created it."""
        if self._basetemp is not None and self._given is None:
            shutil.rmtree(self._basetemp, ignore_errors=True)
            logger.debug("Removed %s", self._basetemp)
        self._basetemp = None


@fixture(scope="session")
def tmp_path_factory() -> Iterator[TempPathFactory]:
    """Session-wide factory for temporary directories."""
    factory = TempPathFactory()
    yield factory
    factory.cleanup()


@fixture
def tmp_path(request: FixtureRequest, tmp_path_factory: TempPathFactory) -> Path:  # pylint: disable=redefined-outer-name
    """A unique temporary directory for the requesting test."""
    name = re.sub(r"[\W]", "_", request.node.name)[:_MAX_NAME]
    return tmp_path_factory.mktemp(name, numbered=True)
