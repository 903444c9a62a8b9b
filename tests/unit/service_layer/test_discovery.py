"""Unit tests for filesystem discovery."""

from pathlib import Path

import pytest

from vigil.domain.errors import ConfigurationError
from vigil.service_layer.discovery import matches_any, walk

# pylint: disable=redefined-outer-name

INCLUDE = ("test_*.py", "*_test.py")


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """A small project tree with tests, helpers and excluded directories."""
    files = [
        "test_root.py",
        "helper.py",
        "b/test_b.py",
        "a/test_a2.py",
        "a/test_a1.py",
        "a/deep/thing_test.py",
        "a/notes.txt",
        ".hidden/test_hidden.py",
        "build/test_built.py",
        "a/__pycache__/test_cached.py",
    ]
    for name in files:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")
    return tmp_path


def relative(paths, root: Path) -> list[str]:
    """Posix paths relative to `root`."""
    return [p.relative_to(root.resolve()).as_posix() for p in paths]


# --- Tests ---


def test_depth_first_sorted_files_before_subdirs(tree: Path) -> None:
    """Files of a directory come first, then its subdirectories in name order."""
    found = walk([tree], INCLUDE, ("build", ".*", "__pycache__"))
    assert relative(found, tree) == [
        "test_root.py",
        "a/test_a1.py",
        "a/test_a2.py",
        "a/deep/thing_test.py",
        "b/test_b.py",
    ]


def test_excluded_directories_are_pruned(tree: Path) -> None:
    """Nothing below an excluded directory is yielded."""
    found = relative(walk([tree], INCLUDE, (".*", "build", "__pycache__")), tree)
    assert not any(p.startswith((".hidden", "build")) or "__pycache__" in p for p in found)


def test_without_exclusions_everything_is_visited(tree: Path) -> None:
    """With no exclusions every matching file is found."""
    found = relative(walk([tree], INCLUDE), tree)
    assert "build/test_built.py" in found
    assert ".hidden/test_hidden.py" in found


def test_file_root_is_yielded_as_is(tree: Path) -> None:
    """A file root is yielded even when it does not match the patterns."""
    assert relative(walk([tree / "helper.py"], INCLUDE), tree) == ["helper.py"]


def test_duplicate_roots_yield_once(tree: Path) -> None:
    """Overlapping roots do not produce duplicates."""
    found = relative(walk([tree / "a", tree / "a" / "test_a1.py", tree / "a"], INCLUDE), tree)
    assert found.count("a/test_a1.py") == 1


def test_missing_root_fails_eagerly(tmp_path: Path) -> None:
    """A nonexistent root raises before iteration starts."""
    with pytest.raises(ConfigurationError, match="does not exist"):
        walk([tmp_path / "missing"], INCLUDE)


def test_walk_is_lazy(tree: Path) -> None:
    """Walking is a generator: files created before consumption are seen."""
    found = walk([tree / "b"], INCLUDE)
    (tree / "b" / "test_late.py").write_text("")
    assert relative(found, tree) == ["b/test_b.py", "b/test_late.py"]


@pytest.mark.parametrize(
    ("name", "expected"),
    [("test_x.py", True), ("x_test.py", True), ("testx.py", False), ("conftest.py", False)],
)
def test_matches_any(name: str, expected: bool) -> None:
    """Include patterns are shell-style globs."""
    assert matches_any(name, INCLUDE) is expected
