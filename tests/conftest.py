"""Global pytest configuration for VIGIL's own test suite."""

from pathlib import Path

import pytest

# pylint: disable=unused-argument

pytest_plugins = [
    "tests.fixtures.project",
    "tests.fixtures.items",
]

TESTS_ROOT = Path(__file__).parent.resolve()

# tree under tests/ -> mark added to every item collected from it
DEFAULT_MARKS = {
    "unit": pytest.mark.unit,
    "integration": pytest.mark.integration,
    "contract": pytest.mark.contract,
}


@pytest.hookimpl(tryfirst=True)
def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Add the default mark of the tree an item lives in (`unit`, ...)."""
    for item in items:
        path = item.path.resolve()
        if TESTS_ROOT not in path.parents:
            continue
        tree = path.relative_to(TESTS_ROOT).parts[0]
        mark = DEFAULT_MARKS.get(tree)
        if mark is None:
            continue
        if not any(marker.name == mark.name for marker in item.iter_markers()):
            item.add_marker(mark)
