"""VIGIL

A minimal, library-first test discovery and execution engine. It walks a
directory tree, collects test functions, classes and fixtures, expands
parametrized definitions, selects items with mark and keyword expressions,
and runs each item with scoped fixture lifetimes.

Test modules use the decorators and helpers re-exported here.
"""

from vigil.api import fail, fixture, mark, param, skip
from vigil.service_layer.fixtures import FixtureRequest

__all__ = ["FixtureRequest", "__version__", "fail", "fixture", "mark", "param", "skip"]
__version__ = "0.1.0"
