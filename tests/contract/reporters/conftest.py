"""Pytest fixtures for Reporter contract tests.

Provided fixtures
-----------------
- **reporter**: Parametrized factory that returns a **fresh** `Reporter` per
  test. Currently supports `"memory"` and `"logging"`. To exercise
  additional implementations, add their keys to the `params` list and branch
  in the fixture body.
"""

from __future__ import annotations

import logging

import pytest

from vigil.adapters.reporters import LoggingReporter, MemoryReporter
from vigil.interfaces.reporter import Reporter


@pytest.fixture(params=["memory", "logging"])
def reporter(request: pytest.FixtureRequest) -> Reporter:
    """Return a fresh reporter for the requested adapter.

    Current params:
      - `"memory"` → `MemoryReporter`
      - `"logging"` → `LoggingReporter` writing to a dedicated test logger
    """

    match request.param:
        case "memory":
            return MemoryReporter()
        case "logging":
            return LoggingReporter(logging.getLogger("tests.contract.reporter"))
        case _:
            raise ValueError(f"unknown reporter type: {request.param}")
