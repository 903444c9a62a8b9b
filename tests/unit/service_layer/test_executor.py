"""Unit tests for the executor's phase handling and outcome mapping."""

from __future__ import annotations

import types

import pytest

from vigil import api
from vigil.domain.errors import Failed
from vigil.domain.marks import XFail
from vigil.domain.model import Outcome
from vigil.service_layer.executor import Executor, format_error
from vigil.service_layer.fixtures import FixtureManager, FixturePlan, FixtureRegistry, FixtureResolver

# pylint: disable=redefined-outer-name, magic-value-comparison

EMPTY = FixturePlan()


def passes() -> None:
    """Test body that passes."""


def fails() -> None:
    """Test body that fails an assertion."""
    assert 1 == 2, "numbers differ"


def raises_value_error() -> None:
    """Test body raising ValueError."""
    raise ValueError("bad value")


def skips() -> None:
    """Test body skipping itself."""
    api.skip("not today")


def explicit_fail() -> None:
    """Test body failing without a traceback."""
    api.fail("gave up")


@pytest.fixture
def executor() -> Executor:
    """An executor with its own fixture manager."""
    return Executor(FixtureManager())


@pytest.fixture
def run(executor, make_item):
    """Run a one-off item built from keyword overrides."""

    def _run(plan: FixturePlan = EMPTY, **overrides):
        return executor.run(make_item(**overrides), plan)

    return _run


# ============================================================================
#                               Outcomes
# ============================================================================


class TestOutcomes:
    """Tests for the mapping of what happened onto report outcomes."""

    @staticmethod
    def test_pass(run) -> None:
        """A test returning normally passes in the call phase."""
        report = run(func=passes)
        assert (report.outcome, report.when, report.longrepr) == (Outcome.PASSED, "call", None)
        assert report.duration >= 0

    @staticmethod
    def test_assertion_failure(run) -> None:
        """A failing assertion is reported with its traceback."""
        report = run(func=fails)
        assert report.outcome is Outcome.FAILED
        assert report.when == "call"
        assert "AssertionError: numbers differ" in report.longrepr
        assert "in fails" in report.longrepr

    @staticmethod
    def test_imperative_skip_and_fail(run) -> None:
        """skip() and fail() carry their message without a traceback."""
        skipped = run(func=skips)
        assert (skipped.outcome, skipped.when, skipped.longrepr) == (
            Outcome.SKIPPED,
            "call",
            "not today",
        )
        failed = run(func=explicit_fail)
        assert (failed.outcome, failed.longrepr) == (Outcome.FAILED, "gave up")

    @staticmethod
    def test_skip_mark_never_runs(run) -> None:
        """A frozen skip reason short-circuits before setup."""
        report = run(func=raises_value_error, skip_reason="later")
        assert (report.outcome, report.when, report.longrepr) == (
            Outcome.SKIPPED,
            "setup",
            "later",
        )

    @staticmethod
    @pytest.mark.parametrize(
        ("func", "xfail", "outcome"),
        [
            (raises_value_error, XFail(reason="bug", strict=False), Outcome.XFAILED),
            (raises_value_error, XFail(raises=ValueError, strict=False), Outcome.XFAILED),
            (raises_value_error, XFail(raises=KeyError, strict=False), Outcome.FAILED),
            (explicit_fail, XFail(strict=False), Outcome.XFAILED),
            (passes, XFail(reason="bug", strict=False), Outcome.XPASSED),
            (passes, XFail(reason="bug", strict=True), Outcome.FAILED),
        ],
    )
    def test_xfail(run, func, xfail: XFail, outcome: Outcome) -> None:
        """xfail converts expected failures; strict turns an unexpected pass into a failure."""
        assert run(func=func, xfail=xfail).outcome is outcome

    @staticmethod
    def test_strict_xpass_message(run) -> None:
        """A strict xpass names itself in the report."""
        report = run(func=passes, xfail=XFail(reason="bug", strict=True))
        assert report.longrepr == "[XPASS(strict)] bug"

    @staticmethod
    def test_xfail_not_run(run) -> None:
        """xfail(run=False) never calls the test."""
        report = run(func=raises_value_error, xfail=XFail(reason="crashes", run=False))
        assert (report.outcome, report.when, report.longrepr) == (
            Outcome.XFAILED,
            "setup",
            "[NOTRUN] crashes",
        )


# ============================================================================
#                               Fixtures
# ============================================================================


def plan_of(item, *funcs):
    """Register fixture functions as if defined in one module and resolve the plan."""
    module = types.ModuleType("fixtures")
    for func in funcs:
        setattr(module, func.__name__, func)
    registry = FixtureRegistry()
    registry.parse(module, "")
    return FixtureResolver(registry).resolve(item.nodeid, item.argnames)


class TestFixturePhases:
    """Tests for setup and teardown failures."""

    @staticmethod
    def test_setup_error(executor, make_item) -> None:
        """An error in a fixture fails the setup phase; the test never runs."""
        called = []

        @api.fixture
        def broken():
            raise RuntimeError("cannot connect")

        def test_a(broken):
            called.append(1)

        item = make_item(func=test_a, argnames=("broken",))
        report = executor.run(item, plan_of(item, broken))
        assert (report.outcome, report.when) == (Outcome.FAILED, "setup")
        assert "RuntimeError: cannot connect" in report.longrepr
        assert called == []

    @staticmethod
    @pytest.mark.parametrize(
        ("xfail", "outcome"),
        [
            (XFail(reason="flaky backend", strict=False), Outcome.XFAILED),
            (XFail(raises=RuntimeError, strict=True), Outcome.XFAILED),
            (XFail(raises=KeyError, strict=False), Outcome.FAILED),
        ],
    )
    def test_setup_error_under_xfail(executor, make_item, xfail: XFail, outcome: Outcome) -> None:
        """An expected error in a fixture is an expected failure of the setup phase."""

        @api.fixture
        def broken():
            raise RuntimeError("cannot connect")

        item = make_item(func=passes, argnames=("broken",), xfail=xfail)
        report = executor.run(item, plan_of(item, broken))
        assert (report.outcome, report.when) == (outcome, "setup")

    @staticmethod
    def test_skip_in_fixture(executor, make_item) -> None:
        """A fixture calling skip() skips the test in setup."""

        @api.fixture
        def needs_network():
            api.skip("offline")

        item = make_item(func=passes, argnames=("needs_network",))
        report = executor.run(item, plan_of(item, needs_network))
        assert (report.outcome, report.when, report.longrepr) == (
            Outcome.SKIPPED,
            "setup",
            "offline",
        )

    @staticmethod
    def test_teardown_error_fails_a_passing_test(executor, make_item) -> None:
        """A failing finalizer turns a pass into a teardown failure."""

        @api.fixture
        def resource():
            yield "r"
            raise OSError("leaked")

        item = make_item(func=lambda resource: None, argnames=("resource",))
        report = executor.run(item, plan_of(item, resource))
        assert (report.outcome, report.when) == (Outcome.FAILED, "teardown")
        assert "OSError: leaked" in report.longrepr

    @staticmethod
    def test_teardown_error_keeps_call_failure(executor, make_item) -> None:
        """An earlier failure is reported, not the teardown error."""

        @api.fixture
        def resource():
            yield "r"
            raise OSError("leaked")

        def test_a(resource):
            raise ValueError("first")

        item = make_item(func=test_a, argnames=("resource",))
        report = executor.run(item, plan_of(item, resource))
        assert (report.outcome, report.when) == (Outcome.FAILED, "call")
        assert "ValueError: first" in report.longrepr

    @staticmethod
    def test_method_gets_fresh_instance(executor, make_item) -> None:
        """Method items run on a new instance of their class each time."""
        seen = []

        class TestA:
            def test_x(self):
                seen.append(self)

        for _ in range(2):
            item = make_item(func=TestA.test_x, cls=TestA, qualname="TestA.test_x")
            assert executor.run(item, EMPTY).outcome is Outcome.PASSED
        assert len(seen) == 2
        assert seen[0] is not seen[1]


def test_format_error_for_outcome_without_message() -> None:
    """Outcome signals without a message are named by their type."""
    with pytest.raises(Failed) as excinfo:
        api.fail()
    assert format_error(excinfo.value) == "Failed"
