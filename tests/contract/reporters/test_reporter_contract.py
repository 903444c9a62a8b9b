"""Contract tests for Reporter adapters.

Every adapter must accept each notification the session sends, in the
documented order, without raising and without changing the run's result.
"""

from pathlib import Path

from vigil.config import RunConfig
from vigil.domain.errors import CollectionError
from vigil.domain.model import ExitCode, Outcome, RunResult, TestReport
from vigil.interfaces.reporter import Reporter
from vigil.service_layer.session import Session


def test_is_a_reporter(reporter):
    """Adapters implement the Reporter port."""
    assert isinstance(reporter, Reporter)


def test_accepts_every_notification(reporter):
    """Each hook accepts its documented argument and returns None."""
    report = TestReport(nodeid="test_m.py::test_a", outcome=Outcome.FAILED, longrepr="boom")
    result = RunResult(reports=[report], exit_code=ExitCode.TESTS_FAILED, deselected=2)

    assert reporter.on_collection_error(CollectionError(Path("test_x.py"), "bad")) is None
    assert reporter.on_collection_finish(1, 2) is None
    assert reporter.on_report(report) is None
    assert reporter.on_finish(result) is None


def test_reports_for_every_outcome(reporter):
    """Reports of any outcome and phase are accepted."""
    for outcome in Outcome:
        for when in ("collect", "setup", "call", "teardown"):
            reporter.on_report(TestReport(nodeid="n", outcome=outcome, when=when))


def test_usage_error_result(reporter):
    """A result without reports but with a usage error is accepted."""
    reporter.on_finish(
        RunResult(exit_code=ExitCode.USAGE_ERROR, usage_error=ValueError("bad expression"))
    )


def test_full_run(reporter, make_project):
    """A session drives the reporter through a whole run."""
    root = make_project(
        {
            "test_m.py": """
            from vigil import mark

            def test_pass():
                pass

            def test_fail():
                assert False

            @mark.skip(reason="later")
            def test_skip():
                pass
            """
        }
    )
    result = Session(RunConfig(roots=(str(root),), import_mode="importlib"), reporter).run()

    assert result.exit_code is ExitCode.TESTS_FAILED
    assert result.outcomes() == {
        "test_m.py::test_pass": Outcome.PASSED,
        "test_m.py::test_fail": Outcome.FAILED,
        "test_m.py::test_skip": Outcome.SKIPPED,
    }
