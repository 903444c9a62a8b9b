"""Run a single test item and turn what happened into a `TestReport`."""

from __future__ import annotations

import logging
import traceback
from time import perf_counter
from typing import Any

from vigil.domain.errors import Failed, OutcomeException, Skipped
from vigil.domain.marks import XFail
from vigil.domain.model import Outcome, TestItem, TestReport

from .fixtures import FixtureManager, FixturePlan

logger = logging.getLogger(__name__)


def format_error(error: BaseException) -> str:
    """Describe an error raised by a test, fixture or finalizer."""
    if isinstance(error, OutcomeException):
        return error.msg or type(error).__name__
    tb = error.__traceback__
    # drop the executor's own frame
    if tb is not None and tb.tb_next is not None:
        tb = tb.tb_next
    return "".join(traceback.format_exception(type(error), error, tb)).rstrip()


class Executor:
    """Executes items one at a time against a shared `FixtureManager`."""

    def __init__(self, manager: FixtureManager | None = None) -> None:
        self.manager = manager or FixtureManager()

    def run(
        self,
        item: TestItem,
        plan: FixturePlan,
        nextitem: TestItem | None = None,
        next_plan: FixturePlan | None = None,
    ) -> TestReport:
        """Set up, call and tear down `item`.

        Errors never escape: they become a failed (or skipped, xfailed)
        report. Teardown always runs before returning, so the next item never
        observes pending finalizers of this one.

        Args:
            item: The item to run.
            plan: Its fixture plan.
            nextitem: The item that runs next, if any; shared fixture scopes
                it can reuse stay open.
            next_plan: The fixture plan of `nextitem`.

        Returns:
            The item's report.
        """
        start = perf_counter()
        outcome, when, longrepr = self._run_phases(item, plan)

        errors = self.manager.teardown(item, nextitem, next_plan)
        if errors:
            described = "\n\n".join(format_error(e) for e in errors)
            if outcome is Outcome.FAILED:
                logger.debug("Teardown errors after failure of %s:\n%s", item.nodeid, described)
            else:
                outcome, when, longrepr = Outcome.FAILED, "teardown", described

        report = TestReport(
            nodeid=item.nodeid,
            outcome=outcome,
            when=when,
            duration=perf_counter() - start,
            longrepr=longrepr,
        )
        logger.debug("%s %s (%s, %.3fs)", item.nodeid, outcome.value, when, report.duration)
        return report

    def _run_phases(
        self, item: TestItem, plan: FixturePlan
    ) -> tuple[Outcome, str, str | None]:
        if item.skip_reason is not None:
            return Outcome.SKIPPED, "setup", item.skip_reason
        if item.xfail is not None and not item.xfail.run:
            return Outcome.XFAILED, "setup", f"[NOTRUN] {item.xfail.reason}".rstrip()

        instance = item.cls() if item.cls is not None and not item.is_static else None
        try:
            kwargs = self.manager.setup(item, plan, instance)
        except Skipped as e:
            return Outcome.SKIPPED, "setup", e.msg
        except (Exception, Failed) as e:
            logger.debug("Setup of %s failed", item.nodeid, exc_info=True)
            if item.xfail is not None and _expected(item.xfail, e):
                return Outcome.XFAILED, "setup", item.xfail.reason or None
            return Outcome.FAILED, "setup", format_error(e)

        func = item.func.__get__(instance, item.cls) if instance is not None else item.func
        return self._call(item, func, kwargs)

    @staticmethod
    def _call(
        item: TestItem, func: Any, kwargs: dict[str, Any]
    ) -> tuple[Outcome, str, str | None]:
        xfail = item.xfail
        try:
            func(**kwargs)
        except Skipped as e:
            return Outcome.SKIPPED, "call", e.msg
        except (Exception, Failed) as e:
            logger.debug("%s raised %r", item.nodeid, e, exc_info=True)
            if xfail is not None and _expected(xfail, e):
                return Outcome.XFAILED, "call", xfail.reason or None
            return Outcome.FAILED, "call", format_error(e)

        if xfail is None:
            return Outcome.PASSED, "call", None
        if xfail.strict:
            return Outcome.FAILED, "call", f"[XPASS(strict)] {xfail.reason}".rstrip()
        return Outcome.XPASSED, "call", xfail.reason or None


def _expected(xfail: XFail, error: BaseException) -> bool:
    if xfail.raises is None:
        return True
    return isinstance(error, xfail.raises)
