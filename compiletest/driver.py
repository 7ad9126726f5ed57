"""
Parallel test driver.

Each test runs the synchronous pipeline in `runtest.run` on a worker thread;
an asyncio semaphore bounds how many run at once.
"""

from __future__ import annotations

import asyncio
import os
import time
from typing import ClassVar, Literal, TypeAlias

from pydantic import BaseModel, Field

from . import display, runtest
from .common import Config, Mode, TestPaths
from .discovery import collect_tests, make_test_name
from .errors import HarnessError
from .header import EarlyProps
from .logging import log_context, log_event

OutcomeStatus: TypeAlias = Literal["passed", "failed", "ignored"]


class TestCase(BaseModel):
    __test__: ClassVar[bool] = False

    name: str
    paths: TestPaths
    ignore: bool = False
    should_fail: bool = False
    error: str | None = None
    error_type: str | None = None


class TestOutcome(BaseModel):
    __test__: ClassVar[bool] = False

    name: str
    status: OutcomeStatus
    detail: str = ""
    duration_ms: int = 0
    report: str = Field(default="", repr=False)


class RunSummary(BaseModel):
    outcomes: list[TestOutcome] = Field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def passed(self) -> int:
        return self.count("passed")

    @property
    def failed(self) -> int:
        return self.count("failed")

    @property
    def ignored(self) -> int:
        return self.count("ignored")

    @property
    def ok(self) -> bool:
        return self.failed == 0


def make_test(config: Config, testpaths: TestPaths) -> TestCase:
    name = make_test_name(config, testpaths)
    try:
        early_props = EarlyProps.from_file(config, testpaths.file)
    except HarnessError as error:
        # A file whose directives cannot be read still gets a result line.
        log_event(
            event="directives.failed",
            level="error",
            message=str(error),
            test=name,
            error_type=type(error).__name__,
        )
        return TestCase(
            name=name,
            paths=testpaths,
            error=str(error),
            error_type=type(error).__name__,
        )

    # Every test is also run through the pretty printer, where `should-fail`
    # has no meaning.
    should_fail = early_props.should_fail and config.mode is not Mode.PRETTY
    return TestCase(
        name=name,
        paths=testpaths,
        ignore=early_props.ignore,
        should_fail=should_fail,
    )


def make_tests(config: Config) -> list[TestCase]:
    return [make_test(config, testpaths) for testpaths in collect_tests(config)]


def filter_tests(config: Config, tests: list[TestCase]) -> list[TestCase]:
    if config.filter is not None:
        if config.filter_exact:
            tests = [test for test in tests if test.name == config.filter]
        else:
            tests = [test for test in tests if config.filter in test.name]

    if config.run_ignored:
        tests = [test.model_copy(update={"ignore": False}) for test in tests if test.ignore]
    return sorted(tests, key=lambda test: test.name)


def run_test(config: Config, test: TestCase) -> TestOutcome:
    if test.ignore:
        log_event(event="test.ignored", message=test.name)
        return TestOutcome(name=test.name, status="ignored")

    started = time.monotonic()
    with log_context(test=test.name, mode=config.mode.value), display.buffered_report() as report:
        log_event(event="test.start", message=test.name)
        failure: str | None = test.error
        error_type = test.error_type
        if test.error is not None:
            display.print_error(test.error)
        else:
            try:
                runtest.run(config, test.paths)
            except HarnessError as error:
                failure = str(error)
                error_type = type(error).__name__
            except Exception as error:
                # Whatever goes wrong inside one test only fails that test.
                failure = f"{type(error).__name__}: {error}"
                error_type = type(error).__name__
                display.print_error(failure)
        duration_ms = int((time.monotonic() - started) * 1000)

        status: OutcomeStatus = "passed"
        detail = ""
        if test.should_fail:
            if failure is None:
                status, detail = "failed", "test did not fail as expected"
        elif failure is not None:
            status, detail = "failed", failure

        if status == "failed":
            log_event(
                event="test.failed",
                level="error",
                message=detail,
                error_type=error_type,
                duration_ms=duration_ms,
            )
        else:
            log_event(event="test.passed", message=failure or test.name, duration_ms=duration_ms)

        return TestOutcome(
            name=test.name,
            status=status,
            detail=detail,
            duration_ms=duration_ms,
            report=report.export_text(styles=True),
        )


async def run_tests_async(config: Config, tests: list[TestCase]) -> RunSummary:
    jobs = config.jobs or os.cpu_count() or 1
    if "android" in config.target:
        jobs = 1
    semaphore = asyncio.Semaphore(jobs)

    async def run_one(test: TestCase) -> TestOutcome:
        async with semaphore:
            outcome = await asyncio.to_thread(run_test, config, test)
        display.print_test_result(outcome.name, outcome.status, quiet=config.quiet)
        if outcome.status == "failed" or config.verbose:
            display.print_report(outcome.report)
        return outcome

    outcomes = await asyncio.gather(*[run_one(test) for test in tests])
    return RunSummary(outcomes=list(outcomes))


def run_tests(config: Config) -> RunSummary:
    if "android" in config.target:
        # Device runners are not safe to drive concurrently.
        os.environ["RUST_TEST_THREADS"] = "1"
    # Keeps Windows installer detection from elevating test binaries.
    os.environ["__COMPAT_LAYER"] = "RunAsInvoker"

    tests = filter_tests(config, make_tests(config))
    display.print_raw(f"\nrunning {len(tests)} tests")
    summary = asyncio.run(run_tests_async(config, tests))

    display.print_summary(
        [
            (outcome.name, outcome.status, outcome.detail)
            for outcome in summary.outcomes
            if outcome.status != "passed" or config.verbose
        ],
        summary.passed,
        summary.failed,
        summary.ignored,
    )
    log_event(
        event="run.summary",
        level="info" if summary.ok else "error",
        message=f"{summary.passed} passed; {summary.failed} failed; {summary.ignored} ignored",
        passed=summary.passed,
        failed=summary.failed,
        ignored=summary.ignored,
    )
    return summary
