"""Test orchestrator for running function handlers one after another."""

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sls_test_runner.events import load_event
from sls_test_runner.invoker import HandlerInvoker
from sls_test_runner.models.descriptor import FunctionDescriptor
from sls_test_runner.models.result import (
    Failed,
    FunctionRecord,
    Invocation,
    Outcome,
    Skipped,
    Succeeded,
    TestRun,
    TimedOut,
)
from sls_test_runner.output_capture import OutputInterceptor
from sls_test_runner.report import build_report

log = logging.getLogger(__name__)


class ReportPersistenceError(Exception):
    """Raised when the JUnit report cannot be written.

    Carries the finalized test run so callers keep the computed counters.
    """

    def __init__(self, path: Path, test_run: TestRun, cause: OSError) -> None:
        super().__init__(f"Cannot write test results to {path}: {cause}")
        self.path = path
        self.test_run = test_run


@dataclass(frozen=True, kw_only=True)
class TestOrchestrator:
    """Runs every function strictly in input order.

    Output interception is process-wide, so only one handler is ever in
    flight; each function is invoked, observed and recorded before the next
    one starts.
    """

    __test__ = False

    invoker: HandlerInvoker = field(default_factory=HandlerInvoker)
    interceptor: OutputInterceptor = field(default_factory=OutputInterceptor)
    event_loader: Callable[[FunctionDescriptor], Mapping[str, Any]] = load_event

    async def run(
        self,
        descriptors: Sequence[FunctionDescriptor],
        output_path: Path | None = None,
    ) -> TestRun:
        """Test all functions and optionally persist a JUnit report.

        Args:
            descriptors: Functions to test, in the order they should run
            output_path: Where to write the JUnit XML report, if anywhere

        Returns:
            The finalized test run, one record per descriptor

        Raises:
            ReportPersistenceError: If the report cannot be written

        """
        test_run = TestRun()

        for descriptor in descriptors:
            test_run.record(await self._test_function(descriptor))

        test_run.finalize()
        log.info(test_run.summary())

        if output_path is not None:
            try:
                build_report(test_run).save(output_path)
            except OSError as e:
                raise ReportPersistenceError(output_path, test_run, e) from e
            log.info("Test results written to %s", output_path)

        return test_run

    async def _test_function(self, descriptor: FunctionDescriptor) -> FunctionRecord:
        """Run one function; any error becomes a failed record."""
        if descriptor.should_skip:
            reason = (
                "skip requested by test configuration"
                if descriptor.test.skip
                else f"runtime {descriptor.runtime} is not executable"
            )
            log.info("Skipping %s", descriptor.name)
            log.debug("%s skipped: %s", descriptor.name, reason)
            return self._record(descriptor, Skipped(reason=reason))

        log.info("Testing %s...", descriptor.name)
        start = time.monotonic()
        captured = ""
        try:
            event = self.event_loader(descriptor)
            handle = self.interceptor.begin()
            try:
                invocation = await self.invoker.invoke(descriptor, event)
            finally:
                captured = self.interceptor.end(handle)
        except (Exception, SystemExit) as e:
            log.debug("Testing %s aborted", descriptor.name, exc_info=True)
            invocation = Invocation(
                outcome=Failed(message=str(e) or type(e).__name__, kind="Error"),
                duration=time.monotonic() - start,
            )

        self._log_outcome(invocation)
        return self._record(
            descriptor,
            invocation.outcome,
            duration=invocation.duration,
            captured_output=captured,
        )

    def _record(
        self,
        descriptor: FunctionDescriptor,
        outcome: Outcome,
        duration: float = 0.0,
        captured_output: str = "",
    ) -> FunctionRecord:
        return FunctionRecord(
            identifier=descriptor.name,
            handler=descriptor.handler,
            outcome=outcome,
            timeout=descriptor.timeout,
            duration=duration,
            captured_output=captured_output,
        )

    def _log_outcome(self, invocation: Invocation) -> None:
        match invocation.outcome:
            case Succeeded():
                log.info("Success!")
            case TimedOut() as timed_out:
                log.info(" TIMEOUT  %s", timed_out.message)
            case Failed(message=message):
                log.info(" ERROR  %s", message)


async def run(
    descriptors: Sequence[FunctionDescriptor],
    output_path: Path | None = None,
) -> int:
    """Test the given functions and return the process exit status."""
    test_run = await TestOrchestrator().run(descriptors, output_path)
    return test_run.exit_status
