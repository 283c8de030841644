"""Models for function invocation outcomes and the aggregate test run."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

FailureKind = Literal["Error", "Failed", "Timeout"]


@dataclass(frozen=True, kw_only=True)
class Skipped:
    """Function was not invoked."""

    status: ClassVar[str] = "skipped"

    reason: str


@dataclass(frozen=True, kw_only=True)
class Succeeded:
    """Handler completed without error within its timeout."""

    status: ClassVar[str] = "succeeded"

    result: Any = None


@dataclass(frozen=True, kw_only=True)
class TimedOut:
    """Handler did not complete within its declared timeout."""

    status: ClassVar[str] = "timed_out"

    timeout: float

    @property
    def message(self) -> str:
        return f"Timeout of {self.timeout:g} seconds exceeded"


@dataclass(frozen=True, kw_only=True)
class Failed:
    """Handler failed to load, raised, or signalled an error.

    ``timeout_exceeded`` records that the failure was also observed after the
    declared timeout; the outcome stays a failure either way.
    """

    status: ClassVar[str] = "failed"

    message: str
    kind: FailureKind = "Error"
    timeout_exceeded: bool = False


Outcome = Skipped | Succeeded | TimedOut | Failed


@dataclass(frozen=True, kw_only=True)
class Invocation:
    """Classified result of invoking one handler."""

    outcome: Outcome
    duration: float


@dataclass(frozen=True, kw_only=True)
class FunctionRecord:
    """Per-function entry of a test run."""

    identifier: str
    handler: str
    outcome: Outcome
    timeout: float
    duration: float = 0.0
    captured_output: str = ""


@dataclass(kw_only=True)
class TestRun:
    """Ordered records of one run plus running counters.

    Records are appended by the orchestrator as each function completes; once
    finalized the run is read-only.
    """

    __test__ = False

    records: list[FunctionRecord] = field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    finalized: bool = False

    @property
    def skipped(self) -> int:
        return self.total - self.succeeded - self.failed

    @property
    def exit_status(self) -> int:
        """Process exit status for this run: non-zero when anything failed."""
        return 1 if self.failed > 0 else 0

    def record(self, record: FunctionRecord) -> None:
        """Append a record and update the counters."""
        if self.finalized:
            raise RuntimeError("Cannot record into a finalized test run")

        self.records.append(record)
        self.total += 1
        match record.outcome:
            case Succeeded():
                self.succeeded += 1
            case Failed() | TimedOut():
                self.failed += 1

    def finalize(self) -> None:
        self.finalized = True

    def summary(self) -> str:
        return (
            f"Tests completed: {self.succeeded} succeeded / "
            f"{self.failed} failed / {self.skipped} skipped"
        )

    def outcomes(self) -> Sequence[Outcome]:
        return [record.outcome for record in self.records]
