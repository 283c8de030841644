"""CLI entry point for running serverless function tests locally."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from sls_test_runner.models.descriptor import RunOptions
from sls_test_runner.models.result import Failed, Skipped, Succeeded, TestRun, TimedOut
from sls_test_runner.orchestrator import ReportPersistenceError, TestOrchestrator
from sls_test_runner.project_loader import (
    FunctionSelectionError,
    ProjectConfigError,
    get_functions,
    load_project,
)

EXIT_FATAL = 2

STATUS_SYMBOLS = {
    "succeeded": "✓",
    "failed": "✗",
    "timed_out": "⏱",
    "skipped": "-",
}


def log_results_summary(log: logging.Logger, test_run: TestRun) -> None:
    """Log a per-function table of the run at debug level."""
    log.debug("=" * 80)
    log.debug("Test Results Summary:")
    log.debug("=" * 80)

    for record in test_run.records:
        outcome = record.outcome
        symbol = STATUS_SYMBOLS.get(outcome.status, "?")
        log.debug(
            "%s %s: %s (%.2fs)",
            symbol,
            record.identifier,
            outcome.status,
            record.duration,
        )
        match outcome:
            case Failed(message=message) | Skipped(reason=message):
                log.debug("  Message: %s", message)
            case TimedOut():
                log.debug("  Message: %s", outcome.message)
            case Succeeded():
                pass


def parse_paths(paths: Sequence[str]) -> Sequence[str]:
    """Split comma-separated identifiers and drop empty ones."""
    return tuple(
        part.strip() for path in paths for part in path.split(",") if part.strip()
    )


async def run(
    project_path: Path,
    paths: Sequence[str] = (),
    run_all: bool = False,
    output_path: Path | None = None,
) -> int:
    """Run function tests and return exit code.

    Raises:
        ProjectConfigError: If the project configuration is unusable
        FunctionSelectionError: If no function could be selected
        ReportPersistenceError: If the report cannot be written

    """
    log = logging.getLogger("sls_test_runner")
    options = RunOptions(paths=paths, run_all=run_all, output_path=output_path)

    log.debug("Loading project: %s", project_path)
    project = load_project(project_path)
    descriptors = get_functions(project, options)
    log.debug("Selected %d function(s)", len(descriptors))

    orchestrator = TestOrchestrator()
    test_run = await orchestrator.run(descriptors, options.output_path)

    log_results_summary(log, test_run)
    return test_run.exit_status


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run serverless function handlers locally and report results"
    )
    parser.add_argument(
        "paths",
        nargs="*",
        help="Function names or handler paths to test",
    )
    parser.add_argument(
        "-a",
        "--all",
        action="store_true",
        dest="run_all",
        help="Test all functions",
    )
    parser.add_argument(
        "-o",
        "--out",
        type=Path,
        default=None,
        help="JUnit output file",
    )
    parser.add_argument(
        "-p",
        "--project-path",
        type=Path,
        default=Path.cwd(),
        help="Path to the serverless project (default: current directory)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    log = logging.getLogger("sls_test_runner")

    try:
        exit_code = asyncio.run(
            run(
                project_path=args.project_path,
                paths=parse_paths(args.paths),
                run_all=args.run_all,
                output_path=args.out,
            )
        )
    except (ProjectConfigError, FunctionSelectionError, ReportPersistenceError) as e:
        log.error("%s", e)
        exit_code = EXIT_FATAL

    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
