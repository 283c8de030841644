"""JUnit XML report for a test run."""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

from sls_test_runner.models.result import (
    Failed,
    FailureKind,
    Skipped,
    Succeeded,
    TestRun,
    TimedOut,
)

log = logging.getLogger(__name__)

TEST_CASE_NAME = "should succeed"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

# Characters outside the XML 1.0 Char production
INVALID_XML_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def _xml_text(text: str) -> str:
    return INVALID_XML_CHARS_RE.sub("", text)


@dataclass(frozen=True, kw_only=True)
class Failure:
    message: str
    kind: FailureKind


@dataclass(kw_only=True)
class TestCase:
    """A single test case inside a suite."""

    __test__ = False

    name: str
    classname: str = ""
    duration: float = 0.0
    output: str = ""
    failures: list[Failure] = field(default_factory=list)

    def set_duration(self, seconds: float) -> None:
        self.duration = seconds

    def set_output(self, text: str) -> None:
        self.output = text

    def add_failure(self, message: str, kind: FailureKind) -> None:
        self.failures.append(Failure(message=message, kind=kind))

    def to_element(self) -> ET.Element:
        element = ET.Element(
            "testcase",
            name=self.name,
            classname=self.classname,
            time=repr(self.duration),
        )
        for failure in self.failures:
            ET.SubElement(
                element,
                "failure",
                message=_xml_text(failure.message),
                type=failure.kind,
            )
        if self.output:
            ET.SubElement(element, "system-out").text = _xml_text(self.output)
        return element


@dataclass(kw_only=True)
class TestSuite:
    """One suite per tested function."""

    __test__ = False

    name: str
    skipped: bool = False
    cases: list[TestCase] = field(default_factory=list)

    def add_case(self, name: str, classname: str = "") -> TestCase:
        case = TestCase(name=name, classname=classname)
        self.cases.append(case)
        return case

    def mark_skipped(self) -> None:
        self.skipped = True

    @property
    def duration(self) -> float:
        return sum(case.duration for case in self.cases)

    @property
    def failure_count(self) -> int:
        return sum(1 for case in self.cases if case.failures)

    def to_element(self) -> ET.Element:
        element = ET.Element(
            "testsuite",
            name=self.name,
            tests=str(len(self.cases)),
            failures=str(self.failure_count),
            errors="0",
            skipped="1" if self.skipped else "0",
            time=repr(self.duration),
        )
        element.extend(case.to_element() for case in self.cases)
        return element


@dataclass(kw_only=True)
class JUnitReport:
    """Accumulates suites and serializes them as JUnit XML."""

    name: str = "serverless function tests"
    suites: list[TestSuite] = field(default_factory=list)

    def add_suite(self, name: str) -> TestSuite:
        suite = TestSuite(name=name)
        self.suites.append(suite)
        return suite

    def serialize(self) -> str:
        root = ET.Element(
            "testsuites",
            name=self.name,
            tests=str(sum(len(suite.cases) for suite in self.suites)),
            failures=str(sum(suite.failure_count for suite in self.suites)),
            skipped=str(sum(1 for suite in self.suites if suite.skipped)),
            time=repr(sum(suite.duration for suite in self.suites)),
        )
        root.extend(suite.to_element() for suite in self.suites)
        ET.indent(root)
        return XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"

    def save(self, path: Path) -> None:
        """Write the report, creating missing parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.serialize(), encoding="utf-8")
        log.debug("Wrote %d suite(s) to %s", len(self.suites), path)


def build_report(test_run: TestRun) -> JUnitReport:
    """Map each record of a test run onto one suite."""
    report = JUnitReport()

    for record in test_run.records:
        suite = report.add_suite(record.identifier)

        if isinstance(record.outcome, Skipped):
            suite.mark_skipped()
            continue

        test_case = suite.add_case(TEST_CASE_NAME, record.handler)
        test_case.set_duration(record.duration)
        test_case.set_output(record.captured_output)

        match record.outcome:
            case Succeeded():
                pass
            case TimedOut() as timed_out:
                test_case.add_failure(timed_out.message, "Timeout")
            case Failed(message=message, kind=kind, timeout_exceeded=overran):
                if overran:
                    message += f" (timeout of {record.timeout:g} seconds also exceeded)"
                test_case.add_failure(message, kind)

    return report
