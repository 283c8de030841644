"""Shared fixtures for writing handler modules to disk."""

import textwrap
from pathlib import Path
from typing import Protocol

import pytest

from sls_test_runner.models.descriptor import FunctionDescriptor, TestConfig


class WriteHandlerFn(Protocol):
    """Protocol for handler module creation function."""

    def __call__(self, module: str, source: str) -> Path:
        """Write a handler module and return its path."""


class MakeDescriptorFn(Protocol):
    """Protocol for descriptor creation function."""

    def __call__(
        self,
        name: str,
        handler: str = "handler.main",
        *,
        timeout: float = 5.0,
        runtime: str = "python3.12",
        skip: bool = False,
        event_file: str = "event.json",
    ) -> FunctionDescriptor:
        """Build a descriptor rooted at the test project."""


@pytest.fixture
def project_path(tmp_path: Path) -> Path:
    """Create an empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def write_handler(project_path: Path) -> WriteHandlerFn:
    """Return a function to write handler modules into the project."""

    def _write(module: str, source: str) -> Path:
        module_path = project_path / f"{module}.py"
        module_path.parent.mkdir(parents=True, exist_ok=True)
        module_path.write_text(textwrap.dedent(source))
        return module_path

    return _write


@pytest.fixture
def make_descriptor(project_path: Path) -> MakeDescriptorFn:
    """Return a function to build descriptors for the test project."""

    def _make(
        name: str,
        handler: str = "handler.main",
        *,
        timeout: float = 5.0,
        runtime: str = "python3.12",
        skip: bool = False,
        event_file: str = "event.json",
    ) -> FunctionDescriptor:
        return FunctionDescriptor(
            name=name,
            handler=handler,
            runtime=runtime,
            timeout=timeout,
            project_path=project_path,
            test=TestConfig(skip=skip, event_file=event_file),
        )

    return _make
