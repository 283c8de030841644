"""Models describing the functions selected for a test run."""

from collections.abc import Sequence
from pathlib import Path

from pydantic import AliasChoices, Field

from sls_test_runner.models.base import Model

DEFAULT_EVENT_FILE = "event.json"
EXECUTABLE_RUNTIME_PREFIX = "python"


class TestConfig(Model):
    """Per-function test settings."""

    __test__ = False

    skip: bool = Field(default=False, description="Skip this function entirely")
    event_file: str = Field(
        default=DEFAULT_EVENT_FILE,
        validation_alias=AliasChoices("event", "eventFile", "event_file"),
        description="Event file name, relative to the handler module directory",
    )


class FunctionDescriptor(Model):
    """A single function to test, as resolved from the project configuration."""

    name: str = Field(..., description="Function identifier")
    handler: str = Field(..., description="Handler as '<module path>.<entry>'")
    runtime: str = Field(..., description="Runtime tag (e.g. 'python3.12')")
    timeout: float = Field(..., gt=0, description="Declared timeout in seconds")
    project_path: Path = Field(..., description="Project root directory")
    test: TestConfig = Field(default_factory=TestConfig)

    @property
    def module_name(self) -> str:
        """Handler module path without the entry symbol (e.g. 'src/users')."""
        return self.handler.rsplit(".", 1)[0]

    @property
    def entry_symbol(self) -> str:
        """Name of the handler callable inside its module."""
        return self.handler.rsplit(".", 1)[-1]

    @property
    def module_path(self) -> Path:
        """Absolute path of the handler's source file."""
        return self.project_path / f"{self.module_name}.py"

    @property
    def directory(self) -> Path:
        """Directory holding the handler module and its event file."""
        return self.module_path.parent

    @property
    def event_path(self) -> Path:
        return self.directory / self.test.event_file

    @property
    def is_executable(self) -> bool:
        """Whether the harness can run this function in-process."""
        return self.runtime.startswith(EXECUTABLE_RUNTIME_PREFIX)

    @property
    def should_skip(self) -> bool:
        return not self.is_executable or self.test.skip


class RunOptions(Model):
    """Selection and output options for one test run."""

    paths: Sequence[str] = Field(
        default_factory=tuple, description="Function names or handler paths"
    )
    run_all: bool = Field(default=False, description="Test every function")
    output_path: Path | None = Field(
        default=None, description="JUnit XML report destination"
    )
