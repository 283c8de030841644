"""Loading of the serverless project configuration and function selection."""

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path, PurePosixPath

import yaml
from pydantic import Field, ValidationError

from sls_test_runner.models.base import Model
from sls_test_runner.models.descriptor import (
    FunctionDescriptor,
    RunOptions,
    TestConfig,
)

log = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("serverless.yml", "serverless.yaml")
DEFAULT_RUNTIME = "python3.12"
DEFAULT_TIMEOUT = 6.0


class ProjectConfigError(Exception):
    """Raised when the project configuration is missing or invalid."""


class FunctionSelectionError(Exception):
    """Raised when the requested functions cannot be resolved."""


class ProviderConfig(Model):
    """Provider-wide function defaults."""

    name: str = "aws"
    runtime: str = Field(default=DEFAULT_RUNTIME)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)


class FunctionConfig(Model):
    """A function entry of the project configuration."""

    handler: str = Field(..., pattern=r"^.+\.[A-Za-z_]\w*$")
    runtime: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    test: TestConfig = Field(default_factory=TestConfig)


class ServerlessProject(Model):
    """Parsed serverless project."""

    path: Path
    service: str
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    functions: Mapping[str, FunctionConfig] = Field(default_factory=dict)

    def descriptors(self) -> Sequence[FunctionDescriptor]:
        """All functions in declaration order."""
        return [
            FunctionDescriptor(
                name=name,
                handler=function.handler,
                runtime=function.runtime or self.provider.runtime,
                timeout=function.timeout or self.provider.timeout,
                project_path=self.path,
                test=function.test,
            )
            for name, function in self.functions.items()
        ]


def load_project(project_path: Path) -> ServerlessProject:
    """Load the serverless project rooted at ``project_path``.

    Raises:
        ProjectConfigError: If no configuration file exists or it is invalid

    """
    for file_name in CONFIG_FILE_NAMES:
        config_path = project_path / file_name
        if config_path.is_file():
            break
    else:
        raise ProjectConfigError(
            f"No {' or '.join(CONFIG_FILE_NAMES)} found in {project_path}"
        )

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ProjectConfigError(f"Cannot read {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ProjectConfigError(f"{config_path} must contain a mapping")

    try:
        project = ServerlessProject.model_validate(
            {**raw, "path": project_path.resolve()}
        )
    except ValidationError as e:
        raise ProjectConfigError(f"Invalid configuration in {config_path}: {e}") from e

    log.debug(
        "Loaded service %s with %d function(s)", project.service, len(project.functions)
    )
    return project


def get_functions(
    project: ServerlessProject, options: RunOptions
) -> Sequence[FunctionDescriptor]:
    """Resolve the functions selected by the run options.

    Args:
        project: Loaded serverless project
        options: Either ``run_all`` or explicit ``paths``; a path is a function
            name or a handler module path relative to the project root

    Returns:
        Selected functions, in declaration order for ``run_all`` and in the
        order of ``paths`` otherwise

    Raises:
        FunctionSelectionError: If an identifier matches nothing or the
            selection is empty

    """
    all_functions = project.descriptors()

    selected: list[FunctionDescriptor] = []
    if options.run_all:
        selected.extend(all_functions)
    else:
        for identifier in options.paths:
            matches = _match_identifier(all_functions, identifier)
            if not matches:
                raise FunctionSelectionError(f"Function '{identifier}' not found")
            for function in matches:
                if function not in selected:
                    selected.append(function)

    if not selected:
        raise FunctionSelectionError(
            "You need to specify either a function path or --all to test all functions"
        )

    return selected


def _match_identifier(
    functions: Sequence[FunctionDescriptor], identifier: str
) -> Sequence[FunctionDescriptor]:
    by_name = [f for f in functions if f.name == identifier]
    if by_name:
        return by_name

    wanted = PurePosixPath(identifier.strip("/").removesuffix(".py"))
    return [
        f
        for f in functions
        if wanted == PurePosixPath(f.module_name)
        or wanted in PurePosixPath(f.module_name).parents
    ]
