"""Tests for serverless project loading and function selection."""

import textwrap
from pathlib import Path

import pytest

from sls_test_runner.models.descriptor import RunOptions
from sls_test_runner.project_loader import (
    DEFAULT_RUNTIME,
    DEFAULT_TIMEOUT,
    FunctionSelectionError,
    ProjectConfigError,
    ServerlessProject,
    get_functions,
    load_project,
)


def write_config(project_path: Path, content: str, name: str = "serverless.yml") -> None:
    """Write a serverless configuration file."""
    (project_path / name).write_text(textwrap.dedent(content))


@pytest.fixture
def project(project_path: Path) -> ServerlessProject:
    """Load a project with several functions."""
    write_config(
        project_path,
        """
        service: users-api
        provider:
          name: aws
          runtime: python3.12
          timeout: 10
        functions:
          users-create:
            handler: src/users/create.main
          users-delete:
            handler: src/users/delete.main
            timeout: 3
          reports-build:
            handler: src/reports.build
            test:
              event: fixtures/report.json
          legacy:
            handler: legacy/index.handler
            runtime: nodejs20.x
          flaky:
            handler: flaky.main
            test:
              skip: true
        """,
    )
    return load_project(project_path)


def test_loads_functions_in_declaration_order(project: ServerlessProject) -> None:
    """Keeps the function order of the configuration file."""
    assert project.service == "users-api"
    assert [d.name for d in project.descriptors()] == [
        "users-create",
        "users-delete",
        "reports-build",
        "legacy",
        "flaky",
    ]


def test_applies_provider_defaults_and_overrides(project: ServerlessProject) -> None:
    """Functions inherit provider settings unless they override them."""
    descriptors = {d.name: d for d in project.descriptors()}

    assert descriptors["users-create"].timeout == 10
    assert descriptors["users-create"].runtime == "python3.12"
    assert descriptors["users-delete"].timeout == 3
    assert descriptors["legacy"].runtime == "nodejs20.x"
    assert not descriptors["legacy"].is_executable


def test_reads_test_settings(project: ServerlessProject, project_path: Path) -> None:
    """Reads the skip flag and the event file of each function."""
    descriptors = {d.name: d for d in project.descriptors()}

    assert descriptors["flaky"].should_skip
    assert descriptors["reports-build"].event_path == (
        project_path.resolve() / "src" / "fixtures" / "report.json"
    )


def test_uses_builtin_defaults_without_provider(project_path: Path) -> None:
    """Falls back to built-in runtime and timeout defaults."""
    write_config(
        project_path,
        """
        service: minimal
        functions:
          hello:
            handler: handler.hello
        """,
        name="serverless.yaml",
    )

    (descriptor,) = load_project(project_path).descriptors()

    assert descriptor.runtime == DEFAULT_RUNTIME
    assert descriptor.timeout == DEFAULT_TIMEOUT
    assert descriptor.project_path == project_path.resolve()


def test_missing_config_raises(project_path: Path) -> None:
    """Raises when no configuration file exists."""
    with pytest.raises(ProjectConfigError, match="No serverless.yml or serverless.yaml"):
        load_project(project_path)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("service: [unclosed", "Cannot read"),
        ("- just\n- a list\n", "must contain a mapping"),
        ("functions: {}\n", "Invalid configuration"),
        (
            "service: bad\nfunctions:\n  fn:\n    handler: no_entry\n",
            "Invalid configuration",
        ),
        (
            "service: bad\nprovider:\n  timeout: 0\n",
            "Invalid configuration",
        ),
    ],
)
def test_invalid_config_raises(project_path: Path, content: str, message: str) -> None:
    """Raises a configuration error for unusable files."""
    write_config(project_path, content)

    with pytest.raises(ProjectConfigError, match=message):
        load_project(project_path)


def test_select_all(project: ServerlessProject) -> None:
    """Selects every function in declaration order."""
    selected = get_functions(project, RunOptions(run_all=True))

    assert [d.name for d in selected] == [d.name for d in project.descriptors()]


def test_select_by_name_keeps_requested_order(project: ServerlessProject) -> None:
    """Selects named functions in the order requested."""
    selected = get_functions(
        project, RunOptions(paths=["reports-build", "users-create"])
    )

    assert [d.name for d in selected] == ["reports-build", "users-create"]


@pytest.mark.parametrize(
    ("identifier", "expected"),
    [
        ("src/users/create", ["users-create"]),
        ("src/users/create.py", ["users-create"]),
        ("src/users", ["users-create", "users-delete"]),
        ("src", ["users-create", "users-delete", "reports-build"]),
        ("./legacy/", ["legacy"]),
    ],
)
def test_select_by_path(
    project: ServerlessProject, identifier: str, expected: list[str]
) -> None:
    """Selects functions whose handler module lives at or under the path."""
    selected = get_functions(project, RunOptions(paths=[identifier]))

    assert [d.name for d in selected] == expected


def test_select_does_not_duplicate(project: ServerlessProject) -> None:
    """A function matched twice is tested once."""
    selected = get_functions(
        project, RunOptions(paths=["users-create", "src/users"])
    )

    assert [d.name for d in selected] == ["users-create", "users-delete"]


def test_unknown_identifier_raises(project: ServerlessProject) -> None:
    """Raises for identifiers that match nothing."""
    with pytest.raises(FunctionSelectionError, match="Function 'missing' not found"):
        get_functions(project, RunOptions(paths=["missing"]))


def test_empty_selection_raises(project: ServerlessProject) -> None:
    """Requires either paths or run_all."""
    with pytest.raises(
        FunctionSelectionError,
        match="You need to specify either a function path or --all",
    ):
        get_functions(project, RunOptions())
