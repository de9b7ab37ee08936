from __future__ import annotations

from dataclasses import dataclass

import typer

from distkit.core.config import DistConfig, load_config
from distkit.core.errors import ErrorCode
from distkit.core.result import Err
from distkit.core.workspace import Workspace, detect_workspace
from distkit.output.console import ConsoleProtocol, RichConsole
from distkit.output.errors import error_exit_code, print_error
from distkit.platform.detection import host_triple
from distkit.release.model import Package
from distkit.release.workspace import load_packages


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    config: DistConfig
    packages: list[Package]
    console: ConsoleProtocol
    host: str


def build_context() -> CLIContext:
    console = RichConsole()

    workspace_result = detect_workspace()
    if isinstance(workspace_result, Err):
        typer.echo(f"error: {workspace_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
    workspace = workspace_result.value

    config_result = load_config(workspace.config_path)
    if isinstance(config_result, Err):
        print_error(config_result.error, console)
        raise typer.Exit(code=error_exit_code(config_result.error))

    packages_result = load_packages(workspace.config_path)
    if isinstance(packages_result, Err):
        print_error(packages_result.error, console)
        raise typer.Exit(code=error_exit_code(packages_result.error))

    return CLIContext(
        workspace=workspace,
        config=config_result.value,
        packages=packages_result.value,
        console=console,
        host=host_triple(),
    )
