from __future__ import annotations

import os
from pathlib import Path

import typer

from distkit import __version__
from distkit.cli.commands.build_cmd import build
from distkit.cli.commands.linkage_cmd import linkage
from distkit.cli.commands.merge_cmd import merge
from distkit.cli.commands.plan import plan
from distkit.core.config import CONFIG_FILE_NAME
from distkit.core.errors import ErrorCode
from distkit.core.workspace import is_workspace_root


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(plan)
app.command()(build)
app.command()(merge)
app.command()(linkage)


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        help="Workspace root (overrides auto detection)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if workspace is not None:
        try:
            root = workspace.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --workspace: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not root.is_dir() or not is_workspace_root(root):
            typer.echo(
                f"error: --workspace '{root}' is not a valid workspace (missing {CONFIG_FILE_NAME})",
                err=True,
            )
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

        os.environ["DISTKIT_WORKSPACE"] = str(root)


def main() -> None:
    app()
