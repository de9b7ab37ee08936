"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from distkit.core.result import Err, Result
from distkit.output.errors import DistError, error_exit_code, print_error
from distkit.release.graph import build_graph
from distkit.release.model import ArtifactMode, DistGraph
from distkit.release.tag import AnnouncementTag, infer_tag, parse_tag

if TYPE_CHECKING:
    from distkit.cli.context import CLIContext


def fail(error: DistError, ctx: CLIContext) -> NoReturn:
    print_error(error, ctx.console)
    raise typer.Exit(code=error_exit_code(error))


def unwrap_or_exit[T](result: Result[T, DistError], ctx: CLIContext) -> T:
    """Return the Ok value, or report the error and exit with its code."""
    if isinstance(result, Err):
        fail(result.error, ctx)
    return result.value


def resolve_tag(ctx: CLIContext, tag: str | None) -> AnnouncementTag:
    result = parse_tag(ctx.packages, tag) if tag else infer_tag(ctx.packages)
    return unwrap_or_exit(result, ctx)


def plan_graph(
    ctx: CLIContext,
    *,
    tag: str | None,
    artifacts: ArtifactMode,
    targets: list[str],
) -> DistGraph:
    announcing = resolve_tag(ctx, tag)
    graph = build_graph(
        ctx.packages,
        announcing,
        ctx.config,
        workspace_root=ctx.workspace.root,
        targets=targets,
        mode=artifacts,
        host=ctx.host,
        console=ctx.console,
    )
    return unwrap_or_exit(graph, ctx)
