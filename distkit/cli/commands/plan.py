"""Plan command - print the manifest a run would produce."""

from __future__ import annotations

import typer

from distkit.cli.commands._helpers import plan_graph
from distkit.cli.context import build_context
from distkit.release.manifest import build_manifest
from distkit.release.model import ArtifactMode


def plan(
    tag: str | None = typer.Option(None, "--tag", help="Announcement tag (inferred when omitted)"),
    artifacts: ArtifactMode = typer.Option(
        ArtifactMode.ALL, "--artifacts", help="Which artifacts this run covers"
    ),
    target: list[str] = typer.Option([], "--target", help="Target triple (repeatable)"),
) -> None:
    """Show what a release would build and announce, as JSON."""
    ctx = build_context()
    graph = plan_graph(ctx, tag=tag, artifacts=artifacts, targets=target)
    manifest = build_manifest(graph)
    typer.echo(manifest.to_json())
