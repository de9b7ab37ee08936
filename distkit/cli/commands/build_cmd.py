"""Build command - run build steps and bundle this machine's artifacts."""

from __future__ import annotations

import os

import typer

from distkit.cli.commands._helpers import plan_graph, unwrap_or_exit
from distkit.cli.context import build_context
from distkit.release.manifest import build_manifest, partial_manifest_name, save_manifest
from distkit.release.model import ArtifactMode
from distkit.release.runner import bundle_artifacts, run_build_steps
from distkit.release.scheduler import compute_build_steps


def build(
    tag: str | None = typer.Option(None, "--tag", help="Announcement tag (inferred when omitted)"),
    artifacts: ArtifactMode = typer.Option(
        ArtifactMode.LOCAL, "--artifacts", help="Which artifacts this run covers"
    ),
    target: list[str] = typer.Option([], "--target", help="Target triple (repeatable)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List build steps without running them"),
) -> None:
    """Build, bundle, and write a partial manifest for this machine."""
    ctx = build_context()
    graph = plan_graph(ctx, tag=tag, artifacts=artifacts, targets=target)

    steps = unwrap_or_exit(
        compute_build_steps(graph, ctx.config, base_rustflags=os.environ.get("RUSTFLAGS", "")),
        ctx,
    )

    if dry_run:
        for step in steps:
            ctx.console.print(step.describe())
        return

    manifest = build_manifest(graph)
    ctx.console.header(f"building {len(steps)} step(s) for {graph.system_id}")
    unwrap_or_exit(run_build_steps(graph, steps, manifest, ctx.console), ctx)
    unwrap_or_exit(bundle_artifacts(graph, manifest, ctx.console), ctx)

    out = graph.dist_dir / partial_manifest_name(graph.system_id)
    unwrap_or_exit(save_manifest(out, manifest), ctx)
    ctx.console.success(str(out))
