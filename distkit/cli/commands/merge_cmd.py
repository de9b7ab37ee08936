"""Merge command - fold partial manifests into the canonical one."""

from __future__ import annotations

from pathlib import Path

import typer

from distkit import __version__
from distkit.cli.commands._helpers import unwrap_or_exit
from distkit.cli.context import build_context
from distkit.release.manifest import MANIFEST_SUFFIX, DistManifest, load_manifest, save_manifest
from distkit.release.merge import load_and_merge_manifests


def merge(
    tag: str = typer.Option(..., "--tag", help="Announcement tag the partials were built for"),
    directory: Path | None = typer.Option(
        None, "--dir", help="Directory holding partial manifests (default: dist dir)"
    ),
    seed: Path | None = typer.Option(None, "--seed", help="Existing manifest to merge into"),
    out: Path | None = typer.Option(
        None, "--out", help=f"Output path (default: <dir>/{MANIFEST_SUFFIX})"
    ),
) -> None:
    """Merge every partial manifest in a directory."""
    ctx = build_context()
    dist_dir = ctx.workspace.root / directory if directory else ctx.workspace.dist_dir(ctx.config.dist_dir)

    if seed is not None:
        canonical = unwrap_or_exit(load_manifest(ctx.workspace.root / seed), ctx)
    else:
        canonical = DistManifest(dist_version=__version__, announcement_tag=tag)

    merged = unwrap_or_exit(
        load_and_merge_manifests(dist_dir, canonical, tag=tag, console=ctx.console), ctx
    )
    if merged == 0:
        ctx.console.warning(f"no manifests for {tag} found in {dist_dir}")

    out_path = ctx.workspace.root / out if out else dist_dir / MANIFEST_SUFFIX
    unwrap_or_exit(save_manifest(out_path, canonical), ctx)
    ctx.console.success(f"merged {merged} manifest(s) into {out_path}")
