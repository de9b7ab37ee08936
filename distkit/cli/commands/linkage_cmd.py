"""Linkage command - report what a built binary links against."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from distkit.cli.commands._helpers import fail
from distkit.cli.context import build_context
from distkit.core.result import Err
from distkit.release.linkage import determine_linkage


def linkage(
    path: Path = typer.Argument(..., help="Binary to inspect"),
    target: str | None = typer.Option(
        None, "--target", help="Target triple of the binary (default: host)", show_default=False
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Classify the dynamic libraries a binary depends on."""
    ctx = build_context()
    result = determine_linkage(path.resolve(), target or ctx.host)
    if isinstance(result, Err):
        fail(result.error, ctx)

    report = result.value
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return
    report.report(ctx.console)
