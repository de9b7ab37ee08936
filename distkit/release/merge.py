"""Folding partial manifests into the canonical one.

Merging is additive and idempotent: re-merging a manifest changes nothing,
and the result does not depend on the order manifests are merged in.
Fields written by a single machine (`ci`) are the only last-write-wins
values.
"""

from __future__ import annotations

import copy
from pathlib import Path

from distkit.core.result import Err, Ok, Result
from distkit.output.console import ConsoleProtocol

from .errors import ManifestError
from .manifest import Asset, DistManifest, ManifestArtifact, load_manifests

__all__ = ["load_and_merge_manifests", "merge_manifest"]


def _merge_artifact(existing: ManifestArtifact, incoming: ManifestArtifact) -> None:
    for style, digest in incoming.checksums.items():
        existing.checksums.setdefault(style, digest)

    if existing.path is None:
        existing.path = incoming.path
    if existing.install_hint is None:
        existing.install_hint = incoming.install_hint
    if existing.description is None:
        existing.description = incoming.description
    if existing.checksum is None:
        existing.checksum = incoming.checksum
    existing.target_triples = sorted(set(existing.target_triples) | set(incoming.target_triples))

    by_path = {asset.path: asset for asset in existing.assets}
    for asset in incoming.assets:
        found = by_path.get(asset.path)
        if found is None:
            added = Asset(path=asset.path, name=asset.name, kind=asset.kind, id=asset.id)
            existing.assets.append(added)
            by_path[asset.path] = added
        elif found.id is None:
            found.id = asset.id
    existing.assets.sort(key=lambda a: a.path)


def merge_manifest(
    canonical: DistManifest,
    partial: DistManifest,
    *,
    tag: str,
    console: ConsoleProtocol,
    source: str = "manifest",
) -> bool:
    """Fold one partial manifest into `canonical` in place.

    Returns False when the partial belongs to another tag and was skipped.
    """
    if partial.announcement_tag != tag:
        console.warning(
            f"skipping {source}: it was built for tag {partial.announcement_tag!r}, not {tag!r}"
        )
        return False

    if canonical.dist_version is None:
        canonical.dist_version = partial.dist_version
    canonical.announcement_is_prerelease = (
        canonical.announcement_is_prerelease or partial.announcement_is_prerelease
    )

    for release in partial.releases:
        entry = canonical.ensure_release(release.app_name, release.app_version)
        if entry.display_name is None:
            entry.display_name = release.display_name
        for provider, fields in release.hosting.items():
            existing = entry.hosting.setdefault(provider, {})
            for key, value in fields.items():
                existing.setdefault(key, value)
        for artifact_id in release.artifacts:
            if artifact_id not in entry.artifacts:
                entry.artifacts.append(artifact_id)
        entry.artifacts.sort()
    canonical.releases.sort(key=lambda r: (r.app_name, r.app_version))

    for artifact_id, artifact in partial.artifacts.items():
        existing = canonical.artifacts.get(artifact_id)
        if existing is None:
            existing = ManifestArtifact(id=artifact.id, kind=artifact.kind)
            canonical.artifacts[artifact_id] = existing
        _merge_artifact(existing, artifact)

    if partial.ci is not None:
        canonical.ci = copy.deepcopy(partial.ci)

    for ours, theirs in (
        (canonical.systems, partial.systems),
        (canonical.assets, partial.assets),
        (canonical.linkage, partial.linkage),
    ):
        for key, value in theirs.items():
            if key not in ours:
                ours[key] = copy.deepcopy(value)
    return True


def load_and_merge_manifests(
    dist_dir: Path,
    canonical: DistManifest,
    *,
    tag: str,
    console: ConsoleProtocol,
) -> Result[int, ManifestError]:
    """Merge every partial manifest found in `dist_dir`; returns how many were used."""
    loaded = load_manifests(dist_dir)
    if isinstance(loaded, Err):
        return loaded

    merged = 0
    for path, partial in loaded.value:
        if merge_manifest(canonical, partial, tag=tag, console=console, source=path.name):
            merged += 1
    return Ok(merged)
