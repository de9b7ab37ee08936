"""Release manifest model and JSON wire format.

A manifest describes releases, their artifacts, the machines that built
them and per-binary asset and linkage information. Each build machine
writes a partial manifest; `distkit.release.merge` folds them into the
canonical one.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from distkit import __version__
from distkit.core.result import Err, Ok, Result
from distkit.core.structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_bool,
    get_str,
    get_str_dict,
    get_str_list,
    get_table,
)
from distkit.platform.files import atomic_write_text

from .errors import ManifestError, ManifestParseFailed, ManifestReadFailed, ManifestWriteFailed
from .linkage import Linkage
from .model import (
    ArtifactIdx,
    Binary,
    BinaryKind,
    DistGraph,
    ExecutableZip,
    Installer,
    ReleaseIdx,
)

__all__ = [
    "MANIFEST_SUFFIX",
    "Asset",
    "AssetInfo",
    "DistManifest",
    "ManifestArtifact",
    "ManifestRelease",
    "add_releases_to_manifest",
    "build_manifest",
    "load_manifest",
    "load_manifests",
    "manifest_artifact",
    "partial_manifest_name",
    "save_manifest",
]

MANIFEST_SUFFIX = "dist-manifest.json"

_STATIC_ASSET_KINDS = (
    ("README", "readme"),
    ("LICENSE", "license"),
    ("LICENCE", "license"),
    ("UNLICENSE", "license"),
    ("COPYING", "license"),
    ("CHANGELOG", "changelog"),
    ("RELEASES", "changelog"),
)


@dataclass(slots=True)
class Asset:
    """One file inside an artifact, keyed by its in-archive path."""

    path: str
    name: str | None = None
    kind: str = "unknown"
    id: str | None = None

    def to_dict(self) -> StrDict:
        out: StrDict = {"path": self.path, "kind": self.kind}
        if self.name is not None:
            out["name"] = self.name
        if self.id is not None:
            out["id"] = self.id
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Asset:
        path = get_str(data, "path")
        if path is None:
            raise ValueError("asset without a path")
        return cls(
            path=path,
            name=get_str(data, "name"),
            kind=get_str(data, "kind") or "unknown",
            id=get_str(data, "id"),
        )


def _assets() -> list[Asset]:
    return []


@dataclass(slots=True)
class ManifestArtifact:
    id: str
    kind: str
    target_triples: list[str] = field(default_factory=list)
    path: str | None = None
    assets: list[Asset] = field(default_factory=_assets)
    install_hint: str | None = None
    description: str | None = None
    checksum: str | None = None
    checksums: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> StrDict:
        out: StrDict = {
            "name": self.id,
            "kind": self.kind,
            "target_triples": list(self.target_triples),
            "assets": [a.to_dict() for a in self.assets],
            "checksums": dict(sorted(self.checksums.items())),
        }
        for key, value in (
            ("path", self.path),
            ("install_hint", self.install_hint),
            ("description", self.description),
            ("checksum", self.checksum),
        ):
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, artifact_id: str, data: Mapping[str, object]) -> ManifestArtifact:
        assets: list[Asset] = []
        for item in as_obj_list(data.get("assets")) or []:
            table = as_str_dict(item)
            if table is None:
                raise ValueError(f"artifact {artifact_id}: assets must be objects")
            assets.append(Asset.from_dict(table))
        return cls(
            id=artifact_id,
            kind=get_str(data, "kind") or "unknown",
            target_triples=get_str_list(data, "target_triples") or [],
            path=get_str(data, "path"),
            assets=assets,
            install_hint=get_str(data, "install_hint"),
            description=get_str(data, "description"),
            checksum=get_str(data, "checksum"),
            checksums=get_str_dict(data, "checksums"),
        )


@dataclass(slots=True)
class ManifestRelease:
    app_name: str
    app_version: str
    artifacts: list[str] = field(default_factory=list)
    hosting: dict[str, dict[str, str]] = field(default_factory=dict)
    display: bool = True
    display_name: str | None = None

    def to_dict(self) -> StrDict:
        out: StrDict = {
            "app_name": self.app_name,
            "app_version": self.app_version,
            "artifacts": list(self.artifacts),
            "hosting": {k: dict(sorted(v.items())) for k, v in sorted(self.hosting.items())},
            "display": self.display,
        }
        if self.display_name is not None:
            out["display_name"] = self.display_name
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ManifestRelease:
        app_name = get_str(data, "app_name")
        app_version = get_str(data, "app_version")
        if app_name is None or app_version is None:
            raise ValueError("release without app_name/app_version")
        hosting: dict[str, dict[str, str]] = {}
        for provider, value in (get_table(data, "hosting") or {}).items():
            table = as_str_dict(value)
            if table is not None:
                hosting[provider] = {k: v for k, v in table.items() if isinstance(v, str)}
        display = get_bool(data, "display")
        return cls(
            app_name=app_name,
            app_version=app_version,
            artifacts=get_str_list(data, "artifacts") or [],
            hosting=hosting,
            display=True if display is None else display,
            display_name=get_str(data, "display_name"),
        )


@dataclass(frozen=True, slots=True)
class AssetInfo:
    """What one machine learned about one built binary."""

    id: str
    name: str
    system: str
    linkage: Linkage
    target_triples: tuple[str, ...]

    def to_dict(self) -> StrDict:
        return {
            "id": self.id,
            "name": self.name,
            "system": self.system,
            "linkage": self.linkage.to_dict(),
            "target_triples": list(self.target_triples),
        }


def _tables() -> dict[str, StrDict]:
    return {}


@dataclass(slots=True)
class DistManifest:
    dist_version: str | None = None
    announcement_tag: str | None = None
    announcement_is_prerelease: bool = False
    releases: list[ManifestRelease] = field(default_factory=list)
    artifacts: dict[str, ManifestArtifact] = field(default_factory=dict)
    systems: dict[str, StrDict] = field(default_factory=_tables)
    assets: dict[str, StrDict] = field(default_factory=_tables)
    linkage: dict[str, StrDict] = field(default_factory=_tables)
    ci: StrDict | None = None

    def ensure_release(self, app_name: str, app_version: str) -> ManifestRelease:
        for release in self.releases:
            if release.app_name == app_name and release.app_version == app_version:
                return release
        release = ManifestRelease(app_name=app_name, app_version=app_version)
        self.releases.append(release)
        return release

    def to_dict(self) -> StrDict:
        out: StrDict = {
            "dist_version": self.dist_version,
            "announcement_tag": self.announcement_tag,
            "announcement_is_prerelease": self.announcement_is_prerelease,
            "releases": [r.to_dict() for r in self.releases],
            "artifacts": {k: v.to_dict() for k, v in sorted(self.artifacts.items())},
            "systems": dict(sorted(self.systems.items())),
            "assets": dict(sorted(self.assets.items())),
            "linkage": dict(sorted(self.linkage.items())),
        }
        if self.ci is not None:
            out["ci"] = self.ci
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> DistManifest:
        """Parse a manifest; unknown fields are ignored.

        Raises ValueError on structurally invalid input.
        """
        releases: list[ManifestRelease] = []
        for item in as_obj_list(data.get("releases")) or []:
            table = as_str_dict(item)
            if table is None:
                raise ValueError("releases must be objects")
            releases.append(ManifestRelease.from_dict(table))

        artifacts: dict[str, ManifestArtifact] = {}
        for artifact_id, value in (get_table(data, "artifacts") or {}).items():
            table = as_str_dict(value)
            if table is None:
                raise ValueError(f"artifact {artifact_id} must be an object")
            artifacts[artifact_id] = ManifestArtifact.from_dict(artifact_id, table)

        def tables(key: str) -> dict[str, StrDict]:
            out: dict[str, StrDict] = {}
            for k, v in (get_table(data, key) or {}).items():
                table = as_str_dict(v)
                if table is None:
                    raise ValueError(f"{key}.{k} must be an object")
                out[k] = table
            return out

        return cls(
            dist_version=get_str(data, "dist_version"),
            announcement_tag=get_str(data, "announcement_tag"),
            announcement_is_prerelease=bool(get_bool(data, "announcement_is_prerelease")),
            releases=releases,
            artifacts=artifacts,
            systems=tables("systems"),
            assets=tables("assets"),
            linkage=tables("linkage"),
            ci=get_table(data, "ci"),
        )


def _asset_kind(binary: Binary) -> str:
    match binary.kind:
        case BinaryKind.EXECUTABLE:
            return "executable"
        case BinaryKind.DYNAMIC_LIBRARY:
            return "c_dynamic_library"
        case BinaryKind.STATIC_LIBRARY:
            return "c_static_library"


def _static_asset_kind(name: str) -> str:
    upper = name.upper()
    for prefix, kind in _STATIC_ASSET_KINDS:
        if upper.startswith(prefix):
            return kind
    return "unknown"


def _relative(graph: DistGraph, path: Path) -> str:
    if path.is_relative_to(graph.workspace_root):
        return path.relative_to(graph.workspace_root).as_posix()
    return path.as_posix()


def manifest_artifact(graph: DistGraph, idx: ArtifactIdx) -> ManifestArtifact:
    """Describe a graph artifact; assets are sorted by path."""
    artifact = graph.artifact(idx)
    assets: list[Asset] = []
    for bin_idx, relpath in artifact.required_binaries.items():
        binary = graph.binary(bin_idx)
        assets.append(Asset(path=relpath, name=binary.name, kind=_asset_kind(binary), id=binary.id))

    install_hint: str | None = None
    description: str | None = None
    match artifact.kind:
        case ExecutableZip(static_assets=static_assets):
            for static in static_assets:
                assets.append(Asset(path=static.name, name=static.name, kind=_static_asset_kind(static.name)))
        case Installer(hint=hint, description=desc):
            install_hint = hint
            description = desc
        case _:
            pass

    checksum = graph.artifact(artifact.checksum).id if artifact.checksum is not None else None
    return ManifestArtifact(
        id=artifact.id,
        kind=artifact.kind_name,
        target_triples=sorted(artifact.target_triples),
        path=_relative(graph, artifact.file_path),
        assets=sorted(assets, key=lambda a: a.path),
        install_hint=install_hint,
        description=description,
        checksum=checksum,
    )


def add_releases_to_manifest(graph: DistGraph, manifest: DistManifest) -> None:
    """Record every release of the graph and its artifacts in the manifest."""
    for release_idx, release in enumerate(graph.releases):
        entry = manifest.ensure_release(release.app_name, str(release.version))
        entry.display = release.display
        if release.display_name is not None:
            entry.display_name = release.display_name
        for provider, fields in release.hosting.items():
            existing = entry.hosting.setdefault(provider, {})
            for key, value in fields.items():
                existing.setdefault(key, value)

        for artifact_idx in graph.release_artifacts(ReleaseIdx(release_idx)):
            artifact_id = graph.artifact(artifact_idx).id
            if artifact_id not in entry.artifacts:
                entry.artifacts.append(artifact_id)
            if artifact_id not in manifest.artifacts:
                manifest.artifacts[artifact_id] = manifest_artifact(graph, artifact_idx)
        entry.artifacts.sort()


def build_manifest(graph: DistGraph) -> DistManifest:
    """Seed a manifest for this run from the graph."""
    manifest = DistManifest(
        dist_version=__version__,
        announcement_tag=graph.announcement_tag,
        announcement_is_prerelease=graph.announcement_is_prerelease,
    )
    add_releases_to_manifest(graph, manifest)
    manifest.systems[graph.system_id] = {
        "id": graph.system_id,
        "host": graph.host,
        "mode": str(graph.mode),
        "targets": list(graph.targets),
    }
    return manifest


def partial_manifest_name(system_id: str) -> str:
    """File name for one machine's manifest; distinct per system id."""
    safe = re.sub(r"[^A-Za-z0-9._-]+", "-", system_id).strip("-")
    return f"{safe}-{MANIFEST_SUFFIX}"


def load_manifest(path: Path) -> Result[DistManifest, ManifestError]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(ManifestReadFailed(path=path, reason=str(e)))
    try:
        data = as_str_dict(json.loads(text))
        if data is None:
            raise ValueError("manifest root must be an object")
        return Ok(DistManifest.from_dict(data))
    except ValueError as e:
        return Err(ManifestParseFailed(path=path, reason=str(e)))


def load_manifests(dist_dir: Path) -> Result[list[tuple[Path, DistManifest]], ManifestError]:
    """Every `*dist-manifest.json` in a directory, in file-name order.

    A missing directory holds no manifests.
    """
    if not dist_dir.is_dir():
        return Ok([])
    out: list[tuple[Path, DistManifest]] = []
    for path in sorted(dist_dir.iterdir()):
        if not path.is_file() or not path.name.endswith(MANIFEST_SUFFIX):
            continue
        loaded = load_manifest(path)
        if isinstance(loaded, Err):
            return loaded
        out.append((path, loaded.value))
    return Ok(out)


def save_manifest(path: Path, manifest: DistManifest) -> Result[None, ManifestError]:
    try:
        atomic_write_text(path, manifest.to_json())
    except OSError as e:
        return Err(ManifestWriteFailed(path=path, reason=str(e)))
    return Ok(None)
