"""Release graph data model.

`DistGraph` owns every entity in flat arenas; entities point at each other
through the integer index types below, never through direct references.
The graph is built once per run and handed explicitly to each stage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal, NewType

from distkit.core.config import ArchiveFormat, ChecksumStyle, InstallerStyle
from distkit.platform.triple import SymbolKind

from .semver import SemVer

__all__ = [
    "ArtifactIdx",
    "BinaryIdx",
    "PackageIdx",
    "ReleaseIdx",
    "VariantIdx",
    "ArtifactMode",
    "BinaryKind",
    "BuildBackend",
    "CargoFeatures",
    "Package",
    "ExecutableZip",
    "Symbols",
    "Installer",
    "Checksum",
    "UnifiedChecksum",
    "SourceTarball",
    "ExtraArtifact",
    "Updater",
    "ArtifactKind",
    "Artifact",
    "Binary",
    "Variant",
    "Release",
    "CargoWrapper",
    "ToolchainSetupStep",
    "CargoBuildStep",
    "GenericBuildStep",
    "ExtraBuildStep",
    "BuildStep",
    "DistGraph",
]

PackageIdx = NewType("PackageIdx", int)
ReleaseIdx = NewType("ReleaseIdx", int)
VariantIdx = NewType("VariantIdx", int)
BinaryIdx = NewType("BinaryIdx", int)
ArtifactIdx = NewType("ArtifactIdx", int)

BuildBackend = Literal["cargo", "generic"]


class ArtifactMode(Enum):
    """Which artifacts a run is responsible for."""

    LOCAL = "local"
    GLOBAL = "global"
    HOST = "host"
    ALL = "all"

    def __str__(self) -> str:
        return self.value

    @property
    def includes_global(self) -> bool:
        return self is not ArtifactMode.LOCAL


class BinaryKind(Enum):
    EXECUTABLE = "executable"
    DYNAMIC_LIBRARY = "c-dynamic-library"
    STATIC_LIBRARY = "c-static-library"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True, order=True)
class CargoFeatures:
    """Feature selection passed to an ecosystem build."""

    default_features: bool = True
    all_features: bool = False
    features: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Package:
    """A buildable unit supplied by the workspace model."""

    name: str
    version: SemVer | None = None
    binaries: tuple[str, ...] = ()
    cdylibs: tuple[str, ...] = ()
    cstaticlibs: tuple[str, ...] = ()
    id: str | None = None
    backend: BuildBackend = "cargo"
    build_command: tuple[str, ...] = ()
    root: Path = Path(".")
    features: CargoFeatures = CargoFeatures()
    targets: tuple[str, ...] = ()
    static_assets: tuple[Path, ...] = ()

    @property
    def pkg_id(self) -> str:
        """Identifier build backends use to attribute output to this package."""
        if self.id:
            return self.id
        if self.version is not None:
            return f"{self.name} {self.version}"
        return self.name

    @property
    def has_binaries(self) -> bool:
        return bool(self.binaries or self.cdylibs or self.cstaticlibs)

    def supports_target(self, target: str) -> bool:
        return not self.targets or target in self.targets


# Artifact kinds. Each carries only its own payload.


@dataclass(slots=True)
class ExecutableZip:
    archive_dir: Path
    format: ArchiveFormat
    required_binaries: dict[BinaryIdx, str] = field(default_factory=dict)
    static_assets: list[Path] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Symbols:
    symbol_kind: SymbolKind


@dataclass(slots=True)
class Installer:
    style: InstallerStyle
    hint: str
    description: str
    required_binaries: dict[BinaryIdx, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Checksum:
    style: ChecksumStyle
    of: ArtifactIdx


@dataclass(frozen=True, slots=True)
class UnifiedChecksum:
    style: ChecksumStyle


@dataclass(frozen=True, slots=True)
class SourceTarball:
    working_dir: Path


@dataclass(frozen=True, slots=True)
class ExtraArtifact:
    working_dir: Path
    command: tuple[str, ...]
    relpath: str


@dataclass(frozen=True, slots=True)
class Updater:
    app_name: str


type ArtifactKind = (
    ExecutableZip
    | Symbols
    | Installer
    | Checksum
    | UnifiedChecksum
    | SourceTarball
    | ExtraArtifact
    | Updater
)


@dataclass(slots=True)
class Artifact:
    id: str
    kind: ArtifactKind
    target_triples: tuple[str, ...]
    file_path: Path
    is_global: bool
    checksum: ArtifactIdx | None = None

    @property
    def required_binaries(self) -> dict[BinaryIdx, str]:
        """Binaries this artifact bundles, mapped to their in-archive path."""
        match self.kind:
            case ExecutableZip(required_binaries=bins) | Installer(required_binaries=bins):
                return bins
            case _:
                return {}

    @property
    def kind_name(self) -> str:
        match self.kind:
            case ExecutableZip():
                return "executable-zip"
            case Symbols():
                return "symbols"
            case Installer():
                return "installer"
            case Checksum():
                return "checksum"
            case UnifiedChecksum():
                return "unified-checksum"
            case SourceTarball():
                return "source-tarball"
            case ExtraArtifact():
                return "extra-artifact"
            case Updater():
                return "updater"


@dataclass(slots=True)
class Binary:
    id: str
    name: str
    kind: BinaryKind
    pkg_idx: PackageIdx
    pkg_id: str
    target: str
    file_name: str
    features: CargoFeatures
    copy_exe_to: list[Path] = field(default_factory=list)
    copy_symbols_to: list[Path] = field(default_factory=list)
    symbols_artifact: ArtifactIdx | None = None

    @property
    def needs_build(self) -> bool:
        return bool(self.copy_exe_to or self.copy_symbols_to)


@dataclass(slots=True)
class Variant:
    id: str
    target: str
    release: ReleaseIdx
    local_artifacts: list[ArtifactIdx] = field(default_factory=list)
    binaries: list[BinaryIdx] = field(default_factory=list)


@dataclass(slots=True)
class Release:
    app_name: str
    version: SemVer
    package_idx: PackageIdx
    variants: list[VariantIdx] = field(default_factory=list)
    global_artifacts: list[ArtifactIdx] = field(default_factory=list)
    hosting: dict[str, dict[str, str]] = field(default_factory=dict)
    display: bool = True
    display_name: str | None = None


# Build steps


class CargoWrapper(Enum):
    """Cross-compilation helper wrapped around `cargo build`."""

    ZIGBUILD = "zigbuild"
    XWIN = "xwin"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ToolchainSetupStep:
    target: str

    def describe(self) -> str:
        return f"rustup target add {self.target}"


@dataclass(frozen=True, slots=True)
class CargoBuildStep:
    target: str
    package: str | None
    features: CargoFeatures
    rustflags: str
    profile: str
    wrapper: CargoWrapper | None
    working_dir: Path
    expected_binaries: tuple[BinaryIdx, ...]

    def describe(self) -> str:
        scope = f"package {self.package}" if self.package else "workspace"
        return f"cargo build ({scope}) for {self.target}"


@dataclass(frozen=True, slots=True)
class GenericBuildStep:
    target: str
    package_idx: PackageIdx
    command: tuple[str, ...]
    working_dir: Path
    out_dir: Path
    expected_binaries: tuple[BinaryIdx, ...]

    def describe(self) -> str:
        return f"{' '.join(self.command)} for {self.target}"


@dataclass(frozen=True, slots=True)
class ExtraBuildStep:
    working_dir: Path
    command: tuple[str, ...]
    artifact_relpaths: tuple[str, ...]
    dest_dir: Path

    def describe(self) -> str:
        return f"extra build: {' '.join(self.command)}"


type BuildStep = ToolchainSetupStep | CargoBuildStep | GenericBuildStep | ExtraBuildStep


@dataclass(slots=True)
class DistGraph:
    """Everything a run knows about what it is releasing."""

    packages: list[Package]
    announcement_tag: str
    announcement_is_prerelease: bool
    workspace_root: Path
    dist_dir: Path
    host: str
    mode: ArtifactMode
    targets: tuple[str, ...]
    releases: list[Release] = field(default_factory=list)
    variants: list[Variant] = field(default_factory=list)
    binaries: list[Binary] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    _binary_ids: dict[str, BinaryIdx] = field(default_factory=dict, init=False, repr=False)
    _artifact_ids: dict[str, ArtifactIdx] = field(default_factory=dict, init=False, repr=False)

    @property
    def system_id(self) -> str:
        """Identifies the machine and slice of work that produced a manifest."""
        return f"{self.mode}:{','.join(self.targets)}:{self.host}"

    def package(self, idx: PackageIdx) -> Package:
        return self.packages[idx]

    def release(self, idx: ReleaseIdx) -> Release:
        return self.releases[idx]

    def variant(self, idx: VariantIdx) -> Variant:
        return self.variants[idx]

    def binary(self, idx: BinaryIdx) -> Binary:
        return self.binaries[idx]

    def artifact(self, idx: ArtifactIdx) -> Artifact:
        return self.artifacts[idx]

    def add_release(self, release: Release) -> ReleaseIdx:
        self.releases.append(release)
        return ReleaseIdx(len(self.releases) - 1)

    def add_variant(self, variant: Variant) -> VariantIdx:
        idx = VariantIdx(len(self.variants))
        self.variants.append(variant)
        self.releases[variant.release].variants.append(idx)
        return idx

    def add_binary(self, binary: Binary) -> BinaryIdx:
        """Add a binary, or return the existing one with the same id."""
        existing = self._binary_ids.get(binary.id)
        if existing is not None:
            return existing
        idx = BinaryIdx(len(self.binaries))
        self.binaries.append(binary)
        self._binary_ids[binary.id] = idx
        return idx

    def add_artifact(self, artifact: Artifact) -> ArtifactIdx:
        if artifact.id in self._artifact_ids:
            raise ValueError(f"duplicate artifact id: {artifact.id}")
        idx = ArtifactIdx(len(self.artifacts))
        self.artifacts.append(artifact)
        self._artifact_ids[artifact.id] = idx
        return idx

    def find_artifact(self, artifact_id: str) -> ArtifactIdx | None:
        return self._artifact_ids.get(artifact_id)

    def release_artifacts(self, idx: ReleaseIdx) -> list[ArtifactIdx]:
        """Local artifacts of every variant, then the release's global ones."""
        release = self.releases[idx]
        out: list[ArtifactIdx] = []
        for variant_idx in release.variants:
            out.extend(self.variants[variant_idx].local_artifacts)
        out.extend(release.global_artifacts)
        return out
