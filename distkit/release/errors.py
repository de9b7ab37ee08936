"""Error payloads for the release planner.

One frozen dataclass per failure kind, grouped into a union per component.
`distkit.output.errors` renders them and maps them to exit codes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


# Tag resolution


@dataclass(frozen=True, slots=True)
class NoVersion:
    tag: str


@dataclass(frozen=True, slots=True)
class ContradictoryTagVersion:
    tag: str
    package_name: str
    package_version: str
    tag_version: str


@dataclass(frozen=True, slots=True)
class TooManyUnrelatedApps:
    """No tag was given and the releasable packages disagree on a version."""

    help: str


@dataclass(frozen=True, slots=True)
class NothingToRelease:
    tag: str | None
    reason: str


TagError = NoVersion | ContradictoryTagVersion | TooManyUnrelatedApps | NothingToRelease


# Graph building


@dataclass(frozen=True, slots=True)
class NoTargets:
    app_name: str


GraphError = NothingToRelease | NoTargets


# Building


@dataclass(frozen=True, slots=True)
class UnsupportedCrossCompile:
    host: str
    target: str


@dataclass(frozen=True, slots=True)
class PreciseImpossible:
    """Per-package builds are off, yet some packages customise their features."""

    packages: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class MissingBinaries:
    """A build step finished without producing every promised binary."""

    step: str
    missing: tuple[tuple[str, str], ...]


@dataclass(frozen=True, slots=True)
class BuildCommandFailed:
    step: str
    command: tuple[str, ...]
    returncode: int


@dataclass(frozen=True, slots=True)
class BuildToolMissing:
    tool: str
    reason: str


@dataclass(frozen=True, slots=True)
class BundleFailed:
    artifact: str
    reason: str


StepFailure = MissingBinaries | BuildCommandFailed | BuildToolMissing | BundleFailed


@dataclass(frozen=True, slots=True)
class BuildFailed:
    """Every failing step of a build run, reported together."""

    failures: tuple[StepFailure, ...]


BuildError = (
    UnsupportedCrossCompile
    | PreciseImpossible
    | MissingBinaries
    | BuildCommandFailed
    | BuildToolMissing
    | BuildFailed
    | BundleFailed
)


# Package-manager environment query


@dataclass(frozen=True, slots=True)
class EnvQueryFailed:
    reason: str


@dataclass(frozen=True, slots=True)
class EnvParseError:
    line: str


EnvError = EnvQueryFailed | EnvParseError


# Linkage


@dataclass(frozen=True, slots=True)
class LinkageCheckInvalidOS:
    host: str
    target: str


@dataclass(frozen=True, slots=True)
class LinkageCheckUnsupportedBinary:
    path: Path
    target: str


@dataclass(frozen=True, slots=True)
class BinaryParseError:
    path: Path
    reason: str


@dataclass(frozen=True, slots=True)
class LinkageToolFailed:
    tool: str
    reason: str


LinkageError = (
    LinkageCheckInvalidOS | LinkageCheckUnsupportedBinary | BinaryParseError | LinkageToolFailed
)


# Manifests


@dataclass(frozen=True, slots=True)
class ManifestReadFailed:
    path: Path
    reason: str


@dataclass(frozen=True, slots=True)
class ManifestParseFailed:
    path: Path
    reason: str


@dataclass(frozen=True, slots=True)
class ManifestWriteFailed:
    path: Path
    reason: str


ManifestError = ManifestReadFailed | ManifestParseFailed | ManifestWriteFailed
