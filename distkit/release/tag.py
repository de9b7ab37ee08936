"""Announcement tag resolution.

A tag such as `v1.2.0`, `releases/app-v1.2.0` or `app/1.2.0` decides which
packages a run releases. Leading path-like segments are ignored; a
package-scoped shape names exactly one package; a bare version selects
every package at that version.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from distkit.core.result import Err, Ok, Result

from .errors import (
    ContradictoryTagVersion,
    NothingToRelease,
    NoVersion,
    TagError,
    TooManyUnrelatedApps,
)
from .model import Package, PackageIdx
from .semver import SemVer, parse_version

__all__ = [
    "AllMatchingVersion",
    "AnnouncementTag",
    "ReleaseSelection",
    "SinglePackage",
    "infer_tag",
    "parse_tag",
]


@dataclass(frozen=True, slots=True)
class AllMatchingVersion:
    version: SemVer


@dataclass(frozen=True, slots=True)
class SinglePackage:
    idx: PackageIdx
    version: SemVer


type ReleaseSelection = AllMatchingVersion | SinglePackage


@dataclass(frozen=True, slots=True)
class AnnouncementTag:
    tag: str
    prerelease: bool
    selection: ReleaseSelection

    @property
    def version(self) -> SemVer:
        return self.selection.version


def _parse_bare(text: str) -> SemVer | None:
    return parse_version(text.removeprefix("v"))


def _split_package(packages: Sequence[Package], tag: str) -> tuple[PackageIdx | None, str]:
    """Find the package a tag names and the text left for the version.

    A package is only recognised at the start of a segment: either the
    segment right before the last `/` (`app/v1.0.0`) or the start of the
    last segment followed by `-` (`app-v1.0.0`). Longer package names are
    tried first so `foo-bar-v1.0.0` picks `foo-bar` over `foo`.
    """
    rest = tag
    if "/" in tag:
        prefix, rest = tag.rsplit("/", 1)
        segment = prefix.rsplit("/", 1)[-1]
        for i, package in enumerate(packages):
            if package.name == segment:
                return PackageIdx(i), rest

    by_length = sorted(range(len(packages)), key=lambda i: len(packages[i].name), reverse=True)
    for i in by_length:
        prefix = f"{packages[i].name}-"
        if rest.startswith(prefix) and _parse_bare(rest[len(prefix) :]) is not None:
            return PackageIdx(i), rest[len(prefix) :]
    return None, rest


def _strip_unknown_prefix(text: str) -> SemVer | None:
    """Version after the first `-` that leaves a parseable version."""
    pos = text.find("-")
    while pos != -1:
        version = _parse_bare(text[pos + 1 :])
        if version is not None:
            return version
        pos = text.find("-", pos + 1)
    return None


def parse_tag(packages: Sequence[Package], tag: str) -> Result[AnnouncementTag, TagError]:
    """Resolve a tag against the workspace packages."""
    pkg_idx, rest = _split_package(packages, tag)

    if pkg_idx is None:
        # Unknown `{pkg}-` prefixes are dropped and the rest read as a bare version.
        version = _parse_bare(rest) or _strip_unknown_prefix(rest)
        if version is None:
            return Err(NoVersion(tag=tag))
        return Ok(
            AnnouncementTag(
                tag=tag,
                prerelease=version.is_prerelease,
                selection=AllMatchingVersion(version),
            )
        )

    version = _parse_bare(rest)
    if version is None:
        return Err(NoVersion(tag=tag))
    package = packages[pkg_idx]
    if package.version is not None and package.version != version:
        return Err(
            ContradictoryTagVersion(
                tag=tag,
                package_name=package.name,
                package_version=str(package.version),
                tag_version=str(version),
            )
        )
    return Ok(
        AnnouncementTag(
            tag=tag,
            prerelease=version.is_prerelease,
            selection=SinglePackage(pkg_idx, version),
        )
    )


def _tag_help(packages: Sequence[Package], versions: dict[SemVer, list[PackageIdx]]) -> str:
    lines = [
        "Please either specify --tag, or give them all the same version",
        "",
        "Here are some options:",
        "",
    ]
    for version in sorted(versions):
        names = ", ".join(packages[i].name for i in versions[version])
        lines.append(f"--tag=v{version} will Announce: {names}")
    lines.append("")
    some_pkg = packages[versions[min(versions)][0]]
    lines.append(
        f"you can also request any single package with --tag={some_pkg.name}-v{some_pkg.version}"
    )
    return "\n".join(lines)


def infer_tag(packages: Sequence[Package]) -> Result[AnnouncementTag, TagError]:
    """Pick a tag when none was given.

    Only packages with binaries and a known version are candidates. They
    must all agree on one version.
    """
    versions: dict[SemVer, list[PackageIdx]] = {}
    for i, package in enumerate(packages):
        if not package.has_binaries or package.version is None:
            continue
        versions.setdefault(package.version, []).append(PackageIdx(i))

    if not versions:
        return Err(
            NothingToRelease(
                tag=None,
                reason="no package in the workspace has binaries and a version",
            )
        )
    if len(versions) > 1:
        return Err(TooManyUnrelatedApps(help=_tag_help(packages, versions)))

    (version,) = versions
    return Ok(
        AnnouncementTag(
            tag=f"v{version}",
            prerelease=version.is_prerelease,
            selection=AllMatchingVersion(version),
        )
    )
