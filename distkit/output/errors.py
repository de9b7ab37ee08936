"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from distkit.core.config import ConfigError
from distkit.core.errors import ErrorCode
from distkit.core.workspace import WorkspaceError
from distkit.output.console import Style
from distkit.release.errors import (
    BinaryParseError,
    BuildCommandFailed,
    BuildError,
    BuildFailed,
    BuildToolMissing,
    BundleFailed,
    ContradictoryTagVersion,
    EnvError,
    EnvParseError,
    EnvQueryFailed,
    GraphError,
    LinkageCheckInvalidOS,
    LinkageCheckUnsupportedBinary,
    LinkageError,
    LinkageToolFailed,
    ManifestError,
    ManifestParseFailed,
    ManifestReadFailed,
    ManifestWriteFailed,
    MissingBinaries,
    NoTargets,
    NothingToRelease,
    NoVersion,
    PreciseImpossible,
    TagError,
    TooManyUnrelatedApps,
    UnsupportedCrossCompile,
)
from distkit.release.linkage import linkage_error_message

if TYPE_CHECKING:
    from distkit.output.console import ConsoleProtocol

__all__ = ["DistError", "error_exit_code", "print_error"]

DistError = (
    TagError | GraphError | BuildError | EnvError | LinkageError | ManifestError | ConfigError | WorkspaceError
)


def _print_missing(missing: tuple[tuple[str, str], ...], console: ConsoleProtocol) -> None:
    for package, binary in missing:
        console.print(f"  {package}: {binary}", Style.DIM)


def print_error(error: DistError, console: ConsoleProtocol) -> None:
    """Print any distkit error to the console."""
    match error:
        case NoVersion(tag=tag):
            console.error(f"couldn't parse a version from tag {tag!r}")
            console.print("hint: tags look like v1.0.0, app-v1.0.0 or app/1.0.0", Style.DIM)
        case ContradictoryTagVersion(
            tag=tag, package_name=name, package_version=pkg_version, tag_version=tag_version
        ):
            console.error(
                f"tag {tag!r} announces {name} {tag_version}, but the package's version is {pkg_version}"
            )
        case TooManyUnrelatedApps(help=help_text):
            console.error("there are too many unrelated apps in the workspace to announce together")
            console.print(help_text, Style.DIM)
        case NothingToRelease(reason=reason):
            console.error(f"nothing to release: {reason}")
        case NoTargets(app_name=app_name):
            console.error(f"{app_name} supports none of the requested targets")
        case UnsupportedCrossCompile(host=host, target=target):
            console.error(f"cross-compiling from {host} to {target} is not supported")
        case PreciseImpossible(packages=packages):
            console.error("precise-builds = false was set, but some packages have custom build features")
            console.print(
                f"these packages customise features, no-default-features or all-features: {', '.join(packages)}",
                Style.DIM,
            )
        case MissingBinaries(step=step, missing=missing):
            console.error(f"{step} didn't produce every expected binary:")
            _print_missing(missing, console)
        case BuildCommandFailed(step=step, returncode=rc):
            console.error(f"{step} failed (exit {rc})")
        case BuildToolMissing(tool=tool, reason=reason):
            console.error(f"{tool}: couldn't run ({reason})")
        case BundleFailed(artifact=artifact, reason=reason):
            console.error(f"couldn't package {artifact}: {reason}")
        case BuildFailed(failures=failures):
            console.error(f"{len(failures)} build step(s) failed")
            for failure in failures:
                print_error(failure, console)
        case EnvQueryFailed(reason=reason):
            console.error(f"Brewfile environment unavailable: {reason}")
        case EnvParseError(line=line):
            console.error(f"malformed environment line: {line!r}")
        case LinkageCheckInvalidOS() | LinkageCheckUnsupportedBinary() | BinaryParseError() | LinkageToolFailed():
            console.error(linkage_error_message(error))
        case ManifestReadFailed(path=path, reason=reason):
            console.error(f"couldn't read {path}: {reason}")
        case ManifestParseFailed(path=path, reason=reason):
            console.error(f"invalid manifest {path}: {reason}")
        case ManifestWriteFailed(path=path, reason=reason):
            console.error(f"couldn't write {path}: {reason}")
        case ConfigError(message=message):
            console.error(message)
        case WorkspaceError(message=message, searched_from=searched_from):
            console.error(message)
            if searched_from is not None:
                console.print(f"searched from: {searched_from}", Style.DIM)


def error_exit_code(error: DistError) -> int:
    """Get exit code for an error."""
    match error:
        case NoVersion() | ContradictoryTagVersion() | TooManyUnrelatedApps() | NothingToRelease() | NoTargets():
            return int(ErrorCode.USER_ERROR)
        case ConfigError() | WorkspaceError():
            return int(ErrorCode.USER_ERROR)
        case UnsupportedCrossCompile() | BuildToolMissing() | EnvQueryFailed() | EnvParseError():
            return int(ErrorCode.ENV_ERROR)
        case LinkageCheckInvalidOS() | LinkageToolFailed():
            return int(ErrorCode.ENV_ERROR)
        case LinkageCheckUnsupportedBinary() | BinaryParseError() | PreciseImpossible():
            return int(ErrorCode.USER_ERROR)
        case MissingBinaries() | BuildCommandFailed() | BuildFailed():
            return int(ErrorCode.BUILD_ERROR)
        case ManifestReadFailed() | ManifestParseFailed():
            return int(ErrorCode.MANIFEST_ERROR)
        case BundleFailed() | ManifestWriteFailed():
            return int(ErrorCode.IO_ERROR)
