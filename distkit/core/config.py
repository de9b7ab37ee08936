"""Typed configuration loading and access.

The `[dist]` table of `dist-workspace.toml` is parsed into frozen
dataclasses. Every key is optional; defaults match a single-platform,
checksummed release with no installers.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_bool, get_list, get_str, get_str_list, get_table

__all__ = [
    "ARCHIVE_FORMATS",
    "CHECKSUM_STYLES",
    "CONFIG_FILE_NAME",
    "INSTALLER_STYLES",
    "ArchiveFormat",
    "ChecksumStyle",
    "ConfigError",
    "DistConfig",
    "ExtraArtifactConfig",
    "InstallerStyle",
    "load_config",
    "parse_toml",
]

CONFIG_FILE_NAME = "dist-workspace.toml"

ChecksumStyle = Literal["sha256", "sha512", "false"]
ArchiveFormat = Literal[".zip", ".tar.gz", ".tar.xz"]
InstallerStyle = Literal["shell", "powershell", "msi", "homebrew", "npm"]

CHECKSUM_STYLES: tuple[ChecksumStyle, ...] = ("sha256", "sha512", "false")
ARCHIVE_FORMATS: tuple[ArchiveFormat, ...] = (".zip", ".tar.gz", ".tar.xz")
INSTALLER_STYLES: tuple[InstallerStyle, ...] = ("shell", "powershell", "msi", "homebrew", "npm")


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ExtraArtifactConfig:
    """Files produced by an arbitrary command, shipped as global artifacts."""

    artifacts: tuple[str, ...]
    build: tuple[str, ...]
    working_dir: Path


@dataclass(frozen=True, slots=True)
class DistConfig:
    targets: tuple[str, ...] = ()
    installers: tuple[InstallerStyle, ...] = ()
    checksum: ChecksumStyle = "sha256"
    # None: per-package builds only when some package customises its features.
    precise_builds: bool | None = None
    msvc_crt_static: bool = True
    source_tarball: bool = True
    install_updater: bool = False
    windows_archive: ArchiveFormat = ".zip"
    unix_archive: ArchiveFormat = ".tar.xz"
    dist_dir: str = "target/distrib"
    hosting: tuple[str, ...] = ()
    github_repo: str | None = None
    extra_artifacts: tuple[ExtraArtifactConfig, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, root: Path) -> DistConfig:
        """Build a config from the parsed TOML root table.

        Raises ValueError on values of the wrong type or outside the
        supported set; `load_config` turns that into a ConfigError.
        """
        dist = get_table(data, "dist") or {}

        checksum = _choice(dist, "checksum", CHECKSUM_STYLES, "sha256")
        windows_archive = _choice(dist, "windows-archive", ARCHIVE_FORMATS, ".zip")
        unix_archive = _choice(dist, "unix-archive", ARCHIVE_FORMATS, ".tar.xz")

        installers: list[InstallerStyle] = []
        for name in _str_list(dist, "installers"):
            if name not in INSTALLER_STYLES:
                raise ValueError(f"unknown installer: {name!r}")
            installers.append(name)

        extras: list[ExtraArtifactConfig] = []
        for item in get_list(dist, "extra-artifacts") or []:
            table = as_str_dict(item)
            if table is None:
                raise ValueError("extra-artifacts entries must be tables")
            artifacts = _str_list(table, "artifacts")
            build = _str_list(table, "build")
            if not artifacts or not build:
                raise ValueError("extra-artifacts entries need both 'artifacts' and 'build'")
            working_dir = root / (get_str(table, "working-dir") or ".")
            extras.append(
                ExtraArtifactConfig(
                    artifacts=tuple(artifacts),
                    build=tuple(build),
                    working_dir=working_dir,
                )
            )

        return cls(
            targets=tuple(_str_list(dist, "targets")),
            installers=tuple(installers),
            checksum=checksum,
            precise_builds=_optional_bool(dist, "precise-builds"),
            msvc_crt_static=_bool(dist, "msvc-crt-static", True),
            source_tarball=_bool(dist, "source-tarball", True),
            install_updater=_bool(dist, "install-updater", False),
            windows_archive=windows_archive,
            unix_archive=unix_archive,
            dist_dir=get_str(dist, "dist-dir") or "target/distrib",
            hosting=tuple(_str_list(dist, "hosting")),
            github_repo=get_str(dist, "github-repo"),
            extra_artifacts=tuple(extras),
        )


def _str_list(table: Mapping[str, object], key: str) -> list[str]:
    if key not in table:
        return []
    # A single string is accepted as a one-element list (`hosting = "github"`).
    single = table.get(key)
    if isinstance(single, str):
        return [single]
    values = get_str_list(table, key)
    if values is None:
        raise ValueError(f"'{key}' must be a list of strings")
    return values


def _bool(table: Mapping[str, object], key: str, default: bool) -> bool:
    if key not in table:
        return default
    value = get_bool(table, key)
    if value is None:
        raise ValueError(f"'{key}' must be a boolean")
    return value


def _optional_bool(table: Mapping[str, object], key: str) -> bool | None:
    if key not in table:
        return None
    return _bool(table, key, False)


def _choice[C: str](table: Mapping[str, object], key: str, choices: tuple[C, ...], default: C) -> C:
    raw = table.get(key)
    if raw is None:
        return default
    # `checksum = false` is the natural way to disable checksums in TOML.
    if raw is False:
        raw = "false"
    for choice in choices:
        if raw == choice:
            return choice
    raise ValueError(f"'{key}' must be one of {', '.join(choices)} (got {raw!r})")


def parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[DistConfig, ConfigError]:
    """Load the `[dist]` table of a workspace config file."""
    result = parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(DistConfig.from_dict(result.value, root=path.parent))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))
