"""Workspace model: the `[[package]]` entries of `dist-workspace.toml`."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from distkit.core.config import ConfigError, parse_toml
from distkit.core.result import Err, Ok, Result
from distkit.core.structured import as_str_dict, get_bool, get_list, get_str, get_str_list

from .model import CargoFeatures, Package
from .semver import parse_version

__all__ = ["load_packages", "package_from_dict"]

_STATIC_ASSET_PREFIXES = ("README", "LICENSE", "LICENCE", "UNLICENSE", "COPYING", "CHANGELOG", "RELEASES")


def _strs(table: Mapping[str, object], key: str) -> tuple[str, ...]:
    if key not in table:
        return ()
    values = get_str_list(table, key)
    if values is None:
        raise ValueError(f"'{key}' must be a list of strings")
    return tuple(values)


def _flag(table: Mapping[str, object], key: str, default: bool) -> bool:
    if key not in table:
        return default
    value = get_bool(table, key)
    if value is None:
        raise ValueError(f"'{key}' must be a boolean")
    return value


def _static_assets(root: Path) -> tuple[Path, ...]:
    """README/LICENSE/CHANGELOG style files shipped inside archives."""
    if not root.is_dir():
        return ()
    found = [
        p
        for p in root.iterdir()
        if p.is_file() and p.name.upper().startswith(_STATIC_ASSET_PREFIXES)
    ]
    return tuple(sorted(found))


def package_from_dict(data: Mapping[str, object], *, workspace_root: Path) -> Package:
    """Build a Package from one `[[package]]` table.

    Raises ValueError on invalid entries.
    """
    name = get_str(data, "name")
    if name is None:
        raise ValueError("package entry is missing 'name'")

    version = None
    raw_version = get_str(data, "version")
    if raw_version is not None:
        version = parse_version(raw_version)
        if version is None:
            raise ValueError(f"package {name!r} has an invalid version: {raw_version!r}")

    backend = get_str(data, "backend") or "cargo"
    if backend not in ("cargo", "generic"):
        raise ValueError(f"package {name!r} has an unknown backend: {backend!r}")
    build_command = _strs(data, "build-command")
    if backend == "generic" and not build_command:
        raise ValueError(f"package {name!r} uses the generic backend but has no 'build-command'")

    root = workspace_root / (get_str(data, "root") or ".")
    features = CargoFeatures(
        default_features=_flag(data, "default-features", True),
        all_features=_flag(data, "all-features", False),
        features=tuple(sorted(_strs(data, "features"))),
    )

    return Package(
        name=name,
        version=version,
        binaries=_strs(data, "binaries"),
        cdylibs=_strs(data, "cdylibs"),
        cstaticlibs=_strs(data, "cstaticlibs"),
        id=get_str(data, "id"),
        backend="generic" if backend == "generic" else "cargo",
        build_command=build_command,
        root=root,
        features=features,
        targets=_strs(data, "targets"),
        static_assets=_static_assets(root),
    )


def load_packages(path: Path) -> Result[list[Package], ConfigError]:
    """Load every `[[package]]` entry of a workspace config file."""
    result = parse_toml(path)
    if isinstance(result, Err):
        return result

    packages: list[Package] = []
    try:
        for item in get_list(result.value, "package") or []:
            table = as_str_dict(item)
            if table is None:
                raise ValueError("[[package]] entries must be tables")
            packages.append(package_from_dict(table, workspace_root=path.parent))
    except ValueError as e:
        return Err(ConfigError(f"Invalid package entry: {e}", path=path))

    names = [p.name for p in packages]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        return Err(ConfigError(f"Duplicate package names: {', '.join(duplicates)}", path=path))
    return Ok(packages)
