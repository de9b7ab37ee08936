"""Workspace detection and paths.

The workspace is the directory holding `dist-workspace.toml`. Detection
order: the `DISTKIT_WORKSPACE` environment variable, then an upward search
from the current directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .config import CONFIG_FILE_NAME
from .result import Err, Ok, Result

__all__ = [
    "Workspace",
    "WorkspaceError",
    "detect_workspace",
    "find_workspace_upward",
    "is_workspace_root",
]


@dataclass(frozen=True, slots=True)
class WorkspaceError:
    """Error when workspace cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Workspace:
    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE_NAME

    def dist_dir(self, relative: str) -> Path:
        """Resolve the configured dist directory against the workspace root."""
        return self.root / relative

    def __str__(self) -> str:
        return str(self.root)


def is_workspace_root(path: Path) -> bool:
    return (path / CONFIG_FILE_NAME).is_file()


def find_workspace_upward(start: Path) -> Path | None:
    """Search upward from start directory for a workspace root."""
    for parent in (start, *start.parents):
        if is_workspace_root(parent):
            return parent
    return None


def detect_workspace(
    *,
    start_dir: Path | None = None,
    env_var: str = "DISTKIT_WORKSPACE",
) -> Result[Workspace, WorkspaceError]:
    env_value = os.environ.get(env_var)
    if env_value:
        env_path = Path(env_value).expanduser().resolve()
        if env_path.is_dir() and is_workspace_root(env_path):
            return Ok(Workspace(root=env_path))
        return Err(
            WorkspaceError(
                message=f"${env_var} is set to '{env_value}' but it has no {CONFIG_FILE_NAME}",
                searched_from=env_path if env_path.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_workspace_upward(search_start)
    if found is None:
        return Err(
            WorkspaceError(
                message=f"Could not find workspace ({CONFIG_FILE_NAME} not found)",
                searched_from=search_start,
            )
        )
    return Ok(Workspace(root=found))
