"""Core types shared by every layer: results, exit codes, config, workspace."""

from .config import ConfigError, DistConfig, load_config
from .errors import ErrorCode
from .result import Err, Ok, Result, is_err, is_ok
from .workspace import Workspace, WorkspaceError, detect_workspace

__all__ = [
    # config
    "ConfigError",
    "DistConfig",
    "load_config",
    # errors
    "ErrorCode",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
    # workspace
    "Workspace",
    "WorkspaceError",
    "detect_workspace",
]
