"""Platform abstraction layer."""

from .detection import (
    detect_arch,
    host_triple,
    is_linux,
    is_macos,
    is_windows,
)
from .files import atomic_write_text, copy_file, sha_file
from .process import (
    ProcessError,
    run,
    run_streaming,
)
from .triple import Family, SymbolKind, TargetTriple

__all__ = [
    # detection
    "detect_arch",
    "host_triple",
    "is_linux",
    "is_macos",
    "is_windows",
    # files
    "atomic_write_text",
    "copy_file",
    "sha_file",
    # process
    "ProcessError",
    "run",
    "run_streaming",
    # triple
    "Family",
    "SymbolKind",
    "TargetTriple",
]
