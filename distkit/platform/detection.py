"""Host platform detection.

The host triple is derived from `sys.platform` and the machine name and
cached for the lifetime of the process.
"""

from __future__ import annotations

import os as _os
import platform as _platform
import sys as _sys
from functools import lru_cache

__all__ = [
    "detect_arch",
    "host_triple",
    "is_linux",
    "is_macos",
    "is_windows",
]


def _system() -> str:
    return _sys.platform.lower()


def is_windows() -> bool:
    return _system().startswith(("win32", "cygwin", "msys"))


def is_linux() -> bool:
    return _system().startswith("linux")


def is_macos() -> bool:
    return _system().startswith("darwin")


@lru_cache(maxsize=1)
def detect_arch() -> str:
    """Detect the current CPU architecture in triple spelling (cached)."""
    # NOTE: avoid platform.machine() on Windows, it may query WMI.
    if is_windows():
        machine = (
            _os.environ.get("PROCESSOR_ARCHITEW6432")
            or _os.environ.get("PROCESSOR_ARCHITECTURE")
            or ""
        ).lower()
    else:
        machine = _platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x86_64"
    if machine in ("aarch64", "arm64"):
        return "aarch64"
    if machine in ("i386", "i686", "x86"):
        return "i686"
    return machine or "unknown"


def _listdir(path: str) -> list[str]:
    try:
        return _os.listdir(path)
    except OSError:
        return []


def _linux_env() -> str:
    libc, _ = _platform.libc_ver()
    if libc == "glibc":
        return "gnu"
    # musl reports no version; its loader is the reliable marker.
    if any(name.startswith("ld-musl-") for name in _listdir("/lib")):
        return "musl"
    return "gnu"


@lru_cache(maxsize=1)
def host_triple() -> str:
    """Target triple of the machine running distkit (cached)."""
    arch = detect_arch()
    if is_linux():
        return f"{arch}-unknown-linux-{_linux_env()}"
    if is_macos():
        return f"{arch}-apple-darwin"
    if is_windows():
        return f"{arch}-pc-windows-msvc"
    return f"{arch}-unknown-{_system()}"
