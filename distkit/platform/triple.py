"""Target triple conventions.

A target triple names a platform as `arch-vendor-os[-env]`
(`x86_64-unknown-linux-gnu`, `aarch64-apple-darwin`,
`x86_64-pc-windows-msvc`). Everything here is a pure function of the
triple string: binary file names, executable suffixes, debug-symbol
conventions and the binary format a linker produces.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

__all__ = [
    "Family",
    "SymbolKind",
    "TargetTriple",
]


class Family(Enum):
    """Binary format family produced for a target."""

    ELF = auto()
    MACHO = auto()
    PE = auto()
    UNKNOWN = auto()

    def __str__(self) -> str:
        return self.name.lower()


class SymbolKind(Enum):
    """Debug-symbol file conventions."""

    PDB = auto()
    DSYM = auto()
    DWP = auto()

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def ext(self) -> str:
        return {
            SymbolKind.PDB: ".pdb",
            SymbolKind.DSYM: ".dSYM",
            SymbolKind.DWP: ".dwp",
        }[self]


@dataclass(frozen=True, slots=True)
class TargetTriple:
    value: str

    def __str__(self) -> str:
        return self.value

    @property
    def arch(self) -> str:
        return self.value.split("-", 1)[0]

    @property
    def is_windows(self) -> bool:
        return "windows" in self.value

    @property
    def is_windows_msvc(self) -> bool:
        return "windows-msvc" in self.value

    @property
    def is_darwin(self) -> bool:
        return "apple-darwin" in self.value

    @property
    def is_linux(self) -> bool:
        return "linux" in self.value

    @property
    def is_linux_gnu(self) -> bool:
        return "linux-gnu" in self.value

    @property
    def is_musl(self) -> bool:
        return "linux-musl" in self.value

    @property
    def os_name(self) -> str:
        """Coarse OS name used to compare hosts and targets."""
        if self.is_windows:
            return "windows"
        if self.is_darwin:
            return "darwin"
        if self.is_linux:
            return "linux"
        return "unknown"

    @property
    def family(self) -> Family:
        if self.is_darwin:
            return Family.MACHO
        if self.is_windows:
            return Family.PE
        if self.is_linux:
            return Family.ELF
        return Family.UNKNOWN

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.is_windows else ""

    @property
    def symbol_kind(self) -> SymbolKind | None:
        """Debug symbols collected for binaries of this target.

        Only PDB files are collected: dSYM bundles are directories and dwp
        files are not uplifted next to the binary by the build backends.
        """
        if self.is_windows_msvc:
            return SymbolKind.PDB
        return None

    def exe_name(self, name: str) -> str:
        return f"{name}{self.exe_suffix}"

    def dylib_name(self, name: str) -> str:
        if self.is_windows:
            return f"{name}.dll"
        if self.is_darwin:
            return f"lib{name}.dylib"
        return f"lib{name}.so"

    def staticlib_name(self, name: str) -> str:
        if self.is_windows_msvc:
            return f"{name}.lib"
        return f"lib{name}.a"

    def same_platform(self, other: TargetTriple) -> bool:
        """True when a binary for `other` can be built without cross tooling."""
        return self.os_name == other.os_name and self.arch == other.arch
