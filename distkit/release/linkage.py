"""Dynamic linkage classification.

Finds the shared libraries a built binary depends on and sorts each one
into a provenance bucket: the OS itself, Homebrew, an unmanaged
`/usr/local` install, an OS framework, or anything else.

`determine_linkage` reports failures as values. Callers that only want a
best-effort answer downgrade an error to `Linkage.empty(...)` themselves.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from distkit.core.result import Err, Ok, Result
from distkit.core.structured import as_obj_list, as_str_dict, get_str, get_table
from distkit.output.console import ConsoleProtocol
from distkit.platform.detection import host_triple, is_linux
from distkit.platform.process import ProcessError, run
from distkit.platform.triple import Family, TargetTriple

from .binfmt import AR_MAGIC, elf_is_dynamic, macho_dylibs, pe_imports
from .errors import (
    BinaryParseError,
    LinkageCheckInvalidOS,
    LinkageCheckUnsupportedBinary,
    LinkageError,
    LinkageToolFailed,
)

__all__ = [
    "Library",
    "Linkage",
    "classify_libraries",
    "determine_linkage",
    "dpkg_owner",
    "linkage_error_message",
    "parse_ldd",
]

HOMEBREW_OPT_PREFIXES = ("/opt/homebrew/opt/", "/usr/local/opt/")
FRAMEWORK_PREFIXES = ("/System/Library/Frameworks", "/Library/Frameworks")

type PackageLookup = Callable[[str], str | None]
type PathResolver = Callable[[str], str]
type LddRunner = Callable[[Path], Result[str, ProcessError]]


@dataclass(frozen=True, slots=True, order=True)
class Library:
    """A dynamic library, with the package that provides it when known."""

    path: str
    source: str | None = None

    def pretty(self) -> str:
        if self.source:
            return f"{self.path} ({self.source})"
        return self.path

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {"path": self.path}
        if self.source is not None:
            out["source"] = self.source
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Library:
        return cls(path=get_str(data, "path") or "", source=get_str(data, "source"))


def _libraries() -> list[Library]:
    return []


@dataclass(slots=True)
class Linkage:
    binary: str
    target: str
    system: list[Library] = field(default_factory=_libraries)
    homebrew: list[Library] = field(default_factory=_libraries)
    public_unmanaged: list[Library] = field(default_factory=_libraries)
    frameworks: list[Library] = field(default_factory=_libraries)
    other: list[Library] = field(default_factory=_libraries)

    _BUCKETS = ("system", "homebrew", "public_unmanaged", "frameworks", "other")

    @classmethod
    def empty(cls, binary: str, target: str) -> Linkage:
        return cls(binary=binary, target=target)

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, bucket) for bucket in self._BUCKETS)

    def report_rows(self) -> list[tuple[str, str]]:
        return [
            ("System", "\n".join(lib.pretty() for lib in self.system)),
            ("Homebrew", "\n".join(lib.pretty() for lib in self.homebrew)),
            ("Public (unmanaged)", "\n".join(lib.path for lib in self.public_unmanaged)),
            ("Frameworks", "\n".join(lib.path for lib in self.frameworks)),
            ("Other", "\n".join(lib.pretty() for lib in self.other)),
        ]

    def report(self, console: ConsoleProtocol) -> None:
        console.table(f"{self.binary} ({self.target})", ("Category", "Libraries"), self.report_rows())

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {"binary": self.binary, "target": self.target}
        for bucket in self._BUCKETS:
            out[bucket] = [lib.to_dict() for lib in getattr(self, bucket)]
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Linkage:
        linkage = cls(binary=get_str(data, "binary") or "", target=get_str(data, "target") or "")
        for bucket in cls._BUCKETS:
            items = as_obj_list(data.get(bucket)) or []
            libs = getattr(linkage, bucket)
            for item in items:
                table = as_str_dict(item)
                if table is not None:
                    libs.append(Library.from_dict(table))
        return linkage


def dpkg_owner(library: str) -> str | None:
    """Best-effort name of the Debian package owning a file."""
    if not is_linux():
        return None
    result = run(["dpkg", "--search", library], cwd=Path("/"))
    if isinstance(result, Err):
        return None
    package = result.value.split(":", 1)[0].strip()
    return package or None


def _receipt_tap(receipt: Path) -> str | None:
    try:
        data = json.loads(receipt.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    table = as_str_dict(data)
    source = get_table(table, "source") if table is not None else None
    if source is None:
        return None
    return get_str(source, "tap")


def homebrew_library(library: str, *, root: Path = Path("/")) -> Library:
    """Attribute a Homebrew library to its formula, tap-qualified when not core."""
    for prefix in HOMEBREW_OPT_PREFIXES:
        if not library.startswith(prefix):
            continue
        package = library[len(prefix) :].split("/", 1)[0]
        receipt = root / prefix.lstrip("/") / package / "INSTALL_RECEIPT.json"
        tap = _receipt_tap(receipt)
        if tap and tap != "homebrew/core":
            package = f"{tap}/{package}"
        return Library(path=library, source=package)
    return Library(path=library)


def classify_libraries(
    binary: str,
    target: str,
    libraries: list[str],
    *,
    package_lookup: PackageLookup = dpkg_owner,
    resolve: PathResolver = os.path.realpath,
    root: Path = Path("/"),
) -> Linkage:
    linkage = Linkage.empty(binary, target)
    for library in libraries:
        if library.startswith("/opt/homebrew"):
            linkage.homebrew.append(homebrew_library(library, root=root))
        elif library.startswith(("/usr/lib", "/lib")):
            linkage.system.append(Library(path=library, source=package_lookup(library)))
        elif library.startswith(FRAMEWORK_PREFIXES):
            linkage.frameworks.append(Library(path=library))
        elif library.startswith("/usr/local"):
            if resolve(library).startswith("/usr/local/Cellar"):
                linkage.homebrew.append(homebrew_library(library, root=root))
            else:
                linkage.public_unmanaged.append(Library(path=library))
        else:
            linkage.other.append(Library(path=library, source=package_lookup(library)))
    return linkage


def parse_ldd(output: str, *, resolve: PathResolver = os.path.realpath) -> list[str]:
    """Library paths from `ldd` output, symlinks resolved."""
    libraries: list[str] = []
    for raw in output.splitlines():
        line = raw.strip()
        if "not a dynamic executable" in line:
            break
        if line.startswith("linux-vdso"):
            continue
        name, sep, rest = line.partition(" => ")
        if not sep:
            continue
        path = rest.rsplit(" (", 1)[0].strip()
        if not path or path == "not found":
            libraries.append(name.strip())
            continue
        libraries.append(resolve(path))
    return libraries


def _run_ldd(path: Path) -> Result[str, ProcessError]:
    return run(["ldd", str(path)], cwd=path.parent)


def determine_linkage(
    path: Path,
    target: str,
    *,
    ldd: LddRunner = _run_ldd,
    host_is_linux: bool | None = None,
    package_lookup: PackageLookup = dpkg_owner,
    resolve: PathResolver = os.path.realpath,
) -> Result[Linkage, LinkageError]:
    """Inspect a finished binary and classify its dynamic dependencies."""
    try:
        data = path.read_bytes()
    except OSError as e:
        return Err(BinaryParseError(path=path, reason=str(e)))

    if data.startswith(AR_MAGIC):
        return Ok(Linkage.empty(path.name, target))

    match TargetTriple(target).family:
        case Family.MACHO:
            parsed = macho_dylibs(data)
            if isinstance(parsed, Err):
                return Err(BinaryParseError(path=path, reason=parsed.error))
            libraries = parsed.value
        case Family.PE:
            parsed = pe_imports(data)
            if isinstance(parsed, Err):
                return Err(BinaryParseError(path=path, reason=parsed.error))
            libraries = parsed.value
        case Family.ELF:
            dynamic = elf_is_dynamic(data)
            if isinstance(dynamic, Err):
                return Err(BinaryParseError(path=path, reason=dynamic.error))
            if not dynamic.value:
                return Ok(Linkage.empty(path.name, target))
            on_linux = is_linux() if host_is_linux is None else host_is_linux
            if not on_linux:
                return Err(LinkageCheckInvalidOS(host=host_triple(), target=target))
            output = ldd(path)
            if isinstance(output, Err):
                error = output.error
                if "not a dynamic executable" not in error.stdout + error.stderr:
                    return Err(LinkageToolFailed(tool="ldd", reason=str(error)))
                return Ok(Linkage.empty(path.name, target))
            libraries = parse_ldd(output.value, resolve=resolve)
        case Family.UNKNOWN:
            return Err(LinkageCheckUnsupportedBinary(path=path, target=target))

    return Ok(
        classify_libraries(
            path.name,
            target,
            libraries,
            package_lookup=package_lookup,
            resolve=resolve,
        )
    )


def linkage_error_message(error: LinkageError) -> str:
    match error:
        case LinkageCheckInvalidOS(host=host, target=target):
            return f"linkage of {target} binaries can't be checked on {host}"
        case LinkageCheckUnsupportedBinary(path=path, target=target):
            return f"don't know how to check linkage of {path.name} ({target})"
        case BinaryParseError(path=path, reason=reason):
            return f"couldn't parse {path}: {reason}"
        case LinkageToolFailed(tool=tool, reason=reason):
            return f"{tool} failed: {reason}"
