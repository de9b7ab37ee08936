"""Minimal readers for ELF, Mach-O and PE headers.

Only what linkage classification needs: whether an ELF file is dynamically
linked, the dylib load commands of a Mach-O file (thin or fat) and the
import table of a PE file.
"""

from __future__ import annotations

import struct
from enum import Enum, auto

from distkit.core.result import Err, Ok, Result

__all__ = [
    "BinaryFormat",
    "detect_format",
    "elf_is_dynamic",
    "macho_dylibs",
    "pe_imports",
]

ELF_MAGIC = b"\x7fELF"
AR_MAGIC = b"!<arch>\n"
PE_DOS_MAGIC = b"MZ"

PT_DYNAMIC = 2
PT_INTERP = 3

MH_MAGIC = 0xFEEDFACE
MH_MAGIC_64 = 0xFEEDFACF
MH_CIGAM = 0xCEFAEDFE
MH_CIGAM_64 = 0xCFFAEDFE
FAT_MAGIC = 0xCAFEBABE
FAT_MAGIC_64 = 0xCAFEBABF

LC_ID_DYLIB = 0xD
LC_LOAD_DYLIB = 0xC
LC_LOAD_WEAK_DYLIB = 0x80000018
LC_REEXPORT_DYLIB = 0x8000001F
LC_LAZY_LOAD_DYLIB = 0x20
LC_LOAD_UPWARD_DYLIB = 0x80000023
DYLIB_COMMANDS = frozenset(
    {
        LC_ID_DYLIB,
        LC_LOAD_DYLIB,
        LC_LOAD_WEAK_DYLIB,
        LC_REEXPORT_DYLIB,
        LC_LAZY_LOAD_DYLIB,
        LC_LOAD_UPWARD_DYLIB,
    }
)

PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B
IMAGE_DIRECTORY_ENTRY_IMPORT = 1


class BinaryFormat(Enum):
    ELF = auto()
    MACHO = auto()
    MACHO_FAT = auto()
    PE = auto()
    ARCHIVE = auto()
    UNKNOWN = auto()


class _Malformed(Exception):
    pass


def detect_format(data: bytes) -> BinaryFormat:
    if data.startswith(ELF_MAGIC):
        return BinaryFormat.ELF
    if data.startswith(AR_MAGIC):
        return BinaryFormat.ARCHIVE
    if data.startswith(PE_DOS_MAGIC):
        return BinaryFormat.PE
    if len(data) >= 4:
        (magic,) = struct.unpack_from(">I", data, 0)
        if magic in (MH_MAGIC, MH_MAGIC_64, MH_CIGAM, MH_CIGAM_64):
            return BinaryFormat.MACHO
        if magic in (FAT_MAGIC, FAT_MAGIC_64):
            return BinaryFormat.MACHO_FAT
    return BinaryFormat.UNKNOWN


def _unpack(fmt: str, data: bytes, offset: int) -> tuple[int, ...]:
    try:
        return struct.unpack_from(fmt, data, offset)
    except struct.error as e:
        raise _Malformed(f"truncated header at offset {offset:#x}") from e


def _cstring(data: bytes, offset: int) -> str:
    if offset < 0 or offset >= len(data):
        raise _Malformed(f"string offset {offset:#x} out of range")
    end = data.find(b"\0", offset)
    if end == -1:
        end = len(data)
    return data[offset:end].decode("utf-8", errors="replace")


# ELF


def _elf_is_dynamic(data: bytes) -> bool:
    ei_class = data[4] if len(data) > 4 else 0
    ei_data = data[5] if len(data) > 5 else 0
    if ei_data == 1:
        order = "<"
    elif ei_data == 2:
        order = ">"
    else:
        raise _Malformed(f"unknown ELF data encoding {ei_data}")

    if ei_class == 1:
        (phoff,) = _unpack(f"{order}I", data, 0x1C)
        phentsize, phnum = _unpack(f"{order}HH", data, 0x2A)
    elif ei_class == 2:
        (phoff,) = _unpack(f"{order}Q", data, 0x20)
        phentsize, phnum = _unpack(f"{order}HH", data, 0x36)
    else:
        raise _Malformed(f"unknown ELF class {ei_class}")

    for i in range(phnum):
        (p_type,) = _unpack(f"{order}I", data, phoff + i * phentsize)
        if p_type in (PT_DYNAMIC, PT_INTERP):
            return True
    return False


def elf_is_dynamic(data: bytes) -> Result[bool, str]:
    """True if the ELF file has a dynamic section or an interpreter."""
    if not data.startswith(ELF_MAGIC):
        return Err("not an ELF file")
    try:
        return Ok(_elf_is_dynamic(data))
    except _Malformed as e:
        return Err(str(e))


# Mach-O


def _thin_dylibs(data: bytes, base: int) -> list[str]:
    (magic,) = _unpack(">I", data, base)
    if magic in (MH_MAGIC, MH_MAGIC_64):
        order = ">"
    elif magic in (MH_CIGAM, MH_CIGAM_64):
        order = "<"
    else:
        raise _Malformed(f"bad Mach-O magic {magic:#x} at offset {base:#x}")
    is_64 = magic in (MH_MAGIC_64, MH_CIGAM_64)

    (ncmds,) = _unpack(f"{order}I", data, base + 16)
    offset = base + (32 if is_64 else 28)
    dylibs: list[str] = []
    for _ in range(ncmds):
        cmd, cmdsize = _unpack(f"{order}II", data, offset)
        if cmdsize < 8:
            raise _Malformed(f"load command at {offset:#x} has size {cmdsize}")
        if cmd in DYLIB_COMMANDS:
            (name_offset,) = _unpack(f"{order}I", data, offset + 8)
            dylibs.append(_cstring(data, offset + name_offset))
        offset += cmdsize
    return dylibs


def _fat_dylibs(data: bytes) -> list[str]:
    magic, nfat = _unpack(">II", data, 0)
    slices: list[int] = []
    for i in range(nfat):
        if magic == FAT_MAGIC_64:
            (slice_offset,) = _unpack(">Q", data, 8 + i * 32 + 8)
        else:
            (slice_offset,) = _unpack(">I", data, 8 + i * 20 + 8)
        slices.append(slice_offset)

    seen: list[str] = []
    for slice_offset in slices:
        for lib in _thin_dylibs(data, slice_offset):
            if lib not in seen:
                seen.append(lib)
    return seen


def macho_dylibs(data: bytes) -> Result[list[str], str]:
    """Dylib paths named by load commands, deduplicated across fat slices."""
    try:
        match detect_format(data):
            case BinaryFormat.MACHO:
                return Ok(_thin_dylibs(data, 0))
            case BinaryFormat.MACHO_FAT:
                return Ok(_fat_dylibs(data))
            case _:
                return Err("not a Mach-O file")
    except _Malformed as e:
        return Err(str(e))


# PE


def _rva_to_offset(sections: list[tuple[int, int, int, int]], rva: int) -> int:
    for virtual_size, virtual_address, raw_size, raw_pointer in sections:
        if virtual_address <= rva < virtual_address + max(virtual_size, raw_size):
            return rva - virtual_address + raw_pointer
    raise _Malformed(f"RVA {rva:#x} is not inside any section")


def _pe_imports(data: bytes) -> list[str]:
    (pe_offset,) = _unpack("<I", data, 0x3C)
    if data[pe_offset : pe_offset + 4] != b"PE\0\0":
        raise _Malformed("missing PE signature")

    coff = pe_offset + 4
    (num_sections,) = _unpack("<H", data, coff + 2)
    (optional_size,) = _unpack("<H", data, coff + 16)
    optional = coff + 20

    (magic,) = _unpack("<H", data, optional)
    if magic == PE32_MAGIC:
        count_at, dirs_at = 92, 96
    elif magic == PE32_PLUS_MAGIC:
        count_at, dirs_at = 108, 112
    else:
        raise _Malformed(f"unknown optional header magic {magic:#x}")

    (num_dirs,) = _unpack("<I", data, optional + count_at)
    if num_dirs <= IMAGE_DIRECTORY_ENTRY_IMPORT:
        return []
    import_rva, import_size = _unpack("<II", data, optional + dirs_at + 8 * IMAGE_DIRECTORY_ENTRY_IMPORT)
    if import_rva == 0 or import_size == 0:
        return []

    section_table = optional + optional_size
    sections: list[tuple[int, int, int, int]] = []
    for i in range(num_sections):
        entry = section_table + i * 40
        virtual_size, virtual_address, raw_size, raw_pointer = _unpack("<IIII", data, entry + 8)
        sections.append((virtual_size, virtual_address, raw_size, raw_pointer))

    imports: list[str] = []
    descriptor = _rva_to_offset(sections, import_rva)
    while True:
        fields = _unpack("<IIIII", data, descriptor)
        name_rva = fields[3]
        if not any(fields) or name_rva == 0:
            break
        imports.append(_cstring(data, _rva_to_offset(sections, name_rva)))
        descriptor += 20
    return imports


def pe_imports(data: bytes) -> Result[list[str], str]:
    """DLL names from the import directory. Static archives import nothing."""
    if data.startswith(AR_MAGIC):
        return Ok([])
    if not data.startswith(PE_DOS_MAGIC):
        return Err("not a PE file")
    try:
        return Ok(_pe_imports(data))
    except _Malformed as e:
        return Err(str(e))
