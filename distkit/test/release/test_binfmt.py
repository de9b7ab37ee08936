from __future__ import annotations

from distkit.core.result import Err, Ok
from distkit.release.binfmt import BinaryFormat, detect_format, elf_is_dynamic, macho_dylibs, pe_imports

from ._binaries import PT_DYNAMIC, PT_INTERP, PT_LOAD, elf32_be, elf64, fat, macho64, pe64


def test_detect_format() -> None:
    assert detect_format(elf64(PT_LOAD)) is BinaryFormat.ELF
    assert detect_format(macho64()) is BinaryFormat.MACHO
    assert detect_format(fat(macho64())) is BinaryFormat.MACHO_FAT
    assert detect_format(pe64()) is BinaryFormat.PE
    assert detect_format(b"!<arch>\nfoo") is BinaryFormat.ARCHIVE
    assert detect_format(b"#!/bin/sh\n") is BinaryFormat.UNKNOWN


class TestElf:
    def test_static(self) -> None:
        assert elf_is_dynamic(elf64(PT_LOAD, PT_LOAD)) == Ok(False)

    def test_dynamic(self) -> None:
        assert elf_is_dynamic(elf64(PT_LOAD, PT_INTERP, PT_DYNAMIC)) == Ok(True)
        assert elf_is_dynamic(elf64(PT_DYNAMIC)) == Ok(True)

    def test_32bit_big_endian(self) -> None:
        assert elf_is_dynamic(elf32_be(PT_LOAD)) == Ok(False)
        assert elf_is_dynamic(elf32_be(PT_LOAD, PT_INTERP)) == Ok(True)

    def test_truncated(self) -> None:
        assert isinstance(elf_is_dynamic(elf64(PT_LOAD)[:40]), Err)

    def test_not_elf(self) -> None:
        assert elf_is_dynamic(b"MZ") == Err("not an ELF file")


class TestMachO:
    def test_load_commands(self) -> None:
        data = macho64("/usr/lib/libSystem.B.dylib", "@rpath/libfoo.dylib", weak=("/opt/homebrew/opt/zstd/lib/libzstd.1.dylib",))
        assert macho_dylibs(data) == Ok(
            [
                "/usr/lib/libSystem.B.dylib",
                "@rpath/libfoo.dylib",
                "/opt/homebrew/opt/zstd/lib/libzstd.1.dylib",
            ]
        )

    def test_fat_binary_dedups_across_slices(self) -> None:
        data = fat(macho64("/usr/lib/libSystem.B.dylib"), macho64("/usr/lib/libSystem.B.dylib", "/usr/lib/libz.1.dylib"))
        assert macho_dylibs(data) == Ok(["/usr/lib/libSystem.B.dylib", "/usr/lib/libz.1.dylib"])

    def test_malformed(self) -> None:
        assert isinstance(macho_dylibs(macho64("/usr/lib/libz.dylib")[:40]), Err)
        assert isinstance(macho_dylibs(elf64()), Err)


class TestPe:
    def test_imports(self) -> None:
        assert pe_imports(pe64("KERNEL32.dll", "VCRUNTIME140.dll")) == Ok(["KERNEL32.dll", "VCRUNTIME140.dll"])

    def test_no_imports(self) -> None:
        assert pe_imports(pe64()) == Ok([])

    def test_static_archive_imports_nothing(self) -> None:
        assert pe_imports(b"!<arch>\n") == Ok([])

    def test_missing_signature(self) -> None:
        data = bytearray(pe64("a.dll"))
        data[0x40:0x44] = b"XXXX"
        assert isinstance(pe_imports(bytes(data)), Err)
