"""ELF executable file and program headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterator

ELF_MAGIC = 0x464C457F  # "\x7FELF" read as a little-endian word

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4

_ELF_HEADER = struct.Struct("<I12sHHIIIIIHHHHHH")
_PROG_HEADER = struct.Struct("<8I")

ELF_HEADER_SIZE = _ELF_HEADER.size
PROGRAM_HEADER_SIZE = _PROG_HEADER.size


class ElfError(ValueError):
    """Raised when data is not a well-formed ELF image."""


@dataclass
class ProgramHeader:
    type: int = 0
    off: int = 0
    vaddr: int = 0
    paddr: int = 0
    filesz: int = 0
    memsz: int = 0
    flags: int = 0
    align: int = 0

    def pack(self) -> bytes:
        try:
            return _PROG_HEADER.pack(
                self.type, self.off, self.vaddr, self.paddr,
                self.filesz, self.memsz, self.flags, self.align,
            )
        except struct.error as exc:
            raise ElfError(str(exc)) from exc


@dataclass
class ElfHeader:
    magic: int = ELF_MAGIC
    elf: bytes = bytes(12)
    type: int = 0
    machine: int = 0
    version: int = 0
    entry: int = 0
    phoff: int = 0
    shoff: int = 0
    flags: int = 0
    ehsize: int = 0
    phentsize: int = 0
    phnum: int = 0
    shentsize: int = 0
    shnum: int = 0
    shstrndx: int = 0

    def __post_init__(self) -> None:
        if len(self.elf) != 12:
            raise ElfError("ident field must be 12 bytes")

    def pack(self) -> bytes:
        try:
            return _ELF_HEADER.pack(
                self.magic, bytes(self.elf), self.type, self.machine,
                self.version, self.entry, self.phoff, self.shoff, self.flags,
                self.ehsize, self.phentsize, self.phnum, self.shentsize,
                self.shnum, self.shstrndx,
            )
        except struct.error as exc:
            raise ElfError(str(exc)) from exc

    def program_headers(self, data: bytes) -> Iterator[ProgramHeader]:
        """Yield the program headers found in the image ``data``."""
        for i in range(self.phnum):
            yield parse_program_header(data, self.phoff + i * PROGRAM_HEADER_SIZE)


def parse_elf_header(data: bytes) -> ElfHeader:
    """Parse and validate the ELF file header at the start of ``data``."""
    if len(data) < ELF_HEADER_SIZE:
        raise ElfError("data too short for an ELF header")
    header = ElfHeader(*_ELF_HEADER.unpack_from(data, 0))
    if header.magic != ELF_MAGIC:
        raise ElfError("bad ELF magic")
    return header


def parse_program_header(data: bytes, offset: int) -> ProgramHeader:
    """Parse one program header at ``offset`` in ``data``."""
    if offset < 0 or offset + PROGRAM_HEADER_SIZE > len(data):
        raise ElfError("program header lies outside the data")
    return ProgramHeader(*_PROG_HEADER.unpack_from(data, offset))