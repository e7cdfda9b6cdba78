"""x86 memory-management definitions: paging helpers, memory layout and descriptors."""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields
from typing import ClassVar

_MASK32 = 0xFFFFFFFF

# Eflags register
FL_IF = 0x00000200

# Control register flags
CR0_PE = 0x00000001
CR0_WP = 0x00010000
CR0_PG = 0x80000000
CR4_PSE = 0x00000010

# Segment selectors
SEG_KCODE = 1
SEG_KDATA = 2
SEG_UCODE = 3
SEG_UDATA = 4
SEG_TSS = 5
NSEGS = 6

DPL_USER = 0x3

# Application segment type bits
STA_X = 0x8
STA_W = 0x2
STA_R = 0x2

# System segment type bits
STS_T32A = 0x9
STS_IG32 = 0xE
STS_TG32 = 0xF

# Paging
NPDENTRIES = 1024
NPTENTRIES = 1024
PGSIZE = 4096
PTXSHIFT = 12
PDXSHIFT = 22

# Page table / directory entry flags
PTE_P = 0x001
PTE_W = 0x002
PTE_U = 0x004
PTE_PS = 0x080

# Memory layout
EXTMEM = 0x100000
PHYSTOP = 0xE000000
DEVSPACE = 0xFE000000
KERNBASE = 0x80000000
KERNLINK = KERNBASE + EXTMEM

# System parameters
NPROC = 64
KSTACKSIZE = 4096
NCPU = 8
NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 1000


def pdx(va: int) -> int:
    """Page directory index of a virtual address."""
    return ((va & _MASK32) >> PDXSHIFT) & 0x3FF


def ptx(va: int) -> int:
    """Page table index of a virtual address."""
    return ((va & _MASK32) >> PTXSHIFT) & 0x3FF


def pgaddr(d: int, t: int, o: int) -> int:
    """Build a virtual address from directory index, table index and offset."""
    return (d << PDXSHIFT | t << PTXSHIFT | o) & _MASK32


def pg_round_up(sz: int) -> int:
    """Round a size up to a page boundary (32-bit wrap-around)."""
    return (sz + PGSIZE - 1) & ~(PGSIZE - 1) & _MASK32


def pg_round_down(a: int) -> int:
    """Round an address down to a page boundary."""
    return a & ~(PGSIZE - 1) & _MASK32


def pte_addr(pte: int) -> int:
    """Physical address held in a page table entry."""
    return pte & ~0xFFF & _MASK32


def pte_flags(pte: int) -> int:
    """Flag bits held in a page table entry."""
    return pte & 0xFFF


def v2p(a: int) -> int:
    """Kernel virtual address to physical address."""
    return (a - KERNBASE) & _MASK32


def p2v(a: int) -> int:
    """Physical address to kernel virtual address."""
    return (a + KERNBASE) & _MASK32


def _check_widths(obj, widths: dict[str, int]) -> None:
    for f in fields(obj):
        value = getattr(obj, f.name)
        width = widths[f.name]
        if not 0 <= value < (1 << width):
            raise ValueError(f"{f.name}={value:#x} does not fit in {width} bits")


@dataclass(frozen=True)
class SegmentDescriptor:
    """An 8-byte x86 segment descriptor with its bit fields."""

    lim_15_0: int = 0
    base_15_0: int = 0
    base_23_16: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    lim_19_16: int = 0
    avl: int = 0
    rsv1: int = 0
    db: int = 0
    g: int = 0
    base_31_24: int = 0

    _WIDTHS: ClassVar[dict[str, int]] = {
        "lim_15_0": 16, "base_15_0": 16, "base_23_16": 8, "type": 4, "s": 1,
        "dpl": 2, "p": 1, "lim_19_16": 4, "avl": 1, "rsv1": 1, "db": 1,
        "g": 1, "base_31_24": 8,
    }

    def __post_init__(self) -> None:
        _check_widths(self, self._WIDTHS)

    @property
    def base(self) -> int:
        return self.base_15_0 | self.base_23_16 << 16 | self.base_31_24 << 24

    @property
    def limit(self) -> int:
        """The raw 20-bit limit field (in pages when ``g`` is set)."""
        return self.lim_15_0 | self.lim_19_16 << 16

    def pack(self) -> bytes:
        low = self.lim_15_0 | self.base_15_0 << 16
        high = (
            self.base_23_16
            | self.type << 8
            | self.s << 12
            | self.dpl << 13
            | self.p << 15
            | self.lim_19_16 << 16
            | self.avl << 20
            | self.rsv1 << 21
            | self.db << 22
            | self.g << 23
            | self.base_31_24 << 24
        )
        return struct.pack("<II", low, high)


@dataclass(frozen=True)
class GateDescriptor:
    """An 8-byte x86 interrupt or trap gate descriptor."""

    off_15_0: int = 0
    cs: int = 0
    args: int = 0
    rsv1: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    off_31_16: int = 0

    _WIDTHS: ClassVar[dict[str, int]] = {
        "off_15_0": 16, "cs": 16, "args": 5, "rsv1": 3, "type": 4, "s": 1,
        "dpl": 2, "p": 1, "off_31_16": 16,
    }

    def __post_init__(self) -> None:
        _check_widths(self, self._WIDTHS)

    @property
    def offset(self) -> int:
        return self.off_15_0 | self.off_31_16 << 16

    def pack(self) -> bytes:
        low = self.off_15_0 | self.cs << 16
        high = (
            self.args
            | self.rsv1 << 5
            | self.type << 8
            | self.s << 12
            | self.dpl << 13
            | self.p << 15
            | self.off_31_16 << 16
        )
        return struct.pack("<II", low, high)


def seg(type_: int, base: int, limit: int, dpl: int) -> SegmentDescriptor:
    """A normal 32-bit segment with page granularity."""
    base &= _MASK32
    limit &= _MASK32
    return SegmentDescriptor(
        lim_15_0=(limit >> 12) & 0xFFFF,
        base_15_0=base & 0xFFFF,
        base_23_16=(base >> 16) & 0xFF,
        type=type_,
        s=1,
        dpl=dpl,
        p=1,
        lim_19_16=limit >> 28,
        avl=0,
        rsv1=0,
        db=1,
        g=1,
        base_31_24=base >> 24,
    )


def seg16(type_: int, base: int, limit: int, dpl: int) -> SegmentDescriptor:
    """A segment with byte granularity."""
    base &= _MASK32
    limit &= _MASK32
    return SegmentDescriptor(
        lim_15_0=limit & 0xFFFF,
        base_15_0=base & 0xFFFF,
        base_23_16=(base >> 16) & 0xFF,
        type=type_,
        s=1,
        dpl=dpl,
        p=1,
        lim_19_16=(limit >> 16) & 0xF,
        avl=0,
        rsv1=0,
        db=1,
        g=0,
        base_31_24=base >> 24,
    )


def make_gate(istrap: bool, sel: int, off: int, dpl: int) -> GateDescriptor:
    """An interrupt gate (clears FL_IF) or trap gate (leaves it alone)."""
    off &= _MASK32
    return GateDescriptor(
        off_15_0=off & 0xFFFF,
        cs=sel,
        args=0,
        rsv1=0,
        type=STS_TG32 if istrap else STS_IG32,
        s=0,
        dpl=dpl,
        p=1,
        off_31_16=off >> 16,
    )