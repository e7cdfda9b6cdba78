"""Two-level x86 page tables over a simulated physical memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from .mmu import (
    DEVSPACE,
    EXTMEM,
    KERNBASE,
    KERNLINK,
    NPDENTRIES,
    PDXSHIFT,
    PGSIZE,
    PHYSTOP,
    PTE_P,
    PTE_U,
    PTE_W,
    p2v,
    pdx,
    pg_round_down,
    pg_round_up,
    pte_addr,
    pte_flags,
    ptx,
    v2p,
)

_MASK32 = 0xFFFFFFFF
_WORD = struct.Struct("<I")

USER_CODE_ADDR = 0x1000


class VmError(Exception):
    """Raised when a page-table operation is invalid."""


class OutOfMemory(VmError):
    """Raised when no free physical page is left."""


class PhysicalMemory:
    """A pool of page-sized physical frames between ``start`` and ``end``.

    Only frames handed out by :meth:`kalloc` are backed by storage; a freed
    frame is the next one handed out again.
    """

    def __init__(self, start: int = 0x400000, end: int = PHYSTOP) -> None:
        if start % PGSIZE or end % PGSIZE:
            raise ValueError("memory bounds must be page aligned")
        if not 0 <= start < end:
            raise ValueError("memory range is empty")
        self._start = start
        self._end = end
        self._next = start
        self._freed: list[int] = []
        self._pages: dict[int, bytearray] = {}

    def kalloc(self) -> int:
        """Allocate one zeroed page and return its physical address."""
        if self._freed:
            pa = self._freed.pop()
        elif self._next < self._end:
            pa = self._next
            self._next += PGSIZE
        else:
            raise OutOfMemory("out of physical memory")
        self._pages[pa] = bytearray(PGSIZE)
        return pa

    def kfree(self, pa: int) -> None:
        """Return the page at ``pa`` to the pool."""
        if pa % PGSIZE or not self._start <= pa < self._end or pa not in self._pages:
            raise VmError("kfree")
        del self._pages[pa]
        self._freed.append(pa)

    def free_pages(self) -> int:
        """Number of pages that can still be allocated."""
        return len(self._freed) + (self._end - self._next) // PGSIZE

    def _page(self, base: int) -> bytearray:
        try:
            return self._pages[base]
        except KeyError:
            raise VmError(f"physical address {base:#x} is not allocated") from None

    def read(self, pa: int, n: int) -> bytes:
        """Read ``n`` bytes starting at physical address ``pa``."""
        if n < 0:
            raise ValueError("negative length")
        out = bytearray()
        while n > 0:
            base = pg_round_down(pa)
            off = pa - base
            chunk = min(n, PGSIZE - off)
            out += self._page(base)[off:off + chunk]
            pa += chunk
            n -= chunk
        return bytes(out)

    def write(self, pa: int, data: bytes) -> None:
        """Write ``data`` starting at physical address ``pa``."""
        view = memoryview(bytes(data))
        while view:
            base = pg_round_down(pa)
            off = pa - base
            chunk = min(len(view), PGSIZE - off)
            self._page(base)[off:off + chunk] = view[:chunk]
            pa += chunk
            view = view[chunk:]

    def _get_word(self, pa: int) -> int:
        return _WORD.unpack_from(self._page(pa & ~0xFFF), pa & 0xFFF)[0]

    def _set_word(self, pa: int, value: int) -> None:
        _WORD.pack_into(self._page(pa & ~0xFFF), pa & 0xFFF, value & _MASK32)


@dataclass(frozen=True)
class _KernelMapping:
    virt: int
    phys_start: int
    phys_end: int
    perm: int


class PageDirectory:
    """A page directory living in a page of :class:`PhysicalMemory`."""

    def __init__(self, memory: PhysicalMemory, pa: int, data_addr: int) -> None:
        self.memory = memory
        self.pa = pa
        self.data_addr = data_addr

    def _pte(self, pte: int) -> int:
        return self.memory._get_word(pte)

    def _set_pte(self, pte: int, value: int) -> None:
        self.memory._set_word(pte, value)

    def walk(self, va: int, alloc: bool = False) -> Optional[int]:
        """Physical address of the page table entry for ``va``.

        Without ``alloc`` a missing page table gives None; with it a new
        table is allocated.
        """
        pde_pa = self.pa + 4 * pdx(va)
        pde = self.memory._get_word(pde_pa)
        if pde & PTE_P:
            table = pte_addr(pde)
        else:
            if not alloc:
                return None
            table = self.memory.kalloc()
            self.memory._set_word(pde_pa, table | PTE_P | PTE_W | PTE_U)
        return table + 4 * ptx(va)

    def map_pages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map the pages covering ``va .. va+size`` onto ``pa`` onward."""
        if size <= 0:
            raise VmError("map_pages: empty range")
        a = pg_round_down(va)
        last = pg_round_down((va + size - 1) & _MASK32)
        while True:
            pte = self.walk(a, True)
            if self._pte(pte) & PTE_P:
                raise VmError("remap")
            self._set_pte(pte, pa | perm | PTE_P)
            if a == last:
                break
            a = (a + PGSIZE) & _MASK32
            pa = (pa + PGSIZE) & _MASK32

    def init_user(self, code: bytes) -> None:
        """Load ``code`` (less than a page) into a fresh page at 0x1000."""
        if len(code) >= PGSIZE:
            raise VmError("inituvm: more than a page")
        mem = self.memory.kalloc()
        self.map_pages(USER_CODE_ADDR, PGSIZE, mem, PTE_W | PTE_U)
        self.memory.write(mem, code)

    def alloc_user(self, oldvlimit: int, newvlimit: int) -> int:
        """Grow user memory from ``oldvlimit`` to ``newvlimit``; return the new limit."""
        if newvlimit >= KERNBASE:
            raise VmError("allocuvm: limit reaches kernel space")
        if newvlimit < oldvlimit:
            return oldvlimit
        a = pg_round_up(oldvlimit)
        while a < newvlimit:
            try:
                mem = self.memory.kalloc()
            except OutOfMemory:
                self.dealloc_user(newvlimit, oldvlimit)
                raise
            try:
                self.map_pages(a, PGSIZE, mem, PTE_W | PTE_U)
            except OutOfMemory:
                self.dealloc_user(newvlimit, oldvlimit)
                self.memory.kfree(mem)
                raise
            a += PGSIZE
        return newvlimit

    def dealloc_user(self, oldvlimit: int, newvlimit: int) -> int:
        """Free user pages from ``newvlimit`` up to ``oldvlimit``; return the new limit."""
        if newvlimit >= oldvlimit:
            return oldvlimit
        a = pg_round_up(newvlimit)
        while a < oldvlimit:
            pte = self.walk(a)
            if pte is None:
                a = ((pdx(a) + 1) << PDXSHIFT) - PGSIZE
            else:
                value = self._pte(pte)
                if value & PTE_P:
                    pa = pte_addr(value)
                    if pa == 0:
                        raise VmError("kfree")
                    self.memory.kfree(pa)
                    self._set_pte(pte, 0)
            a += PGSIZE
        return newvlimit

    def free(self) -> None:
        """Free all user pages, every page table and the directory itself."""
        self.dealloc_user(KERNBASE, 0)
        for i in range(NPDENTRIES):
            pde = self.memory._get_word(self.pa + 4 * i)
            if pde & PTE_P:
                self.memory.kfree(pte_addr(pde))
        self.memory.kfree(self.pa)

    def clear_user(self, uva: int) -> None:
        """Make the page at ``uva`` inaccessible to user code."""
        pte = self.walk(uva)
        if pte is None:
            raise VmError("clearpteu")
        self._set_pte(pte, self._pte(pte) & ~PTE_U)

    def copy(self, vlimit: int) -> PageDirectory:
        """A new directory holding copies of the user pages below ``vlimit``."""
        child = setup_kvm(self.memory, self.data_addr)
        try:
            for va in range(PGSIZE, vlimit, PGSIZE):
                pte = self.walk(va)
                if pte is None:
                    raise VmError("copyuvm: pte should exist")
                value = self._pte(pte)
                if not value & PTE_P:
                    raise VmError("copyuvm: page not present")
                mem = self.memory.kalloc()
                self.memory.write(mem, self.memory.read(pte_addr(value), PGSIZE))
                try:
                    child.map_pages(va, PGSIZE, mem, pte_flags(value))
                except VmError:
                    self.memory.kfree(mem)
                    raise
        except VmError:
            child.free()
            raise
        return child

    def uva2ka(self, uva: int) -> Optional[int]:
        """Physical address of the user page holding ``uva``, or None."""
        pte = self.walk(uva)
        if pte is None:
            return None
        value = self._pte(pte)
        if not value & PTE_P or not value & PTE_U:
            return None
        return pte_addr(value)

    def copyout(self, va: int, data: bytes) -> None:
        """Copy ``data`` to user address ``va``."""
        view = memoryview(bytes(data))
        while view:
            va0 = pg_round_down(va)
            pa0 = self.uva2ka(va0)
            if pa0 is None:
                raise VmError(f"copyout: {va0:#x} is not user accessible")
            n = min(PGSIZE - (va - va0), len(view))
            self.memory.write(pa0 + (va - va0), view[:n])
            view = view[n:]
            va = va0 + PGSIZE

    def _set_writable(self, addr: int, length: int, vlimit: int, writable: bool) -> None:
        if addr % PGSIZE:
            raise VmError("addr is not page aligned")
        if addr + length * PGSIZE > vlimit:
            raise VmError("addr points to a region that is not currently a part of the address space")
        if length <= 0:
            raise VmError("len is less than or equal to zero")
        for va in range(addr, addr + length * PGSIZE, PGSIZE):
            pte = self.walk(va)
            value = None if pte is None else self._pte(pte)
            if value is None or not value & PTE_U or not value & PTE_P:
                raise VmError(f"page {va:#x} is not a present user page")
            self._set_pte(pte, value | PTE_W if writable else value & ~PTE_W)

    def protect(self, addr: int, length: int, vlimit: int) -> None:
        """Make ``length`` user pages from ``addr`` read-only."""
        self._set_writable(addr, length, vlimit, False)

    def unprotect(self, addr: int, length: int, vlimit: int) -> None:
        """Make ``length`` user pages from ``addr`` writable again."""
        self._set_writable(addr, length, vlimit, True)


def setup_kvm(memory: PhysicalMemory, data_addr: int) -> PageDirectory:
    """A new page directory holding the kernel mappings.

    ``data_addr`` is the kernel virtual address where kernel data begins.
    """
    if not KERNLINK < data_addr < p2v(PHYSTOP):
        raise ValueError("data address must lie between kernel link and top of memory")
    if p2v(PHYSTOP) > DEVSPACE:
        raise VmError("PHYSTOP too high")
    kmap = (
        _KernelMapping(KERNBASE, 0, EXTMEM, PTE_W),
        _KernelMapping(KERNLINK, v2p(KERNLINK), v2p(data_addr), 0),
        _KernelMapping(data_addr, v2p(data_addr), PHYSTOP, PTE_W),
        _KernelMapping(DEVSPACE, DEVSPACE, 0, PTE_W),
    )
    pgdir = PageDirectory(memory, memory.kalloc(), data_addr)
    try:
        for k in kmap:
            pgdir.map_pages(k.virt, (k.phys_end - k.phys_start) & _MASK32, k.phys_start, k.perm)
    except OutOfMemory:
        pgdir.free()
        raise
    return pgdir