"""A first-fit free-list allocator over a growable address range."""

from __future__ import annotations

from typing import Optional

from .mmu import KERNBASE

HEADER_SIZE = 8
MIN_UNITS = 4096
_BASE = 0  # address of the empty sentinel header


class Heap:
    """Hands out addresses from a region that grows upward from ``start``.

    Every block is preceded by a header of ``HEADER_SIZE`` bytes and sized in
    header units. Free blocks form a circular list ordered by address and are
    merged with their neighbours when freed.
    """

    def __init__(self, start: int = 0x4000, limit: int = KERNBASE) -> None:
        if start <= _BASE or start % HEADER_SIZE:
            raise ValueError("start must be a positive multiple of the header size")
        if limit < start:
            raise ValueError("limit lies below start")
        self._brk = start
        self._limit = limit
        self._size: dict[int, int] = {}
        self._ptr: dict[int, int] = {}
        self._allocated: set[int] = set()
        self._freep: Optional[int] = None

    def _sbrk(self, n: int) -> Optional[int]:
        if self._brk + n > self._limit:
            return None
        old = self._brk
        self._brk += n
        return old

    def _morecore(self, nu: int) -> Optional[int]:
        nu = max(nu, MIN_UNITS)
        hp = self._sbrk(nu * HEADER_SIZE)
        if hp is None:
            return None
        self._size[hp] = nu
        self._allocated.add(hp)
        self.free(hp + HEADER_SIZE)
        return self._freep

    def malloc(self, nbytes: int) -> int:
        """Address of a new block of at least ``nbytes`` bytes."""
        if nbytes < 0:
            raise ValueError("negative size")
        nunits = (nbytes + HEADER_SIZE - 1) // HEADER_SIZE + 1
        if self._freep is None:
            self._ptr[_BASE] = _BASE
            self._size[_BASE] = 0
            self._freep = _BASE
        prevp = self._freep
        p = self._ptr[prevp]
        while True:
            if self._size[p] >= nunits:
                if self._size[p] == nunits:
                    self._ptr[prevp] = self._ptr.pop(p)
                else:
                    self._size[p] -= nunits
                    p += self._size[p] * HEADER_SIZE
                    self._size[p] = nunits
                self._freep = prevp
                self._allocated.add(p)
                return p + HEADER_SIZE
            if p == self._freep:
                p = self._morecore(nunits)
                if p is None:
                    raise MemoryError(f"cannot allocate {nbytes} bytes")
            prevp = p
            p = self._ptr[p]

    def free(self, ap: int) -> None:
        """Return the block at ``ap`` to the free list."""
        bp = ap - HEADER_SIZE
        if bp not in self._allocated:
            raise ValueError(f"{ap:#x} is not an allocated block")
        self._allocated.remove(bp)
        ptr, size = self._ptr, self._size

        p = self._freep
        while not (p < bp < ptr[p]):
            if p >= ptr[p] and (bp > p or bp < ptr[p]):
                break
            p = ptr[p]

        nxt = ptr[p]
        if bp + size[bp] * HEADER_SIZE == nxt:
            size[bp] += size.pop(nxt)
            ptr[bp] = ptr.pop(nxt)
        else:
            ptr[bp] = nxt
        if p + size[p] * HEADER_SIZE == bp:
            size[p] += size.pop(bp)
            ptr[p] = ptr.pop(bp)
        else:
            ptr[p] = bp
        self._freep = p

    def free_blocks(self) -> list[tuple[int, int]]:
        """The free list as ``(header address, units)`` pairs in address order."""
        if self._freep is None:
            return []
        blocks = []
        p = self._ptr[_BASE]
        while p != _BASE:
            blocks.append((p, self._size[p]))
            p = self._ptr[p]
        return blocks