import pytest

from kernsim.mmu import (
    DEVSPACE,
    EXTMEM,
    KERNBASE,
    KERNLINK,
    PGSIZE,
    PTE_P,
    PTE_U,
    PTE_W,
    p2v,
    pte_addr,
    pte_flags,
)
from kernsim.vm import OutOfMemory, PageDirectory, PhysicalMemory, VmError, setup_kvm

START = 0x400000
DATA = p2v(0x200000)


def _memory(pages):
    return PhysicalMemory(START, START + pages * PGSIZE)


def _pte_value(pgdir, va):
    pte = pgdir.walk(va)
    return int.from_bytes(pgdir.memory.read(pte, 4), "little")


@pytest.fixture
def memory():
    return _memory(200)


@pytest.fixture
def pgdir(memory):
    return setup_kvm(memory, DATA)


def test_kalloc_and_kfree_track_free_pages():
    mem = _memory(4)
    a = mem.kalloc()
    b = mem.kalloc()
    assert mem.free_pages() == 2
    assert a != b
    mem.kfree(a)
    assert mem.free_pages() == 3
    assert mem.kalloc() == a


def test_kalloc_exhaustion_raises():
    mem = _memory(2)
    mem.kalloc()
    mem.kalloc()
    with pytest.raises(OutOfMemory):
        mem.kalloc()


def test_kfree_rejects_bad_addresses():
    mem = _memory(2)
    pa = mem.kalloc()
    with pytest.raises(VmError):
        mem.kfree(pa + 1)
    with pytest.raises(VmError):
        mem.kfree(pa + PGSIZE)
    mem.kfree(pa)
    with pytest.raises(VmError):
        mem.kfree(pa)


def test_read_write_round_trip_across_pages():
    mem = _memory(4)
    a = mem.kalloc()
    b = mem.kalloc()
    assert b == a + PGSIZE
    mem.write(a + PGSIZE - 3, b"abcdef")
    assert mem.read(a + PGSIZE - 3, 6) == b"abcdef"
    assert mem.read(b, 3) == b"def"


def test_read_unallocated_raises():
    mem = _memory(4)
    with pytest.raises(VmError):
        mem.read(START, 1)


def test_kernel_low_memory_mapping(pgdir):
    value = _pte_value(pgdir, KERNBASE)
    assert pte_addr(value) == 0
    assert pte_flags(value) == PTE_P | PTE_W
    top = _pte_value(pgdir, KERNBASE + EXTMEM - PGSIZE)
    assert pte_addr(top) == EXTMEM - PGSIZE


def test_kernel_text_is_read_only(pgdir):
    value = _pte_value(pgdir, KERNLINK)
    assert pte_addr(value) == EXTMEM
    assert pte_flags(value) == PTE_P


def test_kernel_data_and_devices(pgdir):
    data = _pte_value(pgdir, DATA)
    assert pte_addr(data) == DATA - KERNBASE
    assert data & PTE_W
    dev = _pte_value(pgdir, DEVSPACE)
    assert pte_addr(dev) == DEVSPACE
    last = _pte_value(pgdir, 0xFFFFF000)
    assert pte_addr(last) == 0xFFFFF000


def test_kernel_pages_not_user_accessible(pgdir):
    assert pgdir.uva2ka(KERNBASE) is None
    assert pgdir.uva2ka(DATA) is None


def test_walk_without_alloc_on_unmapped(pgdir):
    assert pgdir.walk(0x1000) is None


def test_setup_kvm_out_of_memory_releases_pages():
    mem = _memory(20)
    before = mem.free_pages()
    with pytest.raises(OutOfMemory):
        setup_kvm(mem, DATA)
    assert mem.free_pages() == before


def test_setup_kvm_rejects_bad_data_address(memory):
    with pytest.raises(ValueError):
        setup_kvm(memory, KERNLINK)


def test_map_pages_remap_raises(pgdir, memory):
    pa = memory.kalloc()
    pgdir.map_pages(0x5000, PGSIZE, pa, PTE_U | PTE_W)
    with pytest.raises(VmError):
        pgdir.map_pages(0x5000, PGSIZE, pa, PTE_U | PTE_W)


def test_init_user_loads_code(pgdir, memory):
    pgdir.init_user(b"hello")
    pa = pgdir.uva2ka(0x1000)
    assert memory.read(pa, 6) == b"hello\0"
    assert _pte_value(pgdir, 0x1000) & (PTE_U | PTE_W) == PTE_U | PTE_W


def test_init_user_too_large(pgdir):
    with pytest.raises(VmError):
        pgdir.init_user(bytes(PGSIZE))


def test_alloc_user_and_copyout(pgdir, memory):
    limit = pgdir.alloc_user(0, 3 * PGSIZE)
    assert limit == 3 * PGSIZE
    pgdir.copyout(PGSIZE - 2, b"spanning")
    assert memory.read(pgdir.uva2ka(0) + PGSIZE - 2, 2) == b"sp"
    assert memory.read(pgdir.uva2ka(PGSIZE), 6) == b"anning"


def test_alloc_user_shrinking_returns_old(pgdir):
    assert pgdir.alloc_user(2 * PGSIZE, PGSIZE) == 2 * PGSIZE


def test_alloc_user_rejects_kernel_space(pgdir):
    with pytest.raises(VmError):
        pgdir.alloc_user(0, KERNBASE)


def test_alloc_user_out_of_memory_rolls_back():
    mem = _memory(80)
    pgdir = setup_kvm(mem, DATA)
    before = mem.free_pages()
    with pytest.raises(OutOfMemory):
        pgdir.alloc_user(0, 100 * PGSIZE)
    assert all(pgdir.uva2ka(va) is None for va in range(0, 100 * PGSIZE, PGSIZE))
    # Only the page table allocated on the way stays in use.
    assert mem.free_pages() == before - 1


def test_dealloc_user_frees_pages(pgdir, memory):
    pgdir.alloc_user(0, 4 * PGSIZE)
    before = memory.free_pages()
    assert pgdir.dealloc_user(4 * PGSIZE, PGSIZE) == PGSIZE
    assert memory.free_pages() == before + 3
    assert pgdir.uva2ka(0) is not None
    assert pgdir.uva2ka(PGSIZE) is None


def test_free_returns_every_page():
    mem = _memory(200)
    before = mem.free_pages()
    pgdir = setup_kvm(mem, DATA)
    pgdir.alloc_user(0, 5 * PGSIZE)
    pgdir.free()
    assert mem.free_pages() == before


def test_copyout_to_unmapped_raises(pgdir):
    with pytest.raises(VmError):
        pgdir.copyout(0x8000, b"x")


def test_clear_user_hides_page(pgdir):
    pgdir.alloc_user(0, 2 * PGSIZE)
    pgdir.clear_user(0)
    assert pgdir.uva2ka(0) is None
    with pytest.raises(VmError):
        pgdir.copyout(0, b"x")
    assert pgdir.uva2ka(PGSIZE) is not None


def test_clear_user_without_table_raises(pgdir):
    with pytest.raises(VmError):
        pgdir.clear_user(0x1000)


def test_copy_duplicates_user_memory(pgdir, memory):
    pgdir.init_user(b"parent")
    child = pgdir.copy(2 * PGSIZE)
    assert isinstance(child, PageDirectory)
    child_pa = child.uva2ka(0x1000)
    assert child_pa != pgdir.uva2ka(0x1000)
    assert memory.read(child_pa, 6) == b"parent"
    pgdir.copyout(0x1000, b"change")
    assert memory.read(child_pa, 6) == b"parent"
    assert _pte_value(child, 0x1000) & 0xFFF == _pte_value(pgdir, 0x1000) & 0xFFF


def test_copy_missing_page_releases_child():
    mem = _memory(200)
    pgdir = setup_kvm(mem, DATA)
    pgdir.init_user(b"x")
    before = mem.free_pages()
    with pytest.raises(VmError):
        pgdir.copy(3 * PGSIZE)
    assert mem.free_pages() == before


def test_protect_and_unprotect(pgdir, memory):
    pgdir.init_user(b"code")
    pgdir.protect(0x1000, 1, 2 * PGSIZE)
    pte = pgdir.walk(0x1000)
    protected = int.from_bytes(memory.read(pte, 4), "little")
    assert not protected & PTE_W
    assert protected & (PTE_P | PTE_U) == PTE_P | PTE_U
    assert memory.read(pgdir.uva2ka(0x1000), 4) == b"code"
    pgdir.unprotect(0x1000, 1, 2 * PGSIZE)
    unprotected = int.from_bytes(memory.read(pgdir.walk(0x1000), 4), "little")
    assert unprotected & PTE_W
    assert pte_addr(unprotected) == pte_addr(protected)


@pytest.mark.parametrize(
    "addr, length, vlimit",
    [
        (0x1001, 1, 2 * PGSIZE),
        (0x1000, 2, 2 * PGSIZE),
        (0x1000, 0, 2 * PGSIZE),
        (0x2000, 1, 3 * PGSIZE),
    ],
)
def test_protect_errors(pgdir, addr, length, vlimit):
    pgdir.init_user(b"code")
    with pytest.raises(VmError):
        pgdir.protect(addr, length, vlimit)
    with pytest.raises(VmError):
        pgdir.unprotect(addr, length, vlimit)