# kernsim

A pure-Python model of the core pieces of a small 32-bit Unix-like teaching
kernel and a few of its user-space helpers. It is for exploring how those
pieces work: page tables, descriptors, locks, system call argument checking,
a free-list heap and a shell command parser.

## What is inside

- `kernsim.mmu`: paging constants and helpers (`pdx`, `ptx`, `pgaddr`,
  `pg_round_up`, `pg_round_down`, `pte_addr`, `pte_flags`), kernel address
  translation (`v2p`, `p2v`), the memory layout and system parameters, and
  x86 descriptors: `SegmentDescriptor` and `GateDescriptor`, built with
  `seg`, `seg16` and `make_gate` and turned into 8 bytes with `pack()`.
  Field values that do not fit their bit width raise `ValueError`.
- `kernsim.elf`: `ElfHeader` and `ProgramHeader` with `pack()`,
  `parse_elf_header` (checks the magic number), `parse_program_header`, and
  `ElfHeader.program_headers(data)`, which yields every program header of an
  image. Malformed data raises `ElfError`.
- `kernsim.abi`: `OpenFlag`, `FileType`, the `Stat` record (`pack()` /
  `Stat.unpack(data)`), `SyscallNumber`, `TrapNumber` and `Irq`.
- `kernsim.cstring`: C string and memory routines on bytes: `memcmp`,
  `memmove` (within a `bytearray`, overlap-safe), `strncmp`, `strcmp`,
  `strncpy`, `safestrcpy`, `strlen`, `strchr` (returns an index or `None`),
  `atoi` (wraps as a 32-bit int) and `gets(stream, maximum)`.
- `kernsim.vm`: `PhysicalMemory`, a pool of page frames (`kalloc`, `kfree`,
  `read`, `write`, `free_pages`), and `PageDirectory`, a two-level page table
  stored in that memory. `setup_kvm(memory, data_addr)` builds a directory with
  the kernel mappings; its methods walk and map pages, load initial code at
  0x1000 (`init_user`), grow and shrink user memory (`alloc_user`,
  `dealloc_user`), copy the user part for a child (`copy`), translate user
  addresses (`uva2ka`), copy data out (`copyout`), clear the user bit
  (`clear_user`), make pages read-only or writable (`protect`, `unprotect`)
  and free everything (`free`). Errors raise `VmError`; running out of frames
  raises `OutOfMemory`.
- `kernsim.umalloc`: `Heap`, a first-fit allocator over an address range that
  grows in steps of at least 4096 header units, with `malloc`, `free` (merging
  with neighbours) and `free_blocks()` to inspect the free list. Exhaustion
  raises `MemoryError`; freeing an unknown address raises `ValueError`.
- `kernsim.sh`: the shell's tokenizer and parser. `tokenize(line)` returns
  `Token` objects; `parse_command(line)` builds a tree of `ExecCmd`,
  `RedirCmd`, `PipeCmd`, `ListCmd` and `BackCmd`, and raises
  `ShellSyntaxError` on bad input (including ten or more arguments). `>>` is
  parsed like `>`.
- `kernsim.wc`: `count(chunks)` returns `Counts(lines, words, chars)`;
  `wc(stream, name)` returns the report line; `main(argv=None)` is the command.
- `kernsim.locks`: `Cpu` with nested interrupt disabling (`push_cli`,
  `pop_cli`), `SpinLock` (`acquire`, `release`, `holding`, per CPU) and
  `SleepLock` (`acquire`, `release`, `holding`, per process id). Misuse raises
  `LockError`.
- `kernsim.syscall`: `UserProcess` (a byte array placed at `vbase`) with a
  `TrapFrame`; argument fetchers `fetch_int`, `fetch_str`, `arg_int`,
  `arg_ptr`, `arg_str` that raise `SyscallError` for anything outside the
  process; handlers `sys_getpid`, `sys_sbrk`, `sys_uptime`; and
  `SyscallTable`, which runs the handler named by `eax`, stores the result
  back in `eax`, turns `SyscallError` into -1, and prints a message for an
  unknown call number.

## Installing

```
pip install .
```

## Examples

Parse a shell command line:

```python
from kernsim.sh import parse_command

cmd = parse_command("cat < in.txt | wc > out.txt")
print(cmd)
```

Build a kernel page directory and give a process some memory:

```python
from kernsim.vm import PhysicalMemory, setup_kvm

memory = PhysicalMemory()
pgdir = setup_kvm(memory, data_addr=0x80108000)
pgdir.init_user(b"\x90" * 16)
vlimit = pgdir.alloc_user(0x2000, 0x5000)
```

Allocate from the user heap:

```python
from kernsim.umalloc import Heap

heap = Heap()
block = heap.malloc(100)
heap.free(block)
```

Dispatch a system call:

```python
from kernsim.abi import SyscallNumber
from kernsim.syscall import SyscallTable, UserProcess

proc = UserProcess(pid=7, memory=bytearray(4096))
proc.tf.eax = SyscallNumber.GETPID
print(SyscallTable().dispatch(proc))  # 7
```

## Command line

Count lines, words and bytes of files, or of standard input when no file is
given:

```
kernsim-wc README.md
```

It stops with exit status 1 at the first file it cannot open.

## What it does not do

This is a set of models, not a running kernel. There is no file system, disk
or buffer cache, no process table, scheduler, fork or exec, and no console or
device handling. The shell parser builds command trees but nothing executes
them. `SyscallTable` has handlers only for getpid, sbrk and uptime unless you
register more, and the tick counter only moves when advanced by hand.

## Running the tests

```
pip install .[test]
pytest
```