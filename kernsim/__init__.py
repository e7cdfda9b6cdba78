"""Models of a small Unix-like teaching kernel: paging, descriptors, ELF headers,
locks, system call dispatch, a user heap, a shell parser and wc."""

__version__ = "0.1.0"

__all__ = [
    "abi",
    "cstring",
    "elf",
    "locks",
    "mmu",
    "sh",
    "syscall",
    "umalloc",
    "vm",
    "wc",
]