"""System call argument fetching and dispatch for a user process."""

from __future__ import annotations

import struct
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, TextIO

from .abi import SyscallNumber
from .mmu import KERNBASE

_MASK32 = 0xFFFFFFFF
_INT = struct.Struct("<i")


class SyscallError(Exception):
    """Raised when a system call cannot be carried out; the caller sees -1."""


@dataclass
class TrapFrame:
    """Registers saved on entry to the kernel."""

    edi: int = 0
    esi: int = 0
    ebp: int = 0
    oesp: int = 0
    ebx: int = 0
    edx: int = 0
    ecx: int = 0
    eax: int = 0
    gs: int = 0
    fs: int = 0
    es: int = 0
    ds: int = 0
    trapno: int = 0
    err: int = 0
    eip: int = 0
    cs: int = 0
    eflags: int = 0
    esp: int = 0
    ss: int = 0


@dataclass
class UserProcess:
    """A process whose address space is ``memory`` placed at ``vbase``."""

    pid: int
    name: str = ""
    vbase: int = 0
    memory: bytearray = field(default_factory=bytearray)
    tf: TrapFrame = field(default_factory=TrapFrame)
    killed: bool = False

    @property
    def vlimit(self) -> int:
        return self.vbase + len(self.memory)

    def _grow(self, n: int) -> None:
        new_limit = self.vlimit + n
        if new_limit >= KERNBASE or new_limit < self.vbase:
            raise SyscallError("cannot grow process to that size")
        if n > 0:
            self.memory.extend(bytes(n))
        elif n < 0:
            del self.memory[len(self.memory) + n:]


class _TickCounter:
    """Clock ticks since start, guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def advance(self, n: int = 1) -> int:
        with self._lock:
            self._value = (self._value + n) & _MASK32
            return self._value


TICKS = _TickCounter()


def fetch_int(proc: UserProcess, addr: int) -> int:
    """The 32-bit int at user address ``addr``."""
    vbase, vlimit = proc.vbase, proc.vlimit
    if addr >= vlimit or addr + 4 > vlimit or addr < vbase or addr + 4 <= vbase:
        raise SyscallError(f"address {addr:#x} outside the process")
    return _INT.unpack_from(proc.memory, addr - vbase)[0]


def fetch_str(proc: UserProcess, addr: int) -> bytes:
    """The NUL-terminated string at user address ``addr``, without the NUL."""
    if addr >= proc.vlimit or addr < proc.vbase:
        raise SyscallError(f"address {addr:#x} outside the process")
    start = addr - proc.vbase
    end = proc.memory.find(b"\0", start)
    if end < 0:
        raise SyscallError("string is not terminated")
    return bytes(proc.memory[start:end])


def arg_int(proc: UserProcess, n: int) -> int:
    """The ``n``th 32-bit system call argument."""
    return fetch_int(proc, (proc.tf.esp + 4 + 4 * n) & _MASK32)


def arg_ptr(proc: UserProcess, n: int, size: int) -> int:
    """The ``n``th argument as the address of ``size`` bytes inside the process."""
    i = arg_int(proc, n) & _MASK32
    vbase, vlimit = proc.vbase, proc.vlimit
    if size < 0 or i >= vlimit or i + size > vlimit or i < vbase or i + size <= vbase:
        raise SyscallError("pointer argument outside the process")
    return i


def arg_str(proc: UserProcess, n: int) -> bytes:
    """The ``n``th argument as a NUL-terminated string."""
    return fetch_str(proc, arg_int(proc, n) & _MASK32)


Handler = Callable[[UserProcess], int]


def sys_getpid(proc: UserProcess) -> int:
    return proc.pid


def sys_sbrk(proc: UserProcess) -> int:
    """Grow (or shrink) the process by the first argument; return the old limit."""
    n = arg_int(proc, 0)
    addr = proc.vlimit
    proc._grow(n)
    return addr


def sys_uptime(proc: UserProcess) -> int:
    """Clock ticks since start."""
    return TICKS.value


class SyscallTable:
    """Maps system call numbers to handlers and runs them for a process."""

    def __init__(
        self,
        handlers: Optional[dict[int, Handler]] = None,
        console: Optional[TextIO] = None,
    ) -> None:
        self._handlers: dict[int, Handler] = {}
        self.console = console
        if handlers is None:
            handlers = {
                SyscallNumber.GETPID: sys_getpid,
                SyscallNumber.SBRK: sys_sbrk,
                SyscallNumber.UPTIME: sys_uptime,
            }
        for number, handler in handlers.items():
            self.register(number, handler)

    def register(self, number: int, handler: Handler) -> None:
        if number <= 0:
            raise ValueError("system call numbers start at 1")
        self._handlers[int(number)] = handler

    def dispatch(self, proc: UserProcess) -> int:
        """Run the call named by ``eax``; store and return its result."""
        num = proc.tf.eax
        handler = self._handlers.get(num) if num > 0 else None
        if handler is None:
            console = self.console if self.console is not None else sys.stdout
            print(f"{proc.pid} {proc.name}: unknown sys call {num}", file=console)
            result = -1
        else:
            try:
                result = handler(proc)
            except SyscallError:
                result = -1
        proc.tf.eax = result & _MASK32
        return result