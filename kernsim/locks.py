"""Spin locks with per-CPU interrupt nesting, and sleeping locks for processes."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional


class LockError(RuntimeError):
    """Raised when a lock or the interrupt nesting is misused."""


@dataclass(eq=False)
class Cpu:
    """The per-CPU state that locking depends on.

    ``interrupts`` mirrors the IF bit of the flags register; ``ncli`` counts
    nested :meth:`push_cli` calls and ``intena`` remembers whether interrupts
    were on before the outermost one.
    """

    id: int = 0
    interrupts: bool = True
    ncli: int = 0
    intena: bool = False

    def push_cli(self) -> None:
        """Disable interrupts, counting how deeply this has been nested."""
        was_enabled = self.interrupts
        self.interrupts = False
        if self.ncli == 0:
            self.intena = was_enabled
        self.ncli += 1

    def pop_cli(self) -> None:
        """Undo one :meth:`push_cli`; the last one restores interrupts."""
        if self.interrupts:
            raise LockError("popcli - interruptible")
        self.ncli -= 1
        if self.ncli < 0:
            self.ncli = 0
            raise LockError("popcli")
        if self.ncli == 0 and self.intena:
            self.interrupts = True


class SpinLock:
    """A mutual-exclusion lock held by one CPU at a time."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.cpu: Optional[Cpu] = None
        self._locked = False
        self._atomic = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._locked

    def acquire(self, cpu: Cpu) -> None:
        """Take the lock on ``cpu``, waiting until it is free."""
        cpu.push_cli()
        if self.holding(cpu):
            cpu.pop_cli()
            raise LockError("acquire")
        self._atomic.acquire()
        self._locked = True
        self.cpu = cpu

    def release(self, cpu: Cpu) -> None:
        """Give the lock up; ``cpu`` must be holding it."""
        if not self.holding(cpu):
            raise LockError("release")
        self.cpu = None
        self._locked = False
        self._atomic.release()
        cpu.pop_cli()

    def holding(self, cpu: Cpu) -> bool:
        """Whether ``cpu`` holds this lock."""
        cpu.push_cli()
        try:
            return self._locked and self.cpu is cpu
        finally:
            cpu.pop_cli()


class SleepLock:
    """A long-term lock for processes; waiters sleep instead of spinning."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.locked = False
        self.pid = 0
        self._cond = threading.Condition(threading.Lock())

    def acquire(self, pid: int) -> None:
        """Take the lock for process ``pid``, sleeping while it is held."""
        with self._cond:
            while self.locked:
                self._cond.wait()
            self.locked = True
            self.pid = pid

    def release(self) -> None:
        """Give the lock up and wake every waiter."""
        with self._cond:
            self.locked = False
            self.pid = 0
            self._cond.notify_all()

    def holding(self, pid: int) -> bool:
        """Whether process ``pid`` holds this lock."""
        with self._cond:
            return self.locked and self.pid == pid