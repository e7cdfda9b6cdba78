import threading

import pytest

from kernsim.locks import Cpu, LockError, SleepLock, SpinLock


def test_push_and_pop_cli_restore_interrupts():
    cpu = Cpu()
    cpu.push_cli()
    cpu.push_cli()
    assert cpu.interrupts is False
    assert cpu.ncli == 2
    cpu.pop_cli()
    assert cpu.interrupts is False
    cpu.pop_cli()
    assert cpu.interrupts is True
    assert cpu.ncli == 0


def test_push_cli_keeps_interrupts_off_if_they_were_off():
    cpu = Cpu(interrupts=False)
    cpu.push_cli()
    cpu.pop_cli()
    assert cpu.interrupts is False


def test_pop_cli_while_interruptible_raises():
    cpu = Cpu()
    with pytest.raises(LockError, match="interruptible"):
        cpu.pop_cli()


def test_pop_cli_underflow_raises():
    cpu = Cpu(interrupts=False)
    with pytest.raises(LockError, match="popcli"):
        cpu.pop_cli()


def test_spinlock_acquire_release():
    cpu = Cpu()
    lock = SpinLock("test")
    lock.acquire(cpu)
    assert lock.holding(cpu)
    assert lock.locked
    assert cpu.interrupts is False
    lock.release(cpu)
    assert not lock.holding(cpu)
    assert not lock.locked
    assert lock.cpu is None
    assert cpu.interrupts is True
    assert cpu.ncli == 0


def test_spinlock_double_acquire_raises():
    cpu = Cpu()
    lock = SpinLock()
    lock.acquire(cpu)
    with pytest.raises(LockError, match="acquire"):
        lock.acquire(cpu)
    assert lock.holding(cpu)
    lock.release(cpu)
    assert cpu.ncli == 0


def test_spinlock_release_without_holding_raises():
    with pytest.raises(LockError, match="release"):
        SpinLock().release(Cpu())


def test_spinlock_not_held_by_other_cpu():
    a, b = Cpu(0), Cpu(1)
    lock = SpinLock()
    lock.acquire(a)
    assert not lock.holding(b)
    with pytest.raises(LockError):
        lock.release(b)
    lock.release(a)
    assert not lock.locked


def test_spinlock_contention_between_threads():
    lock = SpinLock("shared")
    first, second = Cpu(0), Cpu(1)
    got = threading.Event()
    lock.acquire(first)

    def other():
        lock.acquire(second)
        got.set()
        lock.release(second)

    t = threading.Thread(target=other)
    t.start()
    assert not got.wait(0.05)
    lock.release(first)
    t.join(2)
    assert got.is_set()
    assert not lock.locked


def test_sleeplock_holding():
    lock = SleepLock("disk")
    lock.acquire(5)
    assert lock.holding(5)
    assert not lock.holding(6)
    assert lock.pid == 5
    lock.release()
    assert not lock.holding(5)
    assert lock.pid == 0
    assert lock.locked is False


def test_sleeplock_blocks_until_released():
    lock = SleepLock()
    lock.acquire(1)
    acquired = threading.Event()

    def waiter():
        lock.acquire(2)
        acquired.set()

    t = threading.Thread(target=waiter)
    t.start()
    assert not acquired.wait(0.05)
    lock.release()
    t.join(2)
    assert acquired.is_set()
    assert lock.holding(2)