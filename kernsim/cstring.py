"""NUL-terminated string and memory routines over bytes."""

from __future__ import annotations

from typing import BinaryIO, Optional, Union

BytesLike = Union[bytes, bytearray, memoryview, str]


def _b(s: BytesLike) -> bytes:
    if isinstance(s, str):
        return s.encode("latin-1")
    return bytes(s)


def _cstr(s: BytesLike) -> bytes:
    """The bytes of ``s`` up to (not including) the first NUL."""
    data = _b(s)
    end = data.find(b"\0")
    return data if end < 0 else data[:end]


def _byte_value(c: Union[int, str, bytes]) -> int:
    if isinstance(c, int):
        return c & 0xFF
    data = _b(c)
    if len(data) != 1:
        raise ValueError("expected a single character")
    return data[0]


def memcmp(a: BytesLike, b: BytesLike, n: int) -> int:
    """Difference of the first differing unsigned bytes among the first ``n``."""
    a, b = _b(a), _b(b)
    if n > len(a) or n > len(b):
        raise ValueError("n exceeds buffer length")
    for x, y in zip(a[:n], b[:n]):
        if x != y:
            return x - y
    return 0


def memmove(buf: bytearray, dst: int, src: int, n: int) -> bytearray:
    """Copy ``n`` bytes within ``buf`` from ``src`` to ``dst``; overlap is safe."""
    if n < 0 or min(dst, src) < 0 or max(dst, src) + n > len(buf):
        raise ValueError("range outside buffer")
    buf[dst:dst + n] = buf[src:src + n]
    return buf


def strncmp(p: BytesLike, q: BytesLike, n: int) -> int:
    """Compare at most ``n`` characters of two C strings."""
    p, q = _cstr(p), _cstr(q)
    for i in range(n):
        x = p[i] if i < len(p) else 0
        y = q[i] if i < len(q) else 0
        if x != y or x == 0:
            return x - y
    return 0


def strcmp(p: BytesLike, q: BytesLike) -> int:
    """Compare two C strings."""
    p, q = _cstr(p), _cstr(q)
    return strncmp(p, q, max(len(p), len(q)) + 1)


def strncpy(src: BytesLike, n: int) -> bytes:
    """Exactly ``n`` bytes: the string, then NUL padding; not always terminated."""
    if n <= 0:
        return b""
    return _cstr(src)[:n].ljust(n, b"\0")


def safestrcpy(src: BytesLike, n: int) -> bytes:
    """At most ``n - 1`` characters of the string followed by a NUL."""
    if n <= 0:
        return b""
    return _cstr(src)[: n - 1] + b"\0"


def strlen(s: BytesLike) -> int:
    return len(_cstr(s))


def strchr(s: BytesLike, c: Union[int, str, bytes]) -> Optional[int]:
    """Index of the first ``c`` in the C string, or None."""
    target = _byte_value(c)
    if target == 0:
        return None
    index = _cstr(s).find(bytes([target]))
    return None if index < 0 else index


def atoi(s: BytesLike) -> int:
    """Value of the leading decimal digits, wrapping as a 32-bit int."""
    n = 0
    for ch in _b(s):
        if not 0x30 <= ch <= 0x39:
            break
        n = (n * 10 + ch - 0x30) & 0xFFFFFFFF
    return n - (1 << 32) if n & 0x80000000 else n


def gets(stream: BinaryIO, maximum: int) -> bytes:
    """Read a line of at most ``maximum - 1`` bytes, keeping the terminator."""
    line = bytearray()
    while len(line) + 1 < maximum:
        c = stream.read(1)
        if not c:
            break
        line += c
        if c in (b"\n", b"\r"):
            break
    return bytes(line)