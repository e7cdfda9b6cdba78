"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Optional, Sequence

_SPACE = frozenset(b" \r\t\n\v")
_CHUNK = 512


@dataclass(frozen=True)
class Counts:
    lines: int
    words: int
    chars: int


def count(chunks: Iterable[bytes]) -> Counts:
    """Count lines, words and bytes over a sequence of byte chunks."""
    lines = words = chars = 0
    inword = False
    for chunk in chunks:
        chars += len(chunk)
        lines += chunk.count(b"\n")
        for byte in chunk:
            if byte in _SPACE:
                inword = False
            elif not inword:
                words += 1
                inword = True
    return Counts(lines, words, chars)


def _read_chunks(stream: BinaryIO):
    while chunk := stream.read(_CHUNK):
        yield chunk


def wc(stream: BinaryIO, name: str) -> str:
    """The report line for ``stream``: lines, words, bytes and ``name``."""
    c = count(_read_chunks(stream))
    return f"{c.lines} {c.words} {c.chars} {name}"


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    try:
        if not argv:
            print(wc(sys.stdin.buffer, ""))
            return 0
        for path in argv:
            try:
                stream = open(path, "rb")
            except OSError:
                print(f"wc: cannot open {path}")
                return 1
            with stream:
                print(wc(stream, path))
    except OSError:
        print("wc: read error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())