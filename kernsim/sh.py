"""Command-line parser for the shell: tokens and a command tree."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from .abi import OpenFlag

WHITESPACE = " \t\r\n\v"
SYMBOLS = "<|>&;()"
MAXARGS = 10

WORD = "a"
APPEND = "+"


class ShellSyntaxError(ValueError):
    """Raised when a command line cannot be parsed."""


@dataclass(frozen=True)
class Token:
    """A lexical token: ``kind`` is ``"a"`` for a word, ``"+"`` for ``>>``,
    otherwise the symbol character itself."""

    kind: str
    text: str


@dataclass
class ExecCmd:
    argv: list[str] = field(default_factory=list)


@dataclass
class RedirCmd:
    cmd: "Command"
    file: str
    mode: OpenFlag
    fd: int


@dataclass
class PipeCmd:
    left: "Command"
    right: "Command"


@dataclass
class ListCmd:
    left: "Command"
    right: "Command"


@dataclass
class BackCmd:
    cmd: "Command"


Command = Union[ExecCmd, RedirCmd, PipeCmd, ListCmd, BackCmd]


class _Scanner:
    def __init__(self, line: str) -> None:
        end = line.find("\0")
        self.text = line if end < 0 else line[:end]
        self.pos = 0

    def _skip_space(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in WHITESPACE:
            self.pos += 1

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    @property
    def rest(self) -> str:
        return self.text[self.pos:]

    def peek(self, toks: str) -> bool:
        """Skip whitespace; tell whether the next character is one of ``toks``."""
        self._skip_space()
        return not self.at_end and self.text[self.pos] in toks

    def next_token(self) -> Optional[Token]:
        self._skip_space()
        if self.at_end:
            return None
        start = self.pos
        c = self.text[self.pos]
        if c in "|();&<":
            self.pos += 1
            token = Token(c, c)
        elif c == ">":
            self.pos += 1
            if not self.at_end and self.text[self.pos] == ">":
                self.pos += 1
                token = Token(APPEND, ">>")
            else:
                token = Token(">", ">")
        else:
            while (
                not self.at_end
                and self.text[self.pos] not in WHITESPACE
                and self.text[self.pos] not in SYMBOLS
            ):
                self.pos += 1
            token = Token(WORD, self.text[start:self.pos])
        self._skip_space()
        return token


def tokenize(line: str) -> list[Token]:
    """Split a command line into tokens."""
    scanner = _Scanner(line)
    tokens = []
    while (token := scanner.next_token()) is not None:
        tokens.append(token)
    return tokens


def _parse_line(sc: _Scanner) -> Command:
    cmd = _parse_pipe(sc)
    while sc.peek("&"):
        sc.next_token()
        cmd = BackCmd(cmd)
    if sc.peek(";"):
        sc.next_token()
        cmd = ListCmd(cmd, _parse_line(sc))
    return cmd


def _parse_pipe(sc: _Scanner) -> Command:
    cmd = _parse_exec(sc)
    if sc.peek("|"):
        sc.next_token()
        cmd = PipeCmd(cmd, _parse_pipe(sc))
    return cmd


def _parse_redirs(cmd: Command, sc: _Scanner) -> Command:
    while sc.peek("<>"):
        tok = sc.next_token()
        target = sc.next_token()
        if target is None or target.kind != WORD:
            raise ShellSyntaxError("missing file for redirection")
        if tok.kind == "<":
            cmd = RedirCmd(cmd, target.text, OpenFlag.RDONLY, 0)
        else:
            # ">" and ">>" behave the same.
            cmd = RedirCmd(cmd, target.text, OpenFlag.WRONLY | OpenFlag.CREATE, 1)
    return cmd


def _parse_block(sc: _Scanner) -> Command:
    if not sc.peek("("):
        raise ShellSyntaxError("parseblock")
    sc.next_token()
    cmd = _parse_line(sc)
    if not sc.peek(")"):
        raise ShellSyntaxError("syntax - missing )")
    sc.next_token()
    return _parse_redirs(cmd, sc)


def _parse_exec(sc: _Scanner) -> Command:
    if sc.peek("("):
        return _parse_block(sc)
    exe = ExecCmd()
    ret = _parse_redirs(exe, sc)
    while not sc.peek("|)&;"):
        tok = sc.next_token()
        if tok is None:
            break
        if tok.kind != WORD:
            raise ShellSyntaxError("syntax")
        exe.argv.append(tok.text)
        if len(exe.argv) >= MAXARGS:
            raise ShellSyntaxError("too many args")
        ret = _parse_redirs(ret, sc)
    return ret


def parse_command(line: str) -> Command:
    """Parse a whole command line into a command tree."""
    sc = _Scanner(line)
    cmd = _parse_line(sc)
    sc.peek("")
    if not sc.at_end:
        raise ShellSyntaxError(f"leftovers: {sc.rest}")
    return cmd