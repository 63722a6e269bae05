from __future__ import annotations
import re
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence


@dataclass
class SourceLocation:
    file: str
    line: int
    statement: str


class AsmbError(Exception):
    """Base class for toolchain errors."""

    def __init__(self, message: str, *, location: Optional[SourceLocation] = None) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location is None:
            return self.message
        return f"{self.message} at {self.location.file}:{self.location.line}"


class AsmbParseError(AsmbError):
    """Raised when a source line cannot be compiled."""


class ValidationError(AsmbParseError):
    pass


class UnknownKeyword(ValidationError):
    pass


class ArityMismatch(ValidationError):
    pass


class ParameterKindMismatch(ValidationError):
    pass


class InternalError(AsmbError):
    """Raised when an invariant the toolchain itself guarantees is broken."""


class Opcode(IntEnum):
    DEF = 0
    INC = 1
    INCT = 2
    DEC = 3
    DECT = 4
    MUL = 5
    DIV = 6
    CPY = 7
    JNZ = 8
    OUT = 9
    OUTN = 10
    OUTC = 11

    @property
    def keyword(self) -> str:
        return self.name.lower()

    @property
    def signature(self) -> str:
        return SIGNATURES[self]


# R = register name, L = integer literal, B = either
SIGNATURES: Mapping[Opcode, str] = MappingProxyType({
    Opcode.DEF: "RB",
    Opcode.INC: "R",
    Opcode.INCT: "RB",
    Opcode.DEC: "R",
    Opcode.DECT: "RB",
    Opcode.MUL: "RB",
    Opcode.DIV: "RB",
    Opcode.CPY: "BR",
    Opcode.JNZ: "BL",
    Opcode.OUT: "B",
    Opcode.OUTN: "B",
    Opcode.OUTC: "B",
})

KEYWORDS: Mapping[str, Opcode] = MappingProxyType({op.keyword: op for op in Opcode})

COMMENT_MARKERS = ("#", ";")

INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1

_LITERAL_RE = re.compile(r"[+-]?[0-9]+\Z")


def tokenize(line: str) -> List[str]:
    return line.split()


def is_executable(words: Sequence[str]) -> bool:
    """Blank lines and lines whose first word starts with a comment marker do nothing."""
    if not words:
        return False
    return not words[0].startswith(COMMENT_MARKERS)


def parse_literal(word: str) -> Optional[int]:
    """Return the 32-bit value of ``word``, or None when it is not an integer literal."""
    if not _LITERAL_RE.match(word):
        return None
    value = int(word)
    if value < INT32_MIN or value > INT32_MAX:
        return None
    return value


def is_literal(word: str) -> bool:
    return parse_literal(word) is not None


def lookup_opcode(word: str) -> Opcode:
    try:
        return KEYWORDS[word.lower()]
    except KeyError:
        raise UnknownKeyword(f"Unknown keyword '{word}'") from None


def validate(words: Sequence[str]) -> None:
    """Check keyword, parameter count and parameter kinds of one line.

    Non-executable lines are accepted as-is.
    """
    if not is_executable(words):
        return
    opcode = lookup_opcode(words[0])
    rule = opcode.signature
    params = words[1:]
    if len(params) != len(rule):
        raise ArityMismatch(
            f"'{opcode.keyword}' expects {len(rule)} parameter(s), received {len(params)}"
        )
    for kind, word in zip(rule, params):
        literal = is_literal(word)
        if (literal and kind == "R") or (not literal and kind == "L"):
            raise ParameterKindMismatch(
                f"Parameter '{word}' does not comply with the parameter rules of keyword '{opcode.keyword}' ({kind})"
            )
