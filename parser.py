from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from lexer import (
    AsmbParseError,
    InternalError,
    Opcode,
    SourceLocation,
    is_executable,
    lookup_opcode,
    parse_literal,
    tokenize,
    validate,
)


class ResolveError(AsmbParseError):
    pass


class DuplicateRegister(ResolveError):
    pass


class UnknownRegister(ResolveError):
    pass


class InvalidRegisterName(ResolveError):
    pass


class TokenType(IntEnum):
    KEYWORD = 0
    REGISTER = 1
    LITERAL = 2


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: int

    def __str__(self) -> str:
        if self.type == TokenType.KEYWORD:
            return f"KEYWORD({Opcode(self.value).keyword})"
        return f"{self.type.name}({self.value})"


@dataclass
class Instruction:
    tokens: Tuple[Token, ...]
    location: Optional[SourceLocation] = field(default=None, compare=False)

    @property
    def opcode(self) -> Opcode:
        return Opcode(self.tokens[0].value)

    @property
    def operands(self) -> Tuple[Token, ...]:
        return self.tokens[1:]


@dataclass
class Program:
    instructions: List[Instruction]
    register_count: int

    def __len__(self) -> int:
        return len(self.instructions)


_REGNAME_CHARS_RE = re.compile(r"[0-9A-Za-z_]+\Z")


def regname_valid(name: str) -> None:
    if not _REGNAME_CHARS_RE.match(name):
        raise InvalidRegisterName(f"Forbidden characters in register name '{name}'")
    if name[0].isdigit():
        raise InvalidRegisterName(f"Register name '{name}' should not start with a digit")
    if name.startswith("__"):
        raise InvalidRegisterName(
            f"Register name '{name}' should not start with two underscores; that prefix is reserved for generated code"
        )


class RegisterTable:
    """Register names in order of first declaration."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self.names: List[str] = []
        self._index: Dict[str, int] = {}
        for name in names:
            self.declare(name)

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def index_of(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise UnknownRegister(f"'{name}' is an unknown register name in this context") from None

    def declare(self, name: str) -> int:
        regname_valid(name)
        if name in self._index:
            raise DuplicateRegister(f"Register '{name}' already exists")
        index = len(self.names)
        self.names.append(name)
        self._index[name] = index
        return index


def _resolve_value(word: str, table: RegisterTable) -> Token:
    literal = parse_literal(word)
    if literal is not None:
        return Token(TokenType.LITERAL, literal)
    regname_valid(word)
    return Token(TokenType.REGISTER, table.index_of(word))


def resolve(words: Sequence[str], table: RegisterTable) -> Optional[List[Token]]:
    """Turn one line's words into tokens, declaring the register of a ``def``.

    Returns None for blank and comment lines. The table is only modified
    once the whole line has resolved.
    """
    if not is_executable(words):
        return None
    validate(words)
    opcode = lookup_opcode(words[0])
    tokens: List[Token] = [Token(TokenType.KEYWORD, int(opcode))]
    new_name: Optional[str] = None

    for position, (kind, word) in enumerate(zip(opcode.signature, words[1:])):
        if opcode == Opcode.DEF and position == 0:
            regname_valid(word)
            if word in table:
                raise DuplicateRegister(f"Register '{word}' already exists")
            new_name = word
            tokens.append(Token(TokenType.REGISTER, len(table)))
            continue
        if kind == "L":
            literal = parse_literal(word)
            if literal is None:
                raise InternalError(f"Validated literal '{word}' failed to parse")
            tokens.append(Token(TokenType.LITERAL, literal))
            continue
        tokens.append(_resolve_value(word, table))

    if new_name is not None:
        table.declare(new_name)
    return tokens


def compile_line(
    line: str,
    table: RegisterTable,
    *,
    location: Optional[SourceLocation] = None,
) -> Optional[Instruction]:
    try:
        tokens = resolve(tokenize(line), table)
    except AsmbParseError as error:
        if error.location is None:
            error.location = location
        raise
    if tokens is None:
        return None
    return Instruction(tokens=tuple(tokens), location=location)


def compile_source(
    lines: Iterable[str],
    *,
    filename: str = "<string>",
    table: Optional[RegisterTable] = None,
) -> Program:
    table = table if table is not None else RegisterTable()
    instructions: List[Instruction] = []
    for number, line in enumerate(lines, start=1):
        location = SourceLocation(file=filename, line=number, statement=line.strip())
        instruction = compile_line(line, table, location=location)
        if instruction is not None:
            instructions.append(instruction)
    return Program(instructions=instructions, register_count=len(table))
