"""Binary bytecode images for compiled programs.

An image has two segments. The header is 32 bytes: the register count as
a big-endian u32 followed by 28 reserved zero bytes. The body is a run of
5-byte token records, each a u8 type tag and a big-endian i32 value.
Instruction boundaries are not stored; every KEYWORD record starts a new
instruction.
"""

from __future__ import annotations
import struct
from typing import List, Tuple

from lexer import AsmbError, Opcode
from parser import Instruction, Program, Token, TokenType


HEADER_SIZE = 32
RECORD_SIZE = 5

_HEADER = struct.Struct("!I28x")
_RECORD = struct.Struct("!Bi")


class DecodeError(AsmbError):
    pass


class CorruptHeader(DecodeError):
    pass


class TruncatedRecord(DecodeError):
    pass


class OrphanToken(DecodeError):
    pass


class UnknownTokenType(DecodeError):
    pass


class InvalidOpcode(DecodeError):
    pass


def encode(program: Program) -> bytes:
    chunks: List[bytes] = [_HEADER.pack(program.register_count)]
    for instruction in program.instructions:
        for token in instruction.tokens:
            chunks.append(_RECORD.pack(int(token.type), token.value))
    return b"".join(chunks)


def decode(data: bytes) -> Tuple[int, Program]:
    if len(data) < HEADER_SIZE:
        raise CorruptHeader(f"Bytecode header needs {HEADER_SIZE} bytes, got {len(data)}")
    body_size = len(data) - HEADER_SIZE
    if body_size % RECORD_SIZE:
        raise TruncatedRecord(
            f"Bytecode body of {body_size} bytes is not a whole number of {RECORD_SIZE}-byte records"
        )
    (register_count,) = _HEADER.unpack_from(data, 0)

    instructions: List[Instruction] = []
    current: List[Token] = []
    for index, (tag, value) in enumerate(_RECORD.iter_unpack(data[HEADER_SIZE:])):
        try:
            token_type = TokenType(tag)
        except ValueError:
            raise UnknownTokenType(f"Unknown token type {tag} in record {index}") from None
        if token_type == TokenType.KEYWORD:
            try:
                Opcode(value)
            except ValueError:
                raise InvalidOpcode(f"Invalid opcode {value} in record {index}") from None
            if current:
                instructions.append(Instruction(tokens=tuple(current)))
            current = [Token(token_type, value)]
            continue
        if not current:
            raise OrphanToken(f"First token is not of type KEYWORD (record {index} is {token_type.name})")
        current.append(Token(token_type, value))
    if current:
        instructions.append(Instruction(tokens=tuple(current)))
    return register_count, Program(instructions=instructions, register_count=register_count)
