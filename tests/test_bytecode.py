from __future__ import annotations

import struct

import pytest

from bytecode import (
    CorruptHeader,
    HEADER_SIZE,
    InvalidOpcode,
    OrphanToken,
    TruncatedRecord,
    UnknownTokenType,
    decode,
    encode,
)
from parser import compile_source


def test_encode_layout_is_byte_exact():
    program = compile_source(["def a -1", "outn a"])
    data = encode(program)
    assert data[:HEADER_SIZE] == b"\x00\x00\x00\x01" + b"\x00" * 28
    assert data[HEADER_SIZE:] == (
        b"\x00\x00\x00\x00\x00"  # KEYWORD def
        b"\x01\x00\x00\x00\x00"  # REGISTER 0
        b"\x02\xff\xff\xff\xff"  # LITERAL -1
        b"\x00\x00\x00\x00\x0a"  # KEYWORD outn
        b"\x01\x00\x00\x00\x00"  # REGISTER 0
    )


def test_empty_program_is_header_only():
    data = encode(compile_source(["# nothing"]))
    assert data == b"\x00" * 32
    count, program = decode(data)
    assert count == 0
    assert program.instructions == []


@pytest.mark.parametrize(
    "source",
    [
        ["def a 0", "def b 0", "inct b a", "inc a", "outn a"],
        ["def ctr 3", "dec ctr", "outn ctr", "jnz ctr -2"],
        ["def big 2147483647", "def small -2147483648", "cpy big small", "outc 43", "out small"],
    ],
)
def test_round_trip(source):
    program = compile_source(source)
    count, decoded = decode(encode(program))
    assert count == program.register_count
    assert decoded == program


def test_decode_ignores_reserved_header_bytes():
    data = bytearray(encode(compile_source(["def a 1"])))
    data[4:32] = b"\xaa" * 28
    count, program = decode(bytes(data))
    assert count == 1
    assert len(program) == 1


def test_corrupt_header():
    with pytest.raises(CorruptHeader):
        decode(b"\x00" * 31)


@pytest.mark.parametrize("extra", [1, 4, 6, 9])
def test_truncated_record(extra):
    data = encode(compile_source(["def a 1"])) + b"\x00" * extra
    with pytest.raises(TruncatedRecord):
        decode(data)


def test_orphan_token():
    data = struct.pack("!I28x", 1) + struct.pack("!Bi", 1, 0)
    with pytest.raises(OrphanToken):
        decode(data)


def test_unknown_token_type():
    data = struct.pack("!I28x", 0) + struct.pack("!Bi", 7, 0)
    with pytest.raises(UnknownTokenType):
        decode(data)


def test_invalid_opcode():
    data = struct.pack("!I28x", 0) + struct.pack("!Bi", 0, 12)
    with pytest.raises(InvalidOpcode):
        decode(data)


def test_register_indices_are_not_checked_at_decode():
    data = struct.pack("!I28x", 1) + struct.pack("!BiBi", 0, 10, 1, 5)
    count, program = decode(data)
    assert count == 1
    assert program.instructions[0].operands[0].value == 5
