from __future__ import annotations

import pytest

from lexer import (
    ArityMismatch,
    KEYWORDS,
    Opcode,
    ParameterKindMismatch,
    UnknownKeyword,
    is_executable,
    parse_literal,
    tokenize,
    validate,
)


def test_tokenize_splits_on_whitespace_runs():
    assert tokenize("  inct\ta   -4 \n") == ["inct", "a", "-4"]
    assert tokenize("") == []
    assert tokenize("   \t ") == []


def test_comment_and_blank_lines_are_not_executable():
    assert not is_executable([])
    assert not is_executable(tokenize("# note"))
    assert not is_executable(tokenize("; def a 1"))
    assert not is_executable(tokenize("#def a 1"))
    assert is_executable(tokenize("def a 1 "))


def test_opcode_table_order():
    assert [op.keyword for op in Opcode] == [
        "def", "inc", "inct", "dec", "dect", "mul", "div", "cpy", "jnz", "out", "outn", "outc",
    ]
    assert KEYWORDS["outc"] == Opcode.OUTC == 11
    with pytest.raises(TypeError):
        KEYWORDS["nop"] = Opcode.DEF  # type: ignore[index]


def test_parse_literal_is_32_bit():
    assert parse_literal("42") == 42
    assert parse_literal("-41") == -41
    assert parse_literal("+7") == 7
    assert parse_literal("2147483647") == 2147483647
    assert parse_literal("-2147483648") == -2147483648
    assert parse_literal("2147483648") is None
    assert parse_literal("1_000") is None
    assert parse_literal("abc") is None
    assert parse_literal("-") is None


def test_validate_accepts_valid_lines():
    validate(tokenize("def a 0"))
    validate(tokenize("DEF a b"))
    validate(tokenize("cpy 4 MyRegister"))
    validate(tokenize("jnz qr -2"))
    validate(tokenize("outc 43"))
    validate(tokenize("# anything goes here"))


def test_validate_unknown_keyword():
    with pytest.raises(UnknownKeyword):
        validate(tokenize("mov a 1"))


def test_validate_arity():
    with pytest.raises(ArityMismatch):
        validate(tokenize("inc a 1"))
    with pytest.raises(ArityMismatch):
        validate(tokenize("def a"))


@pytest.mark.parametrize(
    "line",
    [
        "inc 5",
        "def 3 4",
        "cpy a 7",
        "jnz a b",
    ],
)
def test_validate_parameter_kinds(line):
    with pytest.raises(ParameterKindMismatch):
        validate(tokenize(line))
