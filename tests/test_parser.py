from __future__ import annotations

import pytest

from lexer import ArityMismatch, InternalError, Opcode
from parser import (
    DuplicateRegister,
    InvalidRegisterName,
    RegisterTable,
    Token,
    TokenType,
    UnknownRegister,
    compile_source,
    regname_valid,
    resolve,
)


def K(op: Opcode) -> Token:
    return Token(TokenType.KEYWORD, int(op))


def R(index: int) -> Token:
    return Token(TokenType.REGISTER, index)


def L(value: int) -> Token:
    return Token(TokenType.LITERAL, value)


def test_resolve_declares_registers_in_order():
    table = RegisterTable()
    assert resolve(["def", "a", "0"], table) == [K(Opcode.DEF), R(0), L(0)]
    assert resolve(["def", "b", "a"], table) == [K(Opcode.DEF), R(1), R(0)]
    assert resolve(["inct", "b", "a"], table) == [K(Opcode.INCT), R(1), R(0)]
    assert resolve(["jnz", "b", "-2"], table) == [K(Opcode.JNZ), R(1), L(-2)]
    assert table.names == ["a", "b"]


def test_resolve_skips_comments():
    table = RegisterTable()
    assert resolve([], table) is None
    assert resolve(["#", "def", "a", "1"], table) is None
    assert len(table) == 0


def test_duplicate_register():
    table = RegisterTable(["a"])
    with pytest.raises(DuplicateRegister):
        resolve(["def", "a", "1"], table)


def test_unknown_register():
    table = RegisterTable()
    with pytest.raises(UnknownRegister):
        resolve(["inc", "nope"], table)


def test_failed_def_leaves_table_unchanged():
    table = RegisterTable(["a"])
    with pytest.raises(UnknownRegister):
        resolve(["def", "b", "missing"], table)
    with pytest.raises(UnknownRegister):
        resolve(["def", "c", "c"], table)
    assert table.names == ["a"]


def test_resolve_validates_first():
    with pytest.raises(ArityMismatch):
        resolve(["def", "a"], RegisterTable())


@pytest.mark.parametrize("name", ["a", "A1", "_x", "snake_case", "x__y", "_"])
def test_legal_register_names(name):
    regname_valid(name)


@pytest.mark.parametrize("name", ["1a", "__x", "__", "a-b", "a.b", "é", "reg!"])
def test_illegal_register_names(name):
    with pytest.raises(InvalidRegisterName):
        regname_valid(name)


def test_invalid_name_reported_before_lookup():
    table = RegisterTable()
    with pytest.raises(InvalidRegisterName):
        resolve(["def", "__tmp", "1"], table)
    with pytest.raises(InvalidRegisterName):
        resolve(["out", "a-b"], table)
    assert len(table) == 0


def test_out_of_range_numeral_is_not_a_literal():
    with pytest.raises(InvalidRegisterName):
        resolve(["out", "99999999999"], RegisterTable())


def test_unparseable_validated_literal_is_internal_error(monkeypatch):
    import parser as parser_module

    monkeypatch.setattr(parser_module, "parse_literal", lambda word: None)
    table = RegisterTable(["a"])
    with pytest.raises(InternalError):
        resolve(["jnz", "a", "-2"], table)


def test_compile_source_skips_blank_lines_and_keeps_locations():
    program = compile_source(["def a 5", "", "# comment", "mul a -2", "outn a"], filename="x.asmb")
    assert program.register_count == 1
    assert len(program) == 3
    assert [ins.opcode for ins in program.instructions] == [Opcode.DEF, Opcode.MUL, Opcode.OUTN]
    assert program.instructions[1].location.line == 4
    assert program.instructions[1].location.statement == "mul a -2"


def test_compile_source_error_carries_line():
    with pytest.raises(UnknownRegister) as exc:
        compile_source(["def a 1", "inc b"], filename="x.asmb")
    assert exc.value.location.line == 2
    assert "x.asmb:2" in str(exc.value)


def test_keywords_are_case_insensitive_registers_are_not():
    table = RegisterTable()
    program = compile_source(["DEF Reg 1", "Inc Reg"], table=table)
    assert program.instructions[1].tokens == (K(Opcode.INC), R(0))
    with pytest.raises(UnknownRegister):
        compile_source(["inc reg"], table=table)
