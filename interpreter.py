from __future__ import annotations
import json
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from lexer import INT32_MAX, INT32_MIN, AsmbError, Opcode, SourceLocation
from parser import Instruction, Program, Token, TokenType


IP_MAX = (1 << 32) - 1
MAX_REGISTERS = 1 << 20
MAX_CODEPOINT = 0x10FFFF


def _wrap_i32(value: int) -> int:
    return ((value - INT32_MIN) & 0xFFFFFFFF) + INT32_MIN


class AsmbRuntimeError(AsmbError):
    """Raised for runtime faults."""

    fatal = False

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message, location=location)
        self.rule = rule
        self.ip: Optional[int] = None
        self.step_index: Optional[int] = None


class RegisterOutOfRange(AsmbRuntimeError):
    # The resolver guarantees every register has a slot, so hitting this
    # means the program and the store disagree.
    fatal = True


class InvalidCodepoint(AsmbRuntimeError):
    pass


class DivisionError(AsmbRuntimeError):
    pass


class PointerUnderflow(AsmbRuntimeError):
    pass


class PointerOverflow(AsmbRuntimeError):
    pass


class MalformedInstruction(AsmbRuntimeError):
    pass


class StoreTooLarge(AsmbRuntimeError):
    pass


class RegisterStore:
    """Signed 32-bit register values addressed by register index."""

    def __init__(self, size: int = 0) -> None:
        if size > MAX_REGISTERS:
            raise StoreTooLarge(f"Register store of {size} slots exceeds the limit of {MAX_REGISTERS}")
        self.values: NDArray[np.int32] = np.zeros(size, dtype=np.int32)

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def _check(self, index: int) -> None:
        if index < 0 or index >= len(self):
            raise RegisterOutOfRange(
                f"Register index {index} is outside the register store (size {len(self)})"
            )

    def get(self, index: int) -> int:
        self._check(index)
        return int(self.values[index])

    def set(self, index: int, value: int) -> None:
        self._check(index)
        self.values[index] = _wrap_i32(value)

    def append_slot(self) -> int:
        if len(self) >= MAX_REGISTERS:
            raise StoreTooLarge(f"Register store is full ({MAX_REGISTERS} slots)")
        self.values = np.append(self.values, np.int32(0))
        return len(self) - 1

    def snapshot(self, names: Optional[Sequence[str]] = None) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for index, value in enumerate(self.values.tolist()):
            name = names[index] if names is not None and index < len(names) else f"r{index}"
            out[name] = value
        return out


class Status(Enum):
    RUNNING = "running"
    HALTED = "halted"
    FAILED = "failed"


@dataclass
class InterpreterState:
    store: RegisterStore
    ip: int = 0
    status: Status = Status.RUNNING


@dataclass
class StepEntry:
    step_index: int
    ip: int
    opcode: Opcode
    source_location: Optional[SourceLocation]
    register_snapshot: Optional[Dict[str, int]]


class StepLogger:
    """Counts executed steps and remembers the latest one.

    Every entry is kept only in verbose mode, so unbounded loops stay cheap.
    """

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StepEntry] = []
        self.count = 0
        self.last: Optional[StepEntry] = None

    def record(
        self,
        *,
        ip: int,
        opcode: Opcode,
        location: Optional[SourceLocation],
        register_snapshot: Optional[Dict[str, int]] = None,
    ) -> StepEntry:
        entry = StepEntry(
            step_index=self.count,
            ip=ip,
            opcode=opcode,
            source_location=location,
            register_snapshot=register_snapshot,
        )
        if self.verbose:
            self.entries.append(entry)
        self.last = entry
        self.count += 1
        return entry


# Returns the new instruction pointer when the handler jumped, else None.
Handler = Callable[[Tuple[Token, ...]], Optional[int]]


class Interpreter:
    def __init__(
        self,
        *,
        register_count: int = 0,
        filename: str = "<string>",
        verbose: bool = False,
        register_names: Optional[List[str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.filename = filename
        self.verbose = verbose
        # Shared with the REPL's register table so new names show up in snapshots.
        self.register_names = register_names
        self.output_sink = output_sink or (lambda text: print(text, end="", flush=True))
        self.state = InterpreterState(store=RegisterStore(register_count))
        self.logger = StepLogger(verbose=verbose)
        self.program: Optional[Program] = None

        self.handlers: Dict[Opcode, Handler] = {
            Opcode.DEF: self._def,
            Opcode.INC: self._inc,
            Opcode.INCT: self._inct,
            Opcode.DEC: self._dec,
            Opcode.DECT: self._dect,
            Opcode.MUL: self._mul,
            Opcode.DIV: self._div,
            Opcode.CPY: self._cpy,
            Opcode.JNZ: self._jnz,
            Opcode.OUT: self._out,
            Opcode.OUTN: self._outn,
            Opcode.OUTC: self._outc,
        }

    @property
    def store(self) -> RegisterStore:
        return self.state.store

    def registers(self) -> Dict[str, int]:
        return self.store.snapshot(self.register_names)

    # ---- program execution ----

    def load(self, program: Program) -> None:
        self.program = program
        self.state = InterpreterState(store=RegisterStore(program.register_count))

    def run(self, program: Program) -> int:
        """Execute ``program`` from the first instruction until it halts.

        Returns the number of instructions executed.
        """
        start = self.logger.count
        try:
            self.load(program)
            while self.step():
                pass
        except AsmbError:
            raise
        except Exception as exc:
            # Surface Python-level faults with a position instead of a bare traceback.
            self.state.status = Status.FAILED
            last = self.logger.last
            wrapped = AsmbRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.source_location if last else None,
                rule="internal",
            )
            wrapped.ip = self.state.ip
            wrapped.step_index = last.step_index if last else None
            raise wrapped from exc
        return self.logger.count - start

    def step(self) -> bool:
        """Execute the instruction at the pointer. Returns False once halted."""
        state = self.state
        if state.status != Status.RUNNING:
            return False
        program = self.program
        if program is None or state.ip >= len(program.instructions):
            state.status = Status.HALTED
            return False
        self._execute(program.instructions[state.ip])
        return True

    def execute_one(self, instruction: Instruction) -> None:
        """Execute a single instruction against the current state.

        Used interactively: registers are declared one ``def`` at a time, so
        the store grows by one slot when a ``def`` targets the next index.
        """
        state = self.state
        state.status = Status.RUNNING
        if instruction.opcode == Opcode.DEF:
            target = instruction.operands[0] if instruction.operands else None
            if target is not None and target.type == TokenType.REGISTER and target.value == len(state.store):
                state.store.append_slot()
        self._execute(instruction)

    def _execute(self, instruction: Instruction) -> None:
        state = self.state
        opcode = instruction.opcode
        entry = self._log_step(opcode, instruction.location)
        try:
            self._check_operands(opcode, instruction.operands)
            target = self.handlers[opcode](instruction.operands)
        except AsmbRuntimeError as error:
            state.status = Status.FAILED
            error.ip = state.ip
            error.step_index = entry.step_index
            if error.rule is None:
                error.rule = opcode.keyword
            if error.location is None:
                error.location = instruction.location
            raise
        state.ip = state.ip + 1 if target is None else target

    def _check_operands(self, opcode: Opcode, operands: Tuple[Token, ...]) -> None:
        rule = opcode.signature
        if len(operands) != len(rule):
            raise MalformedInstruction(
                f"'{opcode.keyword}' expects {len(rule)} operand(s), got {len(operands)}"
            )
        for kind, token in zip(rule, operands):
            if token.type == TokenType.KEYWORD:
                raise MalformedInstruction(f"Keyword token used as an operand of '{opcode.keyword}'")
            if (kind == "R" and token.type != TokenType.REGISTER) or (kind == "L" and token.type != TokenType.LITERAL):
                raise MalformedInstruction(
                    f"Operand {token} does not match parameter kind {kind} of '{opcode.keyword}'"
                )

    def _value(self, token: Token) -> int:
        if token.type == TokenType.LITERAL:
            return token.value
        return self.store.get(token.value)

    # ---- handlers ----

    def _def(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self._value(ops[1]))
        return None

    def _inc(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self.store.get(ops[0].value) + 1)
        return None

    def _inct(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self.store.get(ops[0].value) + self._value(ops[1]))
        return None

    def _dec(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self.store.get(ops[0].value) - 1)
        return None

    def _dect(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self.store.get(ops[0].value) - self._value(ops[1]))
        return None

    def _mul(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[0].value, self.store.get(ops[0].value) * self._value(ops[1]))
        return None

    def _div(self, ops: Tuple[Token, ...]) -> Optional[int]:
        dividend = self.store.get(ops[0].value)
        divisor = self._value(ops[1])
        self.store.set(ops[0].value, _truncating_div(dividend, divisor))
        return None

    def _cpy(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.store.set(ops[1].value, self._value(ops[0]))
        return None

    def _jnz(self, ops: Tuple[Token, ...]) -> Optional[int]:
        if self._value(ops[0]) == 0:
            return None
        target = self.state.ip + self._value(ops[1])
        if target < 0:
            raise PointerUnderflow(
                f"Jump from instruction {self.state.ip} by {ops[1].value} lands before the program start"
            )
        if target > IP_MAX:
            raise PointerOverflow(f"Jump target {target} exceeds the instruction pointer range")
        return target

    def _out(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.output_sink(f"{self._value(ops[0])} ")
        return None

    def _outn(self, ops: Tuple[Token, ...]) -> Optional[int]:
        self.output_sink(f"{self._value(ops[0])}\n")
        return None

    def _outc(self, ops: Tuple[Token, ...]) -> Optional[int]:
        codepoint = self._value(ops[0])
        if codepoint < 0 or codepoint > MAX_CODEPOINT or 0xD800 <= codepoint <= 0xDFFF:
            raise InvalidCodepoint(f"{codepoint} is not a valid character codepoint")
        self.output_sink(chr(codepoint))
        return None

    def _log_step(self, opcode: Opcode, location: Optional[SourceLocation]) -> StepEntry:
        snapshot = self.registers() if self.verbose else None
        return self.logger.record(
            ip=self.state.ip,
            opcode=opcode,
            location=location,
            register_snapshot=snapshot,
        )


def _truncating_div(dividend: int, divisor: int) -> int:
    """Integer division rounding toward zero, as 32-bit C division does."""
    if divisor == 0:
        raise DivisionError("Division by zero")
    quotient = abs(dividend) // abs(divisor)
    if (dividend < 0) != (divisor < 0):
        quotient = -quotient
    if quotient > INT32_MAX:
        raise DivisionError(f"{dividend} / {divisor} overflows a 32-bit register")
    return quotient


def run(program: Program, **kwargs: Any) -> int:
    return Interpreter(**kwargs).run(program)


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    step_entry: Optional[StepEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self, error: AsmbRuntimeError) -> List[TracebackFrame]:
        entry = self.interpreter.logger.last
        location = error.location or (entry.source_location if entry else None)
        ip = error.ip if error.ip is not None else (entry.ip if entry else None)
        name = f"instruction {ip}" if ip is not None else "<unknown>"
        return [
            TracebackFrame(
                name=name,
                location=location,
                statement=location.statement if location else None,
                step_entry=entry,
            )
        ]

    def format_text(self, error: AsmbRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames(error):
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  File \"{self.interpreter.filename}\", in {frame.name}")
            if frame.step_entry:
                lines.append(f"    Step index: {frame.step_entry.step_index}")
                if verbose and frame.step_entry.register_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.step_entry.register_snapshot.items())
                    lines.append(f"    Registers: {snapshot}")
        rule = error.rule or "runtime"
        kind = "Fatal " if error.fatal else ""
        lines.append(f"{kind}{error.__class__.__name__}: {error.message} (op: {rule})")
        return "\n".join(lines)

    def to_json(self, error: AsmbRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.step_entry:
                entry["step_index"] = frame.step_entry.step_index
                entry["ip"] = frame.step_entry.ip
                entry["opcode"] = frame.step_entry.opcode.keyword
                if frame.step_entry.register_snapshot is not None:
                    entry["registers"] = frame.step_entry.register_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "fatal": error.fatal,
                "ip": error.ip,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)


def print_traceback(interpreter: Interpreter, error: AsmbRuntimeError, *, as_json: bool = False) -> None:
    formatter = TracebackFormatter(interpreter)
    print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)
    if as_json:
        print(formatter.to_json(error), file=sys.stderr)
