"""Assembunny-plus entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from bytecode import DecodeError, decode, encode
from interpreter import MAX_REGISTERS, AsmbRuntimeError, Interpreter, print_traceback
from lexer import AsmbParseError, InternalError, SourceLocation, tokenize
from parser import RegisterTable, compile_line, compile_source


BLUE = "\x1b[38;2;153;221;255m"
RED = "\x1b[31m"
RESET = "\033[0m"

REPL_HELP = """\
Enter one Assembunny-plus instruction per line.
  :help      show this help
  :reg       list registers and their values
  :rawtoken  toggle printing resolved tokens before execution
  :exit      leave the REPL (Ctrl-D works too)
JNZ is not supported interactively."""


def _fail(label: str, error: Exception) -> None:
    print(f"{RED}{label}{RESET} {error}", file=sys.stderr)


def read_source(filename: str) -> List[str]:
    with open(filename, "r", encoding="utf-8") as handle:
        return handle.read().splitlines()


def run_lines(lines: List[str], filename: str, *, verbose: bool, traceback_json: bool) -> int:
    table = RegisterTable()
    try:
        program = compile_source(lines, filename=filename, table=table)
    except AsmbParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    interpreter = Interpreter(filename=filename, verbose=verbose, register_names=table.names)
    try:
        interpreter.run(program)
    except AsmbRuntimeError as error:
        print_traceback(interpreter, error, as_json=traceback_json)
        return 1
    return 0


def convert_to_bytecode(source_file: str, output_file: str) -> int:
    try:
        lines = read_source(source_file)
    except OSError as exc:
        print(f"Failed to read {source_file}: {exc}", file=sys.stderr)
        return 1
    try:
        program = compile_source(lines, filename=source_file)
    except AsmbParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    try:
        with open(output_file, "wb") as handle:
            handle.write(encode(program))
    except OSError as exc:
        print(f"Failed to write {output_file}: {exc}", file=sys.stderr)
        return 1
    return 0


def run_bytecode(filename: str, *, verbose: bool, traceback_json: bool) -> int:
    try:
        with open(filename, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        print(f"Failed to read {filename}: {exc}", file=sys.stderr)
        return 1
    try:
        register_count, program = decode(data)
    except DecodeError as error:
        print(f"DecodeError: {error}", file=sys.stderr)
        return 1
    if register_count > MAX_REGISTERS:
        print(
            f"DecodeError: header declares {register_count} registers, more than the {MAX_REGISTERS} a register store holds",
            file=sys.stderr,
        )
        return 1
    interpreter = Interpreter(filename=filename, verbose=verbose)
    try:
        interpreter.run(program)
    except AsmbRuntimeError as error:
        print_traceback(interpreter, error, as_json=traceback_json)
        return 1
    return 0


def run_repl(verbose: bool) -> int:
    print(f"{BLUE}Assembunny-plus{RESET} REPL. Use :help for help, :reg for registers, :exit to leave.")
    pending_newline = False

    def _output_sink(text: str) -> None:
        nonlocal pending_newline
        pending_newline = not text.endswith("\n")
        print(text, end="", flush=True)

    table = RegisterTable()
    interpreter = Interpreter(filename="<repl>", verbose=verbose, register_names=table.names, output_sink=_output_sink)
    show_raw_tokens = False
    line_number = 0

    while True:
        if pending_newline:
            # Start the prompt on a fresh line after OUT/OUTC output.
            print()
            pending_newline = False
        try:
            line = input(f"{BLUE}{interpreter.state.ip}::>{RESET} ")
        except EOFError:
            print()
            break
        line_number += 1
        words = tokenize(line)
        if not words:
            continue

        if words[0].startswith(":"):
            command = words[0]
            if command == ":help":
                print(REPL_HELP)
            elif command == ":reg":
                for name, value in interpreter.registers().items():
                    print(f"{name} => {value}")
            elif command == ":rawtoken":
                show_raw_tokens = not show_raw_tokens
                print(f"Raw token display {'on' if show_raw_tokens else 'off'}")
            elif command == ":exit":
                print("Bye")
                break
            else:
                print(f"Unknown command {command}; try :help", file=sys.stderr)
            continue

        if words[0].lower() == "jnz":
            _fail("Unsupported:", "This REPL does not support JNZ.")
            continue

        location = SourceLocation(file="<repl>", line=line_number, statement=line.strip())
        try:
            instruction = compile_line(line, table, location=location)
        except AsmbParseError as error:
            _fail("Failed to tokenize:", error)
            continue
        if instruction is None:
            continue
        if show_raw_tokens:
            print(",".join(str(token) for token in instruction.tokens))

        try:
            interpreter.execute_one(instruction)
        except AsmbRuntimeError as error:
            print_traceback(interpreter, error)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Interpreter and bytecode manager for Assembunny-plus, an ASM-like register language"
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument(
        "-i",
        "--interpret",
        nargs="?",
        const="",
        metavar="ASMB_FILE",
        help="Interpret a source file, or start the REPL when no file is given",
    )
    action.add_argument(
        "-b",
        "--to-bytecode",
        nargs=2,
        metavar=("ASMB_FILE", "BYTECODE_FILE"),
        help="Compile a source file and write its bytecode to the output file",
    )
    action.add_argument("-e", "--from-bytecode", metavar="BYTECODE_FILE", help="Execute a bytecode file")
    action.add_argument("-source", "--source", dest="source_text", metavar="TEXT", help="Interpret literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Include register snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    try:
        if args.interpret == "":
            return run_repl(verbose=args.verbose)
        if args.interpret is not None:
            try:
                lines = read_source(args.interpret)
            except OSError as exc:
                print(f"Failed to read {args.interpret}: {exc}", file=sys.stderr)
                return 1
            return run_lines(lines, args.interpret, verbose=args.verbose, traceback_json=args.traceback_json)
        if args.source_text is not None:
            return run_lines(
                args.source_text.splitlines(), "<string>", verbose=args.verbose, traceback_json=args.traceback_json
            )
        if args.to_bytecode is not None:
            source_file, output_file = args.to_bytecode
            return convert_to_bytecode(source_file, output_file)
        if args.from_bytecode is not None:
            return run_bytecode(args.from_bytecode, verbose=args.verbose, traceback_json=args.traceback_json)
        return run_repl(verbose=args.verbose)
    except InternalError as error:
        print(f"InternalError: {error}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(run_cli())
