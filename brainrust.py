"""brainrust entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, List, Optional

from extensions import BFExtensionError, RuntimeServices, build_default_services, load_runtime_services
from interpreter import BFRuntimeError, Interpreter, TracebackFormatter
from lexer import BFParseError
from parser import ParserMode
from session import Session


PROMPT_COLOR = "\x1b[38;2;153;221;255m"
RESET = "\033[0m"


class LineInput:
    """Byte source for ',' in the REPL, refilled one typed line at a time."""

    def __init__(self, input_provider: Callable[[], str]) -> None:
        self.input_provider = input_provider
        self.pending = bytearray()

    def read(self, n: int = -1) -> bytes:
        if not self.pending:
            try:
                line = self.input_provider()
            except EOFError:
                return b""
            self.pending.extend(line.encode("utf-8") + b"\n")
        if n < 0:
            n = len(self.pending)
        chunk = bytes(self.pending[:n])
        del self.pending[:n]
        return chunk


def render_tape(cells: List[int], pointer: int) -> str:
    values = " | ".join(f"{cell:0>3}" for cell in cells)
    marks = "   ".join(" V " if idx == pointer else f"{idx:0>3}" for idx in range(len(cells)))
    return f"{marks}\n{values}"


def run_repl(verbose: bool, services: Optional[RuntimeServices] = None) -> int:
    print(f"{PROMPT_COLOR}brainrust{RESET} REPL. #include <file>; and #clear; are available, 'exit' quits.")
    session = Session(verbose=verbose, services=services)
    program_input = LineInput(lambda: input(f"{PROMPT_COLOR}in>{RESET} "))
    stdout = sys.stdout.buffer

    while True:
        try:
            line = input(f"{PROMPT_COLOR}>>>{RESET} ")
        except EOFError:
            print()
            break
        if line.strip() == "exit":
            break
        if not line.strip():
            continue

        try:
            produced = session.feed(line, program_input, stdout)
        except BFParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
            continue
        except BFRuntimeError as error:
            formatter = TracebackFormatter(session.interpreter)
            print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
            continue
        if produced and not produced.endswith(b"\n"):
            # Ensure the tape view starts on a fresh line if the program printed anything
            print()
        print(render_tape(session.cells, session.pointer))

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="brainrust", description="brainrust tape-language interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-i", "--interactive", action="store_true", help="Start the interactive REPL")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("--commands", action="store_true", help="Recognise #command; sequences in the program")
    parser.add_argument("--ext", action="append", default=[], help="Extension module (.py) defining brainrust_register(ext); repeatable")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record tape snapshots and show them in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)
    if args.interactive and args.program is not None:
        parser.error("-i/--interactive does not take a program argument")

    try:
        services = load_runtime_services(args.ext) if args.ext else build_default_services()
    except BFExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if args.interactive:
        return run_repl(verbose=args.verbose, services=services)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        parser.print_usage(sys.stderr)
        return 1

    if args.source_mode:
        source: bytes = args.program.encode("utf-8")
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "rb") as handle:
                source = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    mode = ParserMode.COMMAND if args.commands else ParserMode.NORMAL
    try:
        interpreter = Interpreter.from_source(source, filename=filename, mode=mode, verbose=args.verbose, services=services)
    except BFParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1

    try:
        interpreter.run(sys.stdin.buffer, sys.stdout.buffer)
    except BFParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except BFRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
