from __future__ import annotations
import json
import os
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, BinaryIO, Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from extensions import CommandRegistry, CommandSpec, RuntimeServices, build_default_services
from instructions import (
    CELL_MODULUS,
    Command,
    Decrement,
    Increment,
    Input,
    Instruction,
    LoopEnd,
    LoopStart,
    Output,
    ShiftLeft,
    ShiftRight,
)
from lexer import BFError
from parser import ParserMode, parse_source, relocate


DEFAULT_TAPE_SIZE = 5
# Only the most recent step entries are retained; step indices keep counting.
STEP_HISTORY_LIMIT = 4096
CLEAR_DISPLAY_BYTE = b"\r"


class BFRuntimeError(BFError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        instruction_pointer: Optional[int] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instruction_pointer = instruction_pointer
        self.rule = rule
        self.step_index: Optional[int] = None


class BFInputError(BFRuntimeError):
    """Raised when the input source cannot deliver a byte."""


class BFUnsupportedCommandError(BFRuntimeError):
    def __init__(self, command: str, args: Sequence[str], *, instruction_pointer: Optional[int] = None) -> None:
        shown = command or "<empty>"
        super().__init__(
            f"Command '{shown}' is not supported (args: {list(args)})",
            instruction_pointer=instruction_pointer,
            rule="command",
        )
        self.command = command
        self.arguments = list(args)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    instruction_pointer: Optional[int]
    instruction: Optional[str]
    pointer: int
    tape_snapshot: Optional[List[int]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, limit: int = STEP_HISTORY_LIMIT) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=limit)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        instruction_pointer: Optional[int],
        instruction: Optional[str],
        pointer: int,
        rewrite_record: Optional[Dict[str, Any]] = None,
        tape_snapshot: Optional[List[int]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            instruction_pointer=instruction_pointer,
            instruction=instruction,
            pointer=pointer,
            tape_snapshot=tape_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None

    def find(self, rule: str) -> List[StateEntry]:
        return [e for e in self.entries if e.rewrite_record and e.rewrite_record.get("rule") == rule]


def _include_command(interpreter: "Interpreter", args: List[str]) -> None:
    loaded: List[Instruction] = []
    for path in args:
        try:
            with open(path, "rb") as handle:
                source = handle.read()
        except OSError as exc:
            interpreter.skipped_includes.append(path)
            interpreter._log_event("INCLUDE_SKIPPED", path=path, reason=str(exc))
            print(f"Warning: skipping include '{path}': {exc}", file=sys.stderr)
            continue
        # Each file is parsed on its own; shift it to where it lands in `loaded`.
        parsed = parse_source(source, path, ParserMode.NORMAL)
        loaded.extend(relocate(parsed, len(loaded)))
        interpreter._log_event("INCLUDE", path=path)
    interpreter.append_instructions(loaded)


def _clear_command(interpreter: "Interpreter", args: List[str]) -> None:
    interpreter.reset_tape()
    interpreter.emit(CLEAR_DISPLAY_BYTE)


class Interpreter:
    """Tape machine over a flat instruction list.

    State (instructions, tape, data pointer, instruction pointer) survives
    across ``run()`` calls: appending instructions to a halted program and
    calling ``run()`` again resumes where execution stopped.
    """

    def __init__(
        self,
        instructions: Optional[Iterable[Instruction]] = None,
        *,
        filename: str = "<string>",
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        tape_size: int = DEFAULT_TAPE_SIZE,
    ) -> None:
        if tape_size < 1:
            raise ValueError(f"tape_size must be >= 1, got {tape_size}")
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.services = services or build_default_services()
        self.commands: CommandRegistry = self.services.commands
        # Services may be shared by several interpreters; bind the built-ins once.
        if "include" not in self.commands:
            self.commands.add(
                CommandSpec(name="include", handler=_include_command, min_args=1, doc="Append other source files"),
                builtin=True,
            )
        if "clear" not in self.commands:
            self.commands.add(
                CommandSpec(name="clear", handler=_clear_command, max_args=0, doc="Zero the tape"),
                builtin=True,
            )

        self._instructions: List[Instruction] = list(instructions or [])
        # `_tape` may hold spare capacity past `_size`, the logical tape length.
        self._tape: NDArray[np.uint8] = np.zeros(tape_size, dtype=np.uint8)
        self._size = tape_size
        self.pointer = 0
        self.instruction_pointer = 0
        self._output_history = bytearray()
        self._output_stream: Optional[BinaryIO] = None
        self.skipped_includes: List[str] = []
        self.logger = StateLogger(verbose=verbose)
        self.logger.record(instruction_pointer=None, instruction="<seed>", pointer=0, rewrite_record={"rule": "SEED"})

    @classmethod
    def from_source(cls, source: Any, *, filename: str = "<string>", mode: ParserMode = ParserMode.NORMAL, **kwargs: Any) -> "Interpreter":
        return cls(parse_source(source, filename, mode), filename=filename, **kwargs)

    # ---- read API ----

    @property
    def cells(self) -> List[int]:
        return [int(c) for c in self._tape[: self._size]]

    @property
    def tape_size(self) -> int:
        return self._size

    @property
    def instructions(self) -> tuple:
        return tuple(self._instructions)

    @property
    def output_history(self) -> bytes:
        return bytes(self._output_history)

    @property
    def halted(self) -> bool:
        return self.instruction_pointer >= len(self._instructions)

    # ---- write API ----

    def append_instructions(self, instructions: Iterable[Instruction]) -> None:
        """Append a freshly parsed fragment; its jump targets are fragment-relative."""
        self._instructions.extend(relocate(instructions, len(self._instructions)))

    def reset_tape(self) -> None:
        self._tape[:] = 0

    def run(self, input_stream: Optional[BinaryIO] = None, output_stream: Optional[BinaryIO] = None) -> None:
        if self.halted:
            return
        if input_stream is None:
            input_stream = sys.stdin.buffer
        if output_stream is None:
            output_stream = sys.stdout.buffer
        self._output_stream = output_stream
        self._emit_event("program_start", self)
        try:
            self._execute(input_stream)
        except BFError as error:
            self._emit_event("on_error", self, error)
            if isinstance(error, BFRuntimeError):
                if error.instruction_pointer is None:
                    error.instruction_pointer = self.instruction_pointer
                if self.logger.entries:
                    error.step_index = self.logger.entries[-1].step_index
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Convert unexpected Python-level exceptions into BFRuntimeError
            # so callers (REPL/CLI) can format them as tracebacks.
            wrapped = BFRuntimeError(
                f"Internal interpreter error: {exc}",
                instruction_pointer=self.instruction_pointer,
                rule="internal",
            )
            if self.logger.entries:
                wrapped.step_index = self.logger.entries[-1].step_index
            raise wrapped from exc
        else:
            self._emit_event("program_end", self, 0)
        finally:
            flush = getattr(output_stream, "flush", None)
            if flush is not None:
                flush()
            self._output_stream = None

    # ---- dispatch ----

    def _execute(self, input_stream: BinaryIO) -> None:
        instructions = self._instructions
        log_step = self._log_step

        # include appends to this same list, so the bound is re-read each step.
        while self.instruction_pointer < len(instructions):
            ip = self.instruction_pointer
            instruction = instructions[ip]
            log_step(instruction, ip)
            next_ip = ip + 1

            if isinstance(instruction, Increment):
                p = self.pointer
                self._tape[p] = (int(self._tape[p]) + instruction.count) % CELL_MODULUS
            elif isinstance(instruction, Decrement):
                p = self.pointer
                self._tape[p] = (int(self._tape[p]) - instruction.count) % CELL_MODULUS
            elif isinstance(instruction, ShiftLeft):
                if self.pointer < instruction.count:
                    self.pointer = 0
                else:
                    self.pointer -= instruction.count
            elif isinstance(instruction, ShiftRight):
                target = self.pointer + instruction.count
                if target >= self._size:
                    self._grow_to(target + 1)
                self.pointer = target
            elif isinstance(instruction, Output):
                self.emit(bytes((int(self._tape[self.pointer]),)))
            elif isinstance(instruction, Input):
                self._tape[self.pointer] = self._read_byte(input_stream)
            elif isinstance(instruction, LoopStart):
                if instruction.target is None:
                    raise BFRuntimeError(
                        f"Unresolved loop start at instruction {ip} (parser contract violation)",
                        instruction_pointer=ip,
                        rule="internal",
                    )
                if self._tape[self.pointer] == 0:
                    next_ip = instruction.target
            elif isinstance(instruction, LoopEnd):
                if self._tape[self.pointer] != 0:
                    next_ip = instruction.start
            elif isinstance(instruction, Command):
                self._execute_command(instruction, ip)
            else:
                raise BFRuntimeError(
                    f"Unknown instruction {instruction!r} at {ip}",
                    instruction_pointer=ip,
                    rule="internal",
                )

            self.instruction_pointer = next_ip

    def _execute_command(self, instruction: Command, ip: int) -> None:
        name = instruction.name
        args = instruction.args
        spec = self.commands.lookup(name) if name else None
        if spec is None:
            raise BFUnsupportedCommandError(name, args, instruction_pointer=ip)
        if not spec.accepts(len(args)):
            raise BFRuntimeError(
                f"Command '{name}' expects {spec.arity()} arguments, got {len(args)}",
                instruction_pointer=ip,
                rule=name,
            )
        self._emit_event("before_command", self, name, args)
        spec.handler(self, args)
        self._emit_event("after_command", self, name, args)

    def _grow_to(self, size: int) -> None:
        if size <= self._size:
            return
        capacity = self._tape.shape[0]
        if size > capacity:
            grown = np.zeros(max(size, capacity * 2), dtype=np.uint8)
            grown[: self._size] = self._tape[: self._size]
            self._tape = grown
        self._size = size

    def emit(self, data: bytes) -> None:
        self._output_history.extend(data)
        if self._output_stream is not None:
            self._output_stream.write(data)

    def _read_byte(self, input_stream: BinaryIO) -> int:
        # Anything already written must be visible before blocking on input.
        if self._output_stream is not None:
            flush = getattr(self._output_stream, "flush", None)
            if flush is not None:
                flush()
        try:
            data = input_stream.read(1)
        except OSError as exc:
            raise BFInputError(f"Failed to read input: {exc}", rule="input") from exc
        if not data:
            raise BFInputError("Input stream ended before a byte was read", rule="input")
        if isinstance(data, str):
            data = data.encode("latin-1")
        return data[0]

    # ---- logging / hooks ----

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.services.notify(event, *args)
        except BFError:
            raise
        except Exception as exc:
            raise BFRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                instruction_pointer=self.instruction_pointer,
                rule="EXT",
            )

    def _log_step(self, instruction: Instruction, ip: int) -> None:
        snapshot = self.cells if self.verbose else None
        rule = instruction.__class__.__name__
        self.logger.record(
            instruction_pointer=ip,
            instruction=str(instruction),
            pointer=self.pointer,
            tape_snapshot=snapshot,
            rewrite_record={"rule": rule},
        )

    def _log_event(self, rule: str, **extra: Any) -> None:
        record: Dict[str, Any] = {"rule": rule}
        record.update(extra)
        self.logger.record(
            instruction_pointer=self.instruction_pointer,
            instruction=None,
            pointer=self.pointer,
            rewrite_record=record,
        )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _failing_instruction(self, error: BFRuntimeError) -> Optional[str]:
        ip = error.instruction_pointer
        instructions = self.interpreter.instructions
        if ip is None or not 0 <= ip < len(instructions):
            return None
        return str(instructions[ip])

    def format_text(self, error: BFRuntimeError, verbose: bool) -> str:
        interp = self.interpreter
        lines = ["Traceback (most recent call last):"]
        if error.instruction_pointer is not None:
            lines.append(f"  File \"{interp.filename}\", instruction {error.instruction_pointer}")
            text = self._failing_instruction(error)
            if text:
                lines.append(f"    {text}")
        else:
            lines.append(f"  File \"{interp.filename}\", <unknown instruction>")
        entry = interp.logger.last_entry
        if entry is not None:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
        lines.append(f"    Data pointer: {interp.pointer}  Tape size: {interp.tape_size}")
        if verbose:
            lines.append(f"    Tape: {interp.cells}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: BFRuntimeError) -> str:
        interp = self.interpreter
        recent: List[Dict[str, Any]] = []
        for entry in list(interp.logger.entries)[-10:]:
            item: Dict[str, Any] = {
                "step_index": entry.step_index,
                "state_id": entry.state_id,
                "instruction_pointer": entry.instruction_pointer,
                "instruction": entry.instruction,
                "pointer": entry.pointer,
            }
            if entry.tape_snapshot is not None:
                item["tape_snapshot"] = entry.tape_snapshot
            if entry.rewrite_record is not None:
                item["rewrite_record"] = entry.rewrite_record
            recent.append(item)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "instruction_pointer": error.instruction_pointer,
                "instruction": self._failing_instruction(error),
                "failing_step_index": error.step_index,
            },
            "state": {
                "file": interp.filename,
                "pointer": interp.pointer,
                "tape": interp.cells,
            },
            "recent_steps": recent,
        }
        return json.dumps(data, indent=2)
