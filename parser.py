from __future__ import annotations
from enum import Enum
from typing import Iterable, List, Tuple, Union

from instructions import (
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
from lexer import COMMAND_TERMINATOR, BFParseError, Lexer


class ParserMode(Enum):
    NORMAL = "normal"
    COMMAND = "command"


COUNTED = {
    "+": Increment,
    "-": Decrement,
    "<": ShiftLeft,
    ">": ShiftRight,
}


class Parser:
    """Turns a lexer's operator stream into a flat instruction list.

    Runs of identical ``+ - < >`` collapse into one counted instruction and
    every bracket pair is resolved to absolute indices in both directions.
    The loop stack is local to one ``parse()`` call, so a fragment (a REPL
    line or an included file) must close every loop it opens.
    """

    def __init__(self, lexer: Lexer, mode: ParserMode = ParserMode.NORMAL) -> None:
        self.lexer = lexer
        self.mode = mode
        self._consumed = False

    def parse(self) -> List[Instruction]:
        if self._consumed:
            raise BFParseError(f"Parser for {self.lexer.filename} has already been consumed")
        self._consumed = True

        lexer = self.lexer
        command_mode = self.mode is ParserMode.COMMAND
        instructions: List[Instruction] = []
        append = instructions.append
        # (instruction index, source offset) of every open '['
        loop_stack: List[Tuple[int, int]] = []

        while True:
            ch = lexer.next()
            if ch is None:
                break
            kind = COUNTED.get(ch)
            if kind is not None:
                count = 1
                while True:
                    following = lexer.next()
                    if following is None:
                        break
                    if following != ch:
                        lexer.back()
                        break
                    count += 1
                append(kind(count))
                continue
            if ch == ".":
                append(Output())
                continue
            if ch == ",":
                append(Input())
                continue
            if ch == "[":
                loop_stack.append((len(instructions), lexer.token_start))
                append(LoopStart(None))
                continue
            if ch == "]":
                if not loop_stack:
                    raise BFParseError(f"Unmatched ']' at {lexer.location()}")
                start, _offset = loop_stack.pop()
                append(LoopEnd(start))
                instructions[start] = LoopStart(len(instructions))
                continue
            if ch == "#" and command_mode:
                append(Command(self._read_command()))
                continue

        if loop_stack:
            _start, offset = loop_stack[-1]
            raise BFParseError(f"Unmatched '[' at {lexer.location(offset)}")
        return instructions

    def _read_command(self) -> str:
        chars: List[str] = []
        while True:
            ch = self.lexer.next_char()
            if ch is None or ch == COMMAND_TERMINATOR:
                break
            chars.append(ch)
        # next_char() hands out single bytes; reassemble multi-byte UTF-8 paths.
        return "".join(chars).encode("latin-1").decode("utf-8", errors="replace")


def relocate(instructions: Iterable[Instruction], offset: int) -> List[Instruction]:
    """Shift loop jump targets of a parsed fragment that will sit at ``offset``."""
    if offset == 0:
        return list(instructions)
    moved: List[Instruction] = []
    for instruction in instructions:
        if isinstance(instruction, LoopStart) and instruction.target is not None:
            instruction = LoopStart(instruction.target + offset)
        elif isinstance(instruction, LoopEnd):
            instruction = LoopEnd(instruction.start + offset)
        moved.append(instruction)
    return moved


def parse_source(
    source: Union[bytes, bytearray, str],
    filename: str = "<string>",
    mode: ParserMode = ParserMode.NORMAL,
) -> List[Instruction]:
    lexer = Lexer(source, filename, commands=mode is ParserMode.COMMAND)
    return Parser(lexer, mode).parse()
