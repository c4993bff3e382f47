from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Optional, Union


class BFError(Exception):
    """Base class for interpreter errors."""


class BFParseError(BFError):
    """Raised when parsing fails."""


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


OPERATORS = frozenset(b"><+-.,[]")
COMMAND_MARKER = ord("#")
COMMAND_TERMINATOR = ";"


class Lexer:
    """Operator-filtering scanner over a source buffer.

    Everything that is not one of ``> < + - . , [ ]`` (and ``#`` when
    ``commands`` is enabled) is a comment and is skipped. Command payloads
    are read verbatim through :meth:`next_char`.
    """

    def __init__(self, buffer: Union[bytes, bytearray, str], filename: str = "<string>", *, commands: bool = False) -> None:
        if isinstance(buffer, str):
            buffer = buffer.encode("utf-8")
        self.buffer = bytes(buffer)
        self.filename = filename
        self.commands = commands
        self.cursor = 0
        # Offset of the last token handed out by next(); used for locations.
        self.token_start = 0

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        token = self.next()
        if token is None:
            raise StopIteration
        return token

    def next(self) -> Optional[str]:
        buffer = self.buffer
        n = len(buffer)
        commands = self.commands
        while self.cursor < n:
            byte = buffer[self.cursor]
            self.cursor += 1
            if byte in OPERATORS or (commands and byte == COMMAND_MARKER):
                self.token_start = self.cursor - 1
                return chr(byte)
        return None

    def next_char(self) -> Optional[str]:
        if self.cursor >= len(self.buffer):
            return None
        byte = self.buffer[self.cursor]
        self.cursor += 1
        return chr(byte)

    def back(self) -> None:
        if self.cursor > 0:
            self.cursor -= 1

    # The lookahead consumer un-consumes the token it just peeked at.
    push = back

    @property
    def eof(self) -> bool:
        return self.cursor >= len(self.buffer)

    def location(self, offset: Optional[int] = None) -> SourceLocation:
        if offset is None:
            offset = self.token_start
        line = self.buffer.count(b"\n", 0, offset) + 1
        column = offset - (self.buffer.rfind(b"\n", 0, offset) + 1) + 1
        return SourceLocation(self.filename, line, column)
