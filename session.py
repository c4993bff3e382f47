"""Interactive session: parse a line, append it to the live program, resume."""

from __future__ import annotations
import io
from typing import BinaryIO, List, Optional

from extensions import RuntimeServices
from interpreter import Interpreter
from lexer import BFError
from parser import ParserMode, parse_source


class _TeeOutput(io.RawIOBase):
    """Collects what one feed() produces while forwarding it to a sink."""

    def __init__(self, sink: Optional[BinaryIO]) -> None:
        super().__init__()
        self.sink = sink
        self.captured = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self.captured.extend(data)
        if self.sink is not None:
            self.sink.write(data)
        return len(data)

    def flush(self) -> None:
        if self.sink is not None:
            self.sink.flush()


class Session:
    def __init__(
        self,
        interpreter: Optional[Interpreter] = None,
        *,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
    ) -> None:
        self.interpreter = interpreter or Interpreter(filename="<repl>", verbose=verbose, services=services)
        self._output = bytearray()
        self.inputs: List[str] = []

    def feed(self, line: str, input_stream: BinaryIO, output_stream: Optional[BinaryIO] = None) -> bytes:
        """Run one line of source against the live program.

        The line is parsed in command mode before anything is appended, so a
        bracket error leaves the program exactly as it was. Returns the bytes
        written while running this line.
        """
        instructions = parse_source(line, "<repl>", ParserMode.COMMAND)
        self.inputs.append(line)
        self.interpreter.append_instructions(instructions)
        tee = _TeeOutput(output_stream)
        try:
            self.interpreter.run(input_stream, tee)
        except BFError:
            # Drop the rest of the failed line so the next line starts clean.
            self.interpreter.instruction_pointer = len(self.interpreter.instructions)
            raise
        finally:
            self._output.extend(tee.captured)
        return bytes(tee.captured)

    @property
    def cells(self) -> List[int]:
        return self.interpreter.cells

    @property
    def pointer(self) -> int:
        return self.interpreter.pointer

    @property
    def output(self) -> bytes:
        return bytes(self._output)
