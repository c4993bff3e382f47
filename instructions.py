from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Union


CELL_MODULUS = 256


@dataclass(frozen=True)
class Counted:
    count: int = 1

    def __post_init__(self) -> None:
        if self.count < 1:
            raise ValueError(f"{self.__class__.__name__} count must be >= 1, got {self.count}")


@dataclass(frozen=True)
class Increment(Counted):
    def __str__(self) -> str:
        return f"+{self.count}"


@dataclass(frozen=True)
class Decrement(Counted):
    def __str__(self) -> str:
        return f"-{self.count}"


@dataclass(frozen=True)
class ShiftLeft(Counted):
    def __str__(self) -> str:
        return f"<{self.count}"


@dataclass(frozen=True)
class ShiftRight(Counted):
    def __str__(self) -> str:
        return f">{self.count}"


@dataclass(frozen=True)
class Output:
    def __str__(self) -> str:
        return "."


@dataclass(frozen=True)
class Input:
    def __str__(self) -> str:
        return ","


@dataclass(frozen=True)
class LoopStart:
    # Index just past the matching LoopEnd; None until the parser resolves it.
    target: Optional[int] = None

    def __str__(self) -> str:
        return "[?" if self.target is None else f"[->{self.target}"


@dataclass(frozen=True)
class LoopEnd:
    start: int

    def __str__(self) -> str:
        return f"]<{self.start}"


@dataclass(frozen=True)
class Command:
    text: str

    @property
    def name(self) -> str:
        parts = self.text.split()
        return parts[0].lower() if parts else ""

    @property
    def args(self) -> List[str]:
        return self.text.split()[1:]

    def __str__(self) -> str:
        return f"#{self.text};"


Instruction = Union[Increment, Decrement, ShiftLeft, ShiftRight, Output, Input, LoopStart, LoopEnd, Command]
