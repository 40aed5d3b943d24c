from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Union


class Instruction(str, Enum):
    MOVE_FORWARD = ">"
    MOVE_BACKWARD = "<"
    INCREMENT = "+"
    DECREMENT = "-"
    OUTPUT = "."
    INPUT = ","
    JUMP_IF_ZERO = "["
    JUMP_IF_NONZERO = "]"


_SYMBOLS = {ord(instruction.value): instruction for instruction in Instruction}
_NEWLINE = ord("\n")


@dataclass(frozen=True, order=True)
class Location:
    line: int
    column: int

    def __str__(self) -> str:
        return f"line {self.line}, column {self.column}"


@dataclass(frozen=True)
class Token:
    instruction: Instruction
    location: Location

    @property
    def symbol(self) -> str:
        return self.instruction.value


def lex(source: Union[str, bytes]) -> List[Token]:
    """Turn program text into located tokens.

    Every byte that is not one of the eight instruction characters is
    skipped. Columns count bytes, so ``str`` input is scanned in its UTF-8
    encoding.
    """
    data = source.encode("utf-8") if isinstance(source, str) else bytes(source)
    tokens: List[Token] = []
    line = 1
    column = 1
    for byte in data:
        instruction = _SYMBOLS.get(byte)
        if instruction is not None:
            tokens.append(Token(instruction, Location(line, column)))
        elif byte == _NEWLINE:
            line += 1
            column = 0
        column += 1
    return tokens


def format_program(tokens: Iterable[Token]) -> str:
    return "".join(token.symbol for token in tokens)


__all__ = [
    "Instruction",
    "Location",
    "Token",
    "format_program",
    "lex",
]
