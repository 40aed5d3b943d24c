from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Dict, Iterator, List, Optional, Sequence, Union

from .lexer import Instruction, Location, Token, lex

logger = logging.getLogger(__name__)


class StepLimitExceeded(RuntimeError):
    """Raised when execution exceeds the configured step budget."""


class InputExhausted(EOFError):
    """Raised when an input instruction finds no byte left to read."""


class InterpreterErrorKind(Enum):
    UNMATCHED_JUMP_FORWARD = "UnmatchedJumpForwardError"
    UNMATCHED_JUMP_BACKWARD = "UnmatchedJumpBackwardError"
    POINTER = "PointerError"

    @property
    def label(self) -> str:
        return self.value


class InterpreterError(Exception):
    """A malformed program or an invalid pointer move, tagged with its source location."""

    def __init__(self, kind: InterpreterErrorKind, location: Location) -> None:
        super().__init__(f"{kind.label} at {location}")
        self.kind = kind
        self.location = location


class InputMode(str, Enum):
    BYTE = "byte"
    LINE = "line"


@dataclass
class ExecutionState:
    step: int
    pc: int
    instruction: Optional[Instruction]
    location: Optional[Location]
    pointer: int
    tape_start: int
    tape: List[int]
    output: str
    code_length: int


@dataclass
class Interpreter:
    """Runs token streams against a tape that grows to the right.

    ``input_stream`` and ``output_stream`` are binary file objects; when left
    as ``None`` the process's stdin and stdout are used.
    """

    input_stream: Optional[BinaryIO] = None
    output_stream: Optional[BinaryIO] = None
    input_mode: InputMode = InputMode.BYTE

    tape: List[int] = field(init=False, repr=False)
    pointer: int = field(init=False, repr=False)
    pc: int = field(init=False, repr=False)
    program: List[Token] = field(init=False, repr=False)
    jump_table: Dict[int, int] = field(init=False, repr=False)
    output_buffer: bytearray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.program = []
        self.jump_table = {}
        self.reset()

    def reset(self) -> None:
        self.tape = [0]
        self.pointer = 0
        self.pc = 0
        self.output_buffer = bytearray()

    def run(self, source: Union[str, bytes], max_steps: Optional[int] = None) -> bytes:
        self.eval(lex(source), max_steps=max_steps)
        return bytes(self.output_buffer)

    def eval(self, tokens: Sequence[Token], max_steps: Optional[int] = None) -> None:
        self._load(tokens)
        steps = 0
        code_length = len(self.program)
        while self.pc < code_length:
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded("Program exceeded allowed step count")
            self.pc = self._execute_instruction(self.program[self.pc], self.pc)
            steps += 1
        logger.debug("Program finished after %d steps", steps)

    def step(
        self,
        tokens: Sequence[Token],
        max_steps: Optional[int] = None,
        tape_window: int = 10,
    ) -> Iterator[ExecutionState]:
        self._load(tokens)
        steps = 0
        code_length = len(self.program)

        while self.pc < code_length:
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded("Program exceeded allowed step count")

            token = self.program[self.pc]
            self.pc = self._execute_instruction(token, self.pc)
            steps += 1
            yield self.snapshot(token, steps, tape_window)

        # Final snapshot marks completion
        yield self.snapshot(None, steps, tape_window)

    def build_jump_table(self, tokens: Sequence[Token]) -> Dict[int, int]:
        jump_table: Dict[int, int] = {}
        stack: List[int] = []
        for index, token in enumerate(tokens):
            if token.instruction is Instruction.JUMP_IF_ZERO:
                stack.append(index)
            elif token.instruction is Instruction.JUMP_IF_NONZERO:
                if not stack:
                    raise InterpreterError(
                        InterpreterErrorKind.UNMATCHED_JUMP_BACKWARD, token.location
                    )
                start = stack.pop()
                jump_table[start] = index
                jump_table[index] = start
        if stack:
            raise InterpreterError(
                InterpreterErrorKind.UNMATCHED_JUMP_FORWARD, tokens[stack[0]].location
            )
        return jump_table

    def snapshot(
        self,
        token: Optional[Token],
        step: int,
        tape_window: int = 10,
    ) -> ExecutionState:
        start = max(0, self.pointer - tape_window)
        end = min(len(self.tape), self.pointer + tape_window + 1)
        return ExecutionState(
            step=step,
            pc=self.pc,
            instruction=token.instruction if token is not None else None,
            location=token.location if token is not None else None,
            pointer=self.pointer,
            tape_start=start,
            tape=self.tape[start:end].copy(),
            output=self.output_buffer.decode("latin-1"),
            code_length=len(self.program),
        )

    def _load(self, tokens: Sequence[Token]) -> None:
        self.reset()
        self.program = list(tokens)
        self.jump_table = self.build_jump_table(self.program)
        logger.debug(
            "Loaded %d instructions with %d bracket pairs",
            len(self.program),
            len(self.jump_table) // 2,
        )

    def _execute_instruction(self, token: Token, pc: int) -> int:
        new_pc = pc + 1
        instruction = token.instruction
        if instruction is Instruction.MOVE_FORWARD:
            self.pointer += 1
            if self.pointer >= len(self.tape):
                self.tape.append(0)
        elif instruction is Instruction.MOVE_BACKWARD:
            if self.pointer == 0:
                raise InterpreterError(InterpreterErrorKind.POINTER, token.location)
            self.pointer -= 1
        elif instruction is Instruction.INCREMENT:
            self.tape[self.pointer] = (self.tape[self.pointer] + 1) % 256
        elif instruction is Instruction.DECREMENT:
            self.tape[self.pointer] = (self.tape[self.pointer] - 1) % 256
        elif instruction is Instruction.OUTPUT:
            self._write_output(self.tape[self.pointer])
        elif instruction is Instruction.INPUT:
            self.tape[self.pointer] = self._read_input(token)
        elif instruction is Instruction.JUMP_IF_ZERO:
            if self.tape[self.pointer] == 0:
                new_pc = self.jump_table[pc]
        elif instruction is Instruction.JUMP_IF_NONZERO:
            if self.tape[self.pointer] != 0:
                new_pc = self.jump_table[pc]
        return new_pc

    def _write_output(self, value: int) -> None:
        self.output_buffer.append(value)
        stream = self.output_stream if self.output_stream is not None else sys.stdout.buffer
        stream.write(bytes((value,)))
        stream.flush()

    def _read_input(self, token: Token) -> int:
        stream = self.input_stream if self.input_stream is not None else sys.stdin.buffer
        if self.input_mode is InputMode.LINE:
            # Only the first byte of the line is kept.
            data = stream.readline()
        else:
            data = stream.read(1)
        if not data:
            raise InputExhausted(f"No input left for ',' at {token.location}")
        return data[0]


__all__ = [
    "ExecutionState",
    "InputExhausted",
    "InputMode",
    "Interpreter",
    "InterpreterError",
    "InterpreterErrorKind",
    "StepLimitExceeded",
]
