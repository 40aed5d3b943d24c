from .interpreter import (
    ExecutionState,
    InputExhausted,
    InputMode,
    Interpreter,
    InterpreterError,
    InterpreterErrorKind,
    StepLimitExceeded,
)
from .lexer import Instruction, Location, Token, format_program, lex
from .visualizer import VisualizerSession

__all__ = [
    "ExecutionState",
    "InputExhausted",
    "InputMode",
    "Instruction",
    "Interpreter",
    "InterpreterError",
    "InterpreterErrorKind",
    "Location",
    "StepLimitExceeded",
    "Token",
    "VisualizerSession",
    "format_program",
    "lex",
]
