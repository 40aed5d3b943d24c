from __future__ import annotations

import argparse
import bisect
import cmd
import io
import sys
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Iterator, List, Optional, Sequence, TextIO, Tuple, Union

from .interpreter import (
    ExecutionState,
    InputExhausted,
    InputMode,
    Interpreter,
    InterpreterError,
    StepLimitExceeded,
)
from .lexer import Location, Token, lex

# An instruction position, or a source location resolved to the first
# instruction at or after it.
BreakpointTarget = Union[int, Location]

_STEP_ERRORS = (InterpreterError, InputExhausted, StepLimitExceeded)


@dataclass
class VisualizerSession:
    """Step-by-step execution of one program.

    ``pc`` values and breakpoints are positions in the token stream. Source
    locations given as breakpoint targets are resolved through each token's
    ``Location``, so comments and blank lines never hold a breakpoint.
    """

    code: Union[str, bytes]
    input_template: bytes = b""
    tape_window: int = 10
    max_steps: Optional[int] = None
    history_limit: int = 200
    input_mode: InputMode = InputMode.BYTE

    def __post_init__(self) -> None:
        self.source = self.code.encode("utf-8") if isinstance(self.code, str) else bytes(self.code)
        self.tokens: List[Token] = lex(self.source)
        self._locations = [token.location for token in self.tokens]
        # Malformed programs are rejected before any stepping happens.
        Interpreter().build_jump_table(self.tokens)
        self.breakpoints: set[int] = set()
        self.hit_breakpoint: Optional[int] = None
        self.history: Deque[ExecutionState] = deque(maxlen=self.history_limit)
        self.restart()

    def restart(self) -> None:
        """Rewind to the first instruction with a fresh tape and the original input."""
        interpreter = Interpreter(
            input_stream=io.BytesIO(bytes(self.input_template)),
            output_stream=io.BytesIO(),
            input_mode=self.input_mode,
        )
        self._steps: Iterator[ExecutionState] = interpreter.step(
            self.tokens, max_steps=self.max_steps, tape_window=self.tape_window
        )
        self.finished = False
        self.error: Optional[Exception] = None
        self.hit_breakpoint = None
        self.history.clear()
        self.history.append(
            ExecutionState(
                step=0,
                pc=0,
                instruction=None,
                location=None,
                pointer=0,
                tape_start=0,
                tape=[0],
                output="",
                code_length=len(self.tokens),
            )
        )

    def step_forward(self, count: int = 1) -> List[ExecutionState]:
        return self._advance(max(count, 0))

    def run_until_break(
        self, limit: Optional[int] = None, ignore_breakpoints: bool = False
    ) -> List[ExecutionState]:
        return self._advance(limit, ignore_breakpoints)

    def _advance(
        self, limit: Optional[int], ignore_breakpoints: bool = False
    ) -> List[ExecutionState]:
        self.hit_breakpoint = None
        states: List[ExecutionState] = []
        while not self.finished and (limit is None or len(states) < limit):
            try:
                state = next(self._steps)
            except _STEP_ERRORS as exc:
                self.finished = True
                self.error = exc
                raise
            self.history.append(state)
            states.append(state)
            if state.instruction is None:
                # The closing snapshot carries no instruction.
                self.finished = True
            elif not ignore_breakpoints and state.pc in self.breakpoints:
                self.hit_breakpoint = state.pc
                break
        return states

    def current_state(self) -> ExecutionState:
        return self.history[-1]

    def is_finished(self) -> bool:
        return self.finished

    def next_location(self) -> Optional[Location]:
        pc = self.current_state().pc
        return self._locations[pc] if pc < len(self._locations) else None

    def position_of(self, target: BreakpointTarget) -> int:
        if isinstance(target, Location):
            index = bisect.bisect_left(self._locations, target)
            if index == len(self._locations):
                raise ValueError(f"no instruction at or after {target}")
            return index
        if not 0 <= target < len(self.tokens):
            raise ValueError(f"instruction #{target} is out of range")
        return target

    def add_breakpoint(self, target: BreakpointTarget) -> int:
        position = self.position_of(target)
        self.breakpoints.add(position)
        return position

    def remove_breakpoint(self, target: BreakpointTarget) -> bool:
        try:
            position = self.position_of(target)
        except ValueError:
            return False
        if position not in self.breakpoints:
            return False
        self.breakpoints.discard(position)
        return True

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    def list_breakpoints(self) -> List[Tuple[int, Location]]:
        return [(position, self._locations[position]) for position in sorted(self.breakpoints)]


def format_state(state: ExecutionState, tokens: Sequence[Token]) -> str:
    executed = state.instruction.value if state.instruction is not None else "(init)"
    header = f"step={state.step} pc={state.pc}/{state.code_length} executed={executed!r}"
    if state.location is not None:
        header += f" at {state.location.line}:{state.location.column}"
    lines = [header, f"pointer={state.pointer} tape={_format_tape(state)}"]
    if state.output:
        lines.append(f"output={state.output!r}")
    lines.append(f"code={_format_code_window(tokens, state.pc)}")
    return "\n".join(lines)


def _format_tape(state: ExecutionState) -> str:
    cells = []
    for offset, value in enumerate(state.tape):
        index = state.tape_start + offset
        cell = f"{index}:{value:03}"
        cells.append(f"[{cell}]" if index == state.pointer else cell)
    return " ".join(cells)


def _format_code_window(tokens: Sequence[Token], pc: int, window: int = 16) -> str:
    """Render the instructions around ``pc``, one group per source line.

    Each group starts with the ``line:column`` of its first instruction and
    the instruction at ``pc`` is bracketed.
    """
    if not tokens:
        return "(empty)"
    groups: List[List[str]] = []
    line = None
    for index in range(max(0, pc - window), min(len(tokens), pc + window + 1)):
        token = tokens[index]
        if token.location.line != line:
            line = token.location.line
            groups.append([f"{line}:{token.location.column} "])
        groups[-1].append(f"[{token.symbol}]" if index == pc else token.symbol)
    if pc >= len(tokens):
        groups[-1].append("[END]")
    return " | ".join("".join(group) for group in groups)


def format_source_line(source: bytes, location: Location) -> str:
    """Show the source line holding ``location`` with a caret under its column."""
    lines = source.split(b"\n")
    raw = lines[location.line - 1] if location.line <= len(lines) else b""
    text = raw.decode("utf-8", errors="replace").rstrip("\r")
    # Columns count bytes; the caret is placed by decoded width.
    offset = len(raw[: location.column - 1].decode("utf-8", errors="replace"))
    prefix = f"{location.line:4d} | "
    return f"{prefix}{text}\n{' ' * (len(prefix) + offset)}^"


def _parse_target(text: str) -> BreakpointTarget:
    """``LINE:COL`` or ``LINE`` is a source location, ``#N`` an instruction position."""
    text = text.strip()
    if not text:
        raise ValueError("a breakpoint target is required")
    if text.startswith("#"):
        return int(text[1:])
    line, _, column = text.partition(":")
    return Location(int(line), int(column) if column else 1)


class DebuggerShell(cmd.Cmd):
    """Interactive front end for a VisualizerSession."""

    prompt = "(viz) "

    def __init__(
        self,
        session: VisualizerSession,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        super().__init__(stdin=stdin, stdout=stdout)
        if stdin is not None:
            self.use_rawinput = False
        self.session = session

    def _say(self, text: str) -> None:
        self.stdout.write(text + "\n")

    def _show(self, state: ExecutionState) -> None:
        self._say("-" * 40)
        self._say(format_state(state, self.session.tokens))

    def _describe(self, position: int) -> str:
        token = self.session.tokens[position]
        return f"#{position} {token.symbol!r} at {token.location}"

    def _report(self, states: Sequence[ExecutionState]) -> None:
        if states:
            self._show(states[-1])
        if self.session.hit_breakpoint is not None:
            self._say(f"Stopped at breakpoint {self._describe(self.session.hit_breakpoint)}")
        elif self.session.is_finished():
            self._say("Program has finished.")

    def preloop(self) -> None:
        self._say("tapebf visualizer (type 'help' for commands)")
        self._show(self.session.current_state())

    def onecmd(self, line: str) -> bool:
        try:
            return super().onecmd(line)
        except ValueError as exc:
            self._say(f"Invalid argument: {exc}")
        except StepLimitExceeded:
            self._say("Step limit reached.")
        except (InterpreterError, InputExhausted) as exc:
            self._say(f"Error: {exc}")
        return False

    def emptyline(self) -> bool:
        return False

    def default(self, line: str) -> None:
        self._say(f"Unknown command: {line.split()[0]!r}. See 'help'.")

    def do_next(self, arg: str) -> None:
        """next [N]: execute N instructions (default 1)"""
        self._report(self.session.step_forward(int(arg) if arg.strip() else 1))

    do_n = do_next

    def do_run(self, arg: str) -> None:
        """run [N]: run until a breakpoint, the end, or N instructions"""
        self._report(self.session.run_until_break(int(arg) if arg.strip() else None))

    do_r = do_run

    def do_state(self, arg: str) -> None:
        """state: show the current state"""
        self._show(self.session.current_state())

    def do_where(self, arg: str) -> None:
        """where: show the source line of the next instruction"""
        location = self.session.next_location()
        if location is None:
            self._say("At end of program.")
        else:
            self._say(format_source_line(self.session.source, location))

    def do_history(self, arg: str) -> None:
        """history [N]: show the last N recorded states (default 10)"""
        count = int(arg) if arg.strip() else 10
        for state in list(self.session.history)[-count:]:
            self._show(state)

    def do_break(self, arg: str) -> None:
        """break LINE[:COL] | #N: stop before the instruction at that source location or position"""
        position = self.session.add_breakpoint(_parse_target(arg))
        self._say(f"Breakpoint set at {self._describe(position)}")

    def do_breaks(self, arg: str) -> None:
        """breaks: list breakpoints"""
        points = self.session.list_breakpoints()
        if not points:
            self._say("No breakpoints.")
        for position, _ in points:
            self._say(f"  {self._describe(position)}")

    def do_clear(self, arg: str) -> None:
        """clear [LINE[:COL] | #N]: remove one breakpoint, or all of them"""
        if not arg.strip():
            self.session.clear_breakpoints()
            self._say("All breakpoints removed.")
        elif self.session.remove_breakpoint(_parse_target(arg)):
            self._say("Breakpoint removed.")
        else:
            self._say("No breakpoint there.")

    def do_restart(self, arg: str) -> None:
        """restart: rewind the program, keeping breakpoints"""
        self.session.restart()
        self._show(self.session.current_state())

    def do_quit(self, arg: str) -> bool:
        """quit: leave the visualizer"""
        return True

    do_exit = do_quit

    def do_EOF(self, arg: str) -> bool:
        self._say("")
        return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="tapebf visualizer")
    parser.add_argument("source", help="Path to the program source file")
    parser.add_argument("--input", default="", help="String supplied as program input")
    parser.add_argument(
        "--line-input",
        action="store_true",
        help="Read one line per ',' and keep only its first byte",
    )
    parser.add_argument("--max-steps", type=int, default=5_000_000, help="Step limit")
    parser.add_argument("--tape-window", type=int, default=10, help="Cells shown beside the pointer")
    parser.add_argument("--history-limit", type=int, default=200, help="States kept in history")
    args = parser.parse_args(argv)

    try:
        session = VisualizerSession(
            Path(args.source).read_bytes(),
            input_template=args.input.encode("utf-8"),
            tape_window=args.tape_window,
            max_steps=args.max_steps,
            history_limit=args.history_limit,
            input_mode=InputMode.LINE if args.line_input else InputMode.BYTE,
        )
    except OSError as exc:
        print(f"Cannot open file: {exc}", file=sys.stderr)
        return 1
    except InterpreterError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    DebuggerShell(session).cmdloop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
