from __future__ import annotations

import io
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from fastapi import Depends, FastAPI, HTTPException, Response, status
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from tapebf.interpreter import (
    ExecutionState,
    InputExhausted,
    InputMode,
    Interpreter,
    InterpreterError,
    StepLimitExceeded,
)
from tapebf.lexer import Location, Token, format_program
from tapebf.visualizer import BreakpointTarget, VisualizerSession

from .session import SessionRecord, SessionStore


def estimate_total_steps(
    tokens: Sequence[Token],
    input_template: bytes,
    input_mode: InputMode,
    cap: int = 10000,
) -> tuple[int, bool]:
    """Count the snapshots a full run yields, up to ``cap`` instructions.

    The flag is set only when the program is still running after ``cap``
    instructions.
    """
    interpreter = Interpreter(
        input_stream=io.BytesIO(input_template),
        output_stream=io.BytesIO(),
        input_mode=input_mode,
    )
    total = 0
    try:
        for state in interpreter.step(tokens, max_steps=cap):
            total = state.step
    except StepLimitExceeded:
        return cap, True
    except (InterpreterError, InputExhausted):
        pass
    return total, False


class SourceLocation(BaseModel):
    line: int
    column: int

    @classmethod
    def of(cls, location: Optional[Location]) -> Optional["SourceLocation"]:
        if location is None:
            return None
        return cls(line=location.line, column=location.column)


class SessionState(BaseModel):
    step: int
    pc: int
    instruction: Optional[str]
    location: Optional[SourceLocation]
    pointer: int
    tape_start: int
    tape: List[int]
    output: str
    code_length: int

    @classmethod
    def of(cls, state: ExecutionState) -> "SessionState":
        return cls(
            step=state.step,
            pc=state.pc,
            instruction=state.instruction.value if state.instruction is not None else None,
            location=SourceLocation.of(state.location),
            pointer=state.pointer,
            tape_start=state.tape_start,
            tape=list(state.tape),
            output=state.output,
            code_length=state.code_length,
        )


class Breakpoint(BaseModel):
    pc: int
    location: SourceLocation


class SessionConfiguration(BaseModel):
    code: str = ""
    input: str = ""
    tape_window: int = Field(default=10, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    history_limit: int = Field(default=200, ge=1)
    input_mode: InputMode = InputMode.BYTE


class SessionPayload(BaseModel):
    session_id: str
    program: str
    input_mode: InputMode
    state: SessionState
    next_location: Optional[SourceLocation]
    history: List[SessionState]
    finished: bool
    error: Optional[str]
    breakpoints: List[Breakpoint]
    hit_breakpoint: Optional[int]
    total_steps: int
    total_steps_capped: bool


class StepResponse(SessionPayload):
    states: List[SessionState]


class StepRequest(BaseModel):
    count: int = Field(default=1, ge=1)


class RunRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_breakpoints: bool = False


class BreakpointRequest(BaseModel):
    """Either an instruction position or a source line with an optional column."""

    pc: Optional[int] = Field(default=None, ge=0)
    line: Optional[int] = Field(default=None, ge=1)
    column: int = Field(default=1, ge=1)

    def target(self) -> BreakpointTarget:
        if self.line is not None:
            return Location(self.line, self.column)
        if self.pc is not None:
            return self.pc
        raise ValueError("either pc or line is required")


def _payload(record: SessionRecord, states: Optional[List[ExecutionState]] = None) -> dict:
    session = record.session
    payload = {
        "session_id": record.session_id,
        "program": format_program(session.tokens),
        "input_mode": session.input_mode,
        "state": SessionState.of(session.current_state()),
        "next_location": SourceLocation.of(session.next_location()),
        "history": [SessionState.of(state) for state in session.history],
        "finished": session.is_finished(),
        "error": str(session.error) if session.error is not None else None,
        "breakpoints": [
            Breakpoint(pc=position, location=SourceLocation.of(location))
            for position, location in session.list_breakpoints()
        ],
        "hit_breakpoint": session.hit_breakpoint,
        "total_steps": record.total_steps,
        "total_steps_capped": record.total_steps_capped,
    }
    if states is not None:
        payload["states"] = [SessionState.of(state) for state in states]
    return payload


@contextmanager
def _conflict_on_failure() -> Iterator[None]:
    try:
        yield
    except (StepLimitExceeded, InterpreterError, InputExhausted) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


def create_app(
    store: Optional[SessionStore] = None,
    *,
    static_dir: Optional[Path] = None,
    estimate_cap: int = 10000,
) -> FastAPI:
    session_store = store or SessionStore()
    app = FastAPI(title="tapebf debugger API", version="0.1.0")

    static_directory = static_dir or Path(__file__).resolve().parent / "static"
    if static_directory.exists():
        app.mount("/static", StaticFiles(directory=str(static_directory)), name="static")

        @app.get("/", response_class=FileResponse)
        def serve_index() -> FileResponse:
            index_path = static_directory / "index.html"
            if not index_path.exists():
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="index.html not found")
            return FileResponse(index_path)

    def get_record(session_id: str) -> SessionRecord:
        try:
            return session_store.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    @app.post("/api/session", response_model=SessionPayload, status_code=status.HTTP_201_CREATED)
    def create_session(config: SessionConfiguration) -> dict:
        input_bytes = config.input.encode("utf-8")
        try:
            session = VisualizerSession(
                config.code,
                input_template=input_bytes,
                tape_window=config.tape_window,
                max_steps=config.max_steps,
                history_limit=config.history_limit,
                input_mode=config.input_mode,
            )
        except InterpreterError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        total_steps, capped = estimate_total_steps(
            session.tokens, input_bytes, config.input_mode, cap=estimate_cap
        )
        record = session_store.add(session, total_steps=total_steps, total_steps_capped=capped)
        return _payload(record)

    @app.get("/api/session/{session_id}", response_model=SessionPayload)
    def get_session(record: SessionRecord = Depends(get_record)) -> dict:
        return _payload(record)

    @app.post("/api/session/{session_id}/reset", response_model=SessionPayload)
    def reset_session(record: SessionRecord = Depends(get_record)) -> dict:
        record.session.clear_breakpoints()
        record.session.restart()
        return _payload(record)

    @app.post("/api/session/{session_id}/step", response_model=StepResponse)
    def step_session(request: StepRequest, record: SessionRecord = Depends(get_record)) -> dict:
        with _conflict_on_failure():
            states = record.session.step_forward(request.count)
        return _payload(record, states)

    @app.post("/api/session/{session_id}/run", response_model=StepResponse)
    def run_session(request: RunRequest, record: SessionRecord = Depends(get_record)) -> dict:
        with _conflict_on_failure():
            states = record.session.run_until_break(
                request.limit, ignore_breakpoints=request.ignore_breakpoints
            )
        return _payload(record, states)

    @app.post("/api/session/{session_id}/breakpoints", response_model=SessionPayload)
    def add_breakpoint(request: BreakpointRequest, record: SessionRecord = Depends(get_record)) -> dict:
        try:
            record.session.add_breakpoint(request.target())
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        return _payload(record)

    @app.delete("/api/session/{session_id}/breakpoints/{pc}", response_model=SessionPayload)
    def remove_breakpoint(pc: int, record: SessionRecord = Depends(get_record)) -> dict:
        if not record.session.remove_breakpoint(pc):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No breakpoint at instruction #{pc}",
            )
        return _payload(record)

    @app.delete("/api/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_session(session_id: str) -> Response:
        if not session_store.remove(session_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session id: {session_id}",
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["create_app", "estimate_total_steps"]
