from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import BinaryIO, Optional

from .interpreter import (
    InputExhausted,
    InputMode,
    Interpreter,
    InterpreterError,
    StepLimitExceeded,
)
from .lexer import lex

logger = logging.getLogger(__name__)


def _read_source(path: str) -> bytes:
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    return source_path.read_bytes()


def _configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tapebf",
        description="Run a program written in the eight-instruction tape language",
    )
    parser.add_argument("source", nargs="?", help="Path to the program source file")
    parser.add_argument(
        "-e",
        "--execute",
        metavar="CODE",
        help="Program text to run instead of reading a source file",
    )
    parser.add_argument(
        "-i",
        "--input",
        metavar="FILE",
        help="Read program input from FILE (default: stdin)",
    )
    parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Write program output to FILE (default: stdout)",
    )
    parser.add_argument(
        "--line-input",
        action="store_true",
        help="Read one line per ',' and keep only its first byte",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=None,
        help="Abort after this many executed instructions",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.source is None and args.execute is None:
        parser.error("either a source file or --execute is required")
    if args.source is not None and args.execute is not None:
        parser.error("a source file and --execute cannot be combined")

    _configure_logging(args.verbose)

    if args.execute is not None:
        source_text = args.execute.encode("utf-8")
    else:
        try:
            source_text = _read_source(args.source)
        except OSError as exc:
            print(str(exc), file=sys.stderr)
            return 1

    tokens = lex(source_text)
    logger.info("Lexed %d instructions", len(tokens))

    input_stream: Optional[BinaryIO] = None
    output_stream: Optional[BinaryIO] = None
    try:
        if args.input:
            input_stream = open(args.input, "rb")
        if args.output:
            output_stream = open(args.output, "wb")
    except OSError as exc:
        print(str(exc), file=sys.stderr)
        if input_stream is not None:
            input_stream.close()
        return 1

    interpreter = Interpreter(
        input_stream=input_stream,
        output_stream=output_stream,
        input_mode=InputMode.LINE if args.line_input else InputMode.BYTE,
    )
    try:
        interpreter.eval(tokens, max_steps=args.max_steps)
    except InterpreterError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except InputExhausted as exc:
        print(f"Input error: {exc}", file=sys.stderr)
        return 1
    except StepLimitExceeded as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        for stream in (input_stream, output_stream):
            if stream is not None:
                stream.close()

    logger.info("Wrote %d output bytes", len(interpreter.output_buffer))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
