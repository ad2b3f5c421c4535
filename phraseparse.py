"""phraseparse entry point and read/parse/print loops."""

from __future__ import annotations
import argparse
import sys
from typing import Callable, Iterator, List, Optional

from assembly import parse_program
from combinators import ActionMode, ParseOptions
from errors import PhraseError
from interpreter import ExecutionError, Interpreter, TracebackFormatter
from markup import parse_markup, render_tree


def _prompted_lines(prompt: str) -> Iterator[str]:
    # Stops at the first empty line or at end of input.
    while True:
        try:
            line = input(prompt)
        except EOFError:
            return
        if line.strip() == "":
            return
        yield line


def run_markup(lines: Iterator[str], options: ParseOptions, out: Callable[[str], None] = print) -> int:
    status = 0
    for line in lines:
        if line.strip() == "":
            break
        try:
            tree = parse_markup(line, options)
        except PhraseError as exc:
            print(f"Parse error: {exc}", file=sys.stderr)
            tree = None
        if tree is None:
            out("Parsing failed")
            status = 1
            continue
        out("Parsing successful")
        out(render_tree(tree))
    return status


def run_assembly(
    source_text: str,
    options: ParseOptions,
    *,
    verbose: bool = False,
    traceback_json: bool = False,
    out: Callable[[str], None] = print,
) -> int:
    try:
        program = parse_program(source_text, options)
    except PhraseError as exc:
        print(f"Parse error: {exc}", file=sys.stderr)
        program = None
    if program is None:
        out("Parsing failed")
        return 1
    out("Parsing successful")
    out("Executing:")
    interpreter = Interpreter(verbose=verbose, output_sink=out)
    try:
        bindings = interpreter.execute(program)
    except ExecutionError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        if traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    out("Variables stats:")
    for name, value in bindings.items():
        out(f"{name} = {value}")
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Markup and assembly phrase parsers")
    parser.add_argument("dialect", choices=("markup", "asm"), help="Grammar to parse with")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit variable snapshots in tracebacks")
    parser.add_argument("--immediate-actions", action="store_true", help="Fire semantic actions as soon as their rule matches")
    parser.add_argument("--partial", action="store_true", help="Accept a match that leaves trailing input")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    # dialect and program are both positionals; intermixed parsing lets
    # -source appear between them.
    args = parser.parse_intermixed_args(argv)

    options = ParseOptions(
        actions=ActionMode.IMMEDIATE if args.immediate_actions else ActionMode.DEFERRED,
        require_full_match=not args.partial,
    )

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        if args.dialect == "markup":
            return run_markup(_prompted_lines("markup> "), options)
        source_text = "\n".join(_prompted_lines("asm> "))
    elif args.source_mode:
        source_text = args.program
    else:
        try:
            with open(args.program, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
            return 1

    if args.dialect == "markup":
        return run_markup(iter(source_text.splitlines()), options)
    return run_assembly(source_text, options, verbose=args.verbose, traceback_json=args.traceback_json)


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
