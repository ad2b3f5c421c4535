from __future__ import annotations
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from assembly import AssemblyFunction, Command
from errors import ErrorKind, PhraseError
from extensions import HookRegistry, StepContext


# Variables behave like a C int: signed 32-bit, wrapping on overflow.
WORD = np.int32

OPERAND_COUNTS: Dict[str, int] = {
    "create": 1,
    "setval": 2,
    "setvar": 2,
    "add": 2,
    "sub": 2,
    "mul": 2,
    "div": 2,
    "print": 1,
}

_INTEGER_PREFIX = re.compile(r"\s*([+-]?[0-9]+)")


def to_word(value: Any) -> np.int32:
    return np.asarray(int(value) & 0xFFFFFFFF, dtype=np.uint32).astype(WORD)[()]


def parse_literal(text: str) -> np.int32:
    """Read an integer the way C's atoi does: leading digits, 0 when none."""
    match = _INTEGER_PREFIX.match(text)
    if match is None:
        return WORD(0)
    return to_word(int(match.group(1)))


def _truncating_div(x: np.int32, y: np.int32) -> np.int32:
    a, b = np.int64(x), np.int64(y)
    magnitude = np.floor_divide(np.abs(a), np.abs(b))
    return to_word(magnitude * np.sign(a) * np.sign(b))


class ExecutionError(PhraseError):
    """Raised when a command cannot run; execution stops at that command."""

    kind = ErrorKind.INVALID_COMMAND

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Command] = None,
        command_index: Optional[int] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.command_index = command_index
        self.rule = rule
        self.step_index: Optional[int] = None


class UndefinedVariableError(ExecutionError):
    kind = ErrorKind.UNDEFINED_VARIABLE

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(f"Variable '{name}' does not exist", **kwargs)
        self.name = name


class DivisionByZeroError(ExecutionError):
    kind = ErrorKind.DIVISION_BY_ZERO

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(f"Division by zero: '{name}' is 0", **kwargs)
        self.name = name


class InvalidCommandError(ExecutionError):
    kind = ErrorKind.INVALID_COMMAND


class HookError(ExecutionError):
    kind = ErrorKind.HOOK_FAILURE


class VariableTable:
    def __init__(self, parameters: Iterable[str] = ()) -> None:
        self._values: Dict[str, np.int32] = {}
        for name in parameters:
            self.create(name)

    def create(self, name: str) -> None:
        self._values[name] = WORD(0)

    def get(self, name: str) -> np.int32:
        try:
            return self._values[name]
        except KeyError:
            raise UndefinedVariableError(name, rule="IDENT")

    def set(self, name: str, value: np.int32) -> None:
        if name not in self._values:
            raise UndefinedVariableError(name, rule="ASSIGN")
        self._values[name] = WORD(value)

    def snapshot(self) -> Dict[str, int]:
        return {name: int(self._values[name]) for name in sorted(self._values)}

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    command_index: Optional[int]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, int]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        command_index: Optional[int],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, int]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            command_index=command_index,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def entry_at(self, step_index: Optional[int]) -> Optional[StateEntry]:
        if step_index is None or not 0 <= step_index < len(self.entries):
            return None
        return self.entries[step_index]


CommandHandler = Callable[[Command, VariableTable], None]


class Interpreter:
    def __init__(
        self,
        *,
        verbose: bool = False,
        output_sink: Optional[Callable[[str], None]] = None,
        hooks: Optional[HookRegistry] = None,
    ) -> None:
        self.verbose = verbose
        self.output_sink = output_sink or (lambda text: print(text))
        self.hooks = hooks or HookRegistry()
        self.logger = StateLogger(verbose=verbose)
        self.io_log: List[Dict[str, Any]] = []
        self.program: Optional[AssemblyFunction] = None
        self._handlers: Dict[str, CommandHandler] = {
            "create": self._create,
            "setval": self._setval,
            "setvar": self._setvar,
            "add": self._arithmetic(np.add),
            "sub": self._arithmetic(np.subtract),
            "mul": self._arithmetic(np.multiply),
            "div": self._div,
            "print": self._print,
        }

    def execute(self, program: AssemblyFunction) -> Dict[str, int]:
        """Run every command in order and return the final bindings sorted by name.

        The first failing command raises an ``ExecutionError`` carrying that
        command; nothing after it runs.
        """
        # Each run gets its own state log and print record.
        self.logger = StateLogger(verbose=self.verbose)
        self.logger.record(command_index=None, statement="<seed>", rewrite_record={"rule": "SEED"})
        self.io_log = []
        self.program = program
        table = VariableTable(program.parameters)
        self._emit_event("program_start", self, program, table)
        for index, command in enumerate(program.commands):
            try:
                self._emit_event("before_command", self, command, table)
                self._log_step(command, index, table)
                self._execute_command(command, table)
                self._emit_event("after_command", self, command, table)
            except ExecutionError as error:
                if error.command is None:
                    error.command = command
                    error.command_index = index
                if error.step_index is None and self.logger.entries:
                    error.step_index = self.logger.entries[-1].step_index
                self._emit_event("on_error", self, error)
                raise
        self._emit_event("program_end", self, table)
        return table.snapshot()

    def _execute_command(self, command: Command, table: VariableTable) -> None:
        expected = OPERAND_COUNTS.get(command.opcode)
        if expected is None:
            raise InvalidCommandError(f"Unknown command '{command.opcode}'", rule=command.opcode)
        if len(command.operands) != expected:
            raise InvalidCommandError(
                f"'{command.opcode}' expects {expected} operand(s), got {len(command.operands)}",
                rule=command.opcode,
            )
        self._handlers[command.opcode](command, table)

    def _create(self, command: Command, table: VariableTable) -> None:
        table.create(command.operand(0))

    def _setval(self, command: Command, table: VariableTable) -> None:
        target = command.operand(0)
        table.get(target)
        table.set(target, parse_literal(command.operand(1)))

    def _setvar(self, command: Command, table: VariableTable) -> None:
        target, source = command.operands
        table.get(target)
        table.set(target, table.get(source))

    def _arithmetic(self, op: Callable[[Any, Any], Any]) -> CommandHandler:
        def run(command: Command, table: VariableTable) -> None:
            target, source = command.operands
            x = table.get(target)
            y = table.get(source)
            with np.errstate(over="ignore"):
                table.set(target, WORD(op(x, y)))

        return run

    def _div(self, command: Command, table: VariableTable) -> None:
        target, source = command.operands
        x = table.get(target)
        y = table.get(source)
        if y == 0:
            raise DivisionByZeroError(source, rule="div")
        table.set(target, _truncating_div(x, y))

    def _print(self, command: Command, table: VariableTable) -> None:
        name = command.operand(0)
        value = int(table.get(name))
        self.output_sink(f"{name} = {value}")
        self.io_log.append({"event": "print", "name": name, "value": value})

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.hooks.emit(event, *args)
        except ExecutionError:
            raise
        except Exception as exc:
            raise HookError(f"Extension hook '{event}' failed: {exc}", rule="EXT")

    def _log_step(self, command: Command, index: int, table: VariableTable) -> None:
        entry = self.logger.record(
            command_index=index,
            statement=str(command),
            env_snapshot=table.snapshot() if self.verbose else None,
            rewrite_record={"rule": command.opcode},
        )
        try:
            self.hooks.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=command.opcode, command=command, extra=None),
            )
        except ExecutionError:
            raise
        except Exception as exc:
            raise HookError(f"Extension step rule failed: {exc}", rule="EXT")


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _function_name(self) -> str:
        program = self.interpreter.program
        return program.name if program is not None else "<unknown>"

    def format_text(self, error: ExecutionError, verbose: bool = False) -> str:
        lines = ["Traceback (most recent command last):"]
        if error.command is not None:
            lines.append(f"  Function \"{self._function_name()}\", command {error.command_index}, in {error.command.opcode}")
            lines.append(f"    {error.command}")
        else:
            lines.append(f"  <unknown command> in {self._function_name()}")
        entry = self.interpreter.logger.entry_at(error.step_index)
        if entry is not None:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error.message} (kind: {error.kind.value})")
        return "\n".join(lines)

    def to_json(self, error: ExecutionError) -> str:
        frame: Dict[str, Any] = {"function": self._function_name()}
        if error.command is not None:
            frame["command_index"] = error.command_index
            frame["command"] = str(error.command)
        entry = self.interpreter.logger.entry_at(error.step_index)
        if entry is not None:
            frame["state_id"] = entry.state_id
            frame["step_index"] = entry.step_index
            if entry.env_snapshot is not None:
                frame["env_snapshot"] = entry.env_snapshot
            if entry.rewrite_record is not None:
                frame["rewrite_record"] = entry.rewrite_record
        data = {
            "error": {
                "type": error.__class__.__name__,
                "kind": error.kind.value,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": [frame],
        }
        return json.dumps(data, indent=2)
