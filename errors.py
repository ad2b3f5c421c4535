from __future__ import annotations
import enum
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional


class PhraseError(Exception):
    """Base class for parser, builder and interpreter errors."""


class GrammarError(PhraseError):
    """Raised when a grammar is malformed or misused."""


class BuilderConsumedError(PhraseError):
    """Raised when a builder is mutated after its result was taken."""


class ErrorKind(enum.Enum):
    STRUCTURAL_MISMATCH = "StructuralMismatch"
    SCHEMA_VIOLATION = "SchemaViolation"
    UNDEFINED_VARIABLE = "UndefinedVariable"
    DIVISION_BY_ZERO = "DivisionByZero"
    INVALID_COMMAND = "InvalidCommand"
    HOOK_FAILURE = "HookFailure"


@dataclass(frozen=True)
class Diagnostic:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class Validity(enum.Enum):
    VALID = "valid"
    INVALID = "invalid"


DiagnosticSink = Callable[[str], None]


def _stderr_sink(text: str) -> None:
    print(text, file=sys.stderr)


class ValidityState:
    """One-way VALID -> INVALID state shared by the builders.

    Once INVALID the state never changes back. The builders stop calling
    ``invalidate`` after the first error, so only that diagnostic is recorded.
    """

    def __init__(self, label: str, sink: Optional[DiagnosticSink] = None) -> None:
        self.label = label
        self.sink = sink or _stderr_sink
        self.state = Validity.VALID
        self.diagnostics: List[Diagnostic] = []

    @property
    def valid(self) -> bool:
        return self.state is Validity.VALID

    def invalidate(self, kind: ErrorKind, message: str) -> None:
        diagnostic = Diagnostic(kind, message)
        self.diagnostics.append(diagnostic)
        self.state = Validity.INVALID
        self.sink(f"Invalid {self.label}: {diagnostic}")

    @property
    def first_error(self) -> Optional[Diagnostic]:
        return self.diagnostics[0] if self.diagnostics else None
