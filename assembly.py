from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, List, Optional

from combinators import Grammar, ParseOptions, alnum, char_, lexeme, lit, many
from errors import BuilderConsumedError, Diagnostic, DiagnosticSink, ErrorKind, ValidityState


@dataclass
class Command:
    MAX_OPERANDS: ClassVar[int] = 2

    opcode: str
    operands: List[str] = field(default_factory=list)

    def operand(self, index: int) -> str:
        return self.operands[index] if index < len(self.operands) else ""

    def __str__(self) -> str:
        return " ".join([self.opcode, *self.operands])


@dataclass
class AssemblyFunction:
    name: str
    parameters: List[str] = field(default_factory=list)
    commands: List[Command] = field(default_factory=list)

    def __str__(self) -> str:
        params = ", ".join(self.parameters)
        body = ", ".join(str(command) for command in self.commands)
        return f"create {self.name}({params}) {{ {body} }}"


class ProgramBuilder:
    def __init__(self, diagnostic_sink: Optional[DiagnosticSink] = None) -> None:
        self.validity = ValidityState("program", diagnostic_sink)
        self.name = ""
        self.parameters: List[str] = []
        self.commands: List[Command] = []
        self._consumed = False

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return self.validity.diagnostics

    def _accepting(self) -> bool:
        if self._consumed:
            raise BuilderConsumedError("Program was already taken from this builder")
        return self.validity.valid

    def set_name(self, name: str) -> None:
        if self._accepting():
            self.name = name

    def add_parameter(self, name: str) -> None:
        if self._accepting():
            self.parameters.append(name)

    def add_command(self, opcode: str) -> None:
        if self._accepting():
            self.commands.append(Command(opcode))

    def add_command_operand(self, operand: str) -> None:
        if not self._accepting():
            return
        if not self.commands:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, f"operand {operand!r} before any command")
            return
        command = self.commands[-1]
        if len(command.operands) >= Command.MAX_OPERANDS:
            self.validity.invalidate(
                ErrorKind.SCHEMA_VIOLATION,
                f"command '{command}' takes at most {Command.MAX_OPERANDS} operands, got {operand!r}",
            )
            return
        command.operands.append(operand)

    def check_validity(self) -> bool:
        if self._accepting() and not self.name:
            self.validity.invalidate(ErrorKind.SCHEMA_VIOLATION, "function has no name")
        return self.validity.valid

    def take_program(self) -> Optional[AssemblyFunction]:
        if self._consumed or not self.check_validity():
            return None
        program = AssemblyFunction(self.name, self.parameters, self.commands)
        self.name = ""
        self.parameters = []
        self.commands = []
        self._consumed = True
        return program


class AssemblyGrammar(Grammar):
    def __init__(self, builder: ProgramBuilder, options: Optional[ParseOptions] = None) -> None:
        self.builder = builder
        b = builder

        word_char = alnum | char_("_")
        keyword = lexeme(lit("create") >> ~word_char)
        identifier = lexeme(+word_char)
        operand = lexeme(-char_("-") >> +word_char)

        parameters = many(identifier[b.add_parameter] >> -lit(","))
        command = identifier[b.add_command] >> -operand[b.add_command_operand] >> -operand[b.add_command_operand]
        body = command >> many(lit(",") >> command)

        start = keyword >> identifier[b.set_name] >> lit("(") >> parameters >> lit(")") >> lit("{") >> -body >> lit("}")
        super().__init__(start, options=options)


def parse_program(
    text: str,
    options: Optional[ParseOptions] = None,
    diagnostic_sink: Optional[DiagnosticSink] = None,
) -> Optional[AssemblyFunction]:
    builder = ProgramBuilder(diagnostic_sink)
    result = AssemblyGrammar(builder, options).parse(text)
    if not result or not builder.check_validity():
        return None
    return builder.take_program()
