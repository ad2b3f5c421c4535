"""Tests for the assembly program builder and grammar."""

import pytest

from assembly import AssemblyFunction, Command, ProgramBuilder, parse_program
from combinators import ParseOptions
from errors import BuilderConsumedError, ErrorKind

EXAMPLE = "create f(a,b){ setval a 5, setval b 10, add b a, print b }"


class TestParseProgram:
    def test_example_program(self, options):
        program = parse_program(EXAMPLE, options)
        assert program.name == "f"
        assert program.parameters == ["a", "b"]
        assert program.commands == [
            Command("setval", ["a", "5"]),
            Command("setval", ["b", "10"]),
            Command("add", ["b", "a"]),
            Command("print", ["b"]),
        ]

    def test_empty_body(self):
        program = parse_program("create main() {}")
        assert program == AssemblyFunction("main")

    def test_multiline_source(self):
        source = "create f(a)\n{\n  setval a 1,\n  print a\n}\n"
        program = parse_program(source)
        assert [command.opcode for command in program.commands] == ["setval", "print"]

    def test_parameters_without_commas(self):
        assert parse_program("create f(a b c){}").parameters == ["a", "b", "c"]

    def test_identifiers_may_contain_underscores(self):
        program = parse_program("create my_fn(x_1){ print x_1 }")
        assert program.name == "my_fn"
        assert program.commands[0].operands == ["x_1"]

    def test_negative_literal_operand(self):
        program = parse_program("create f(a){ setval a -5 }")
        assert program.commands[0].operands == ["a", "-5"]

    @pytest.mark.parametrize(
        "text",
        [
            "create (a){}",
            "createf(a){}",
            "create f(a){ print a, }",
            "create f(a){ print a print a }",
            "create f(a){ print a",
            "create f(a) print a",
            "create f(a){ print a } trailing",
        ],
    )
    def test_malformed_sources_fail(self, text):
        assert parse_program(text) is None

    def test_third_operand_fails(self, diagnostics):
        assert parse_program("create f(a){ add a a a }", diagnostic_sink=diagnostics.append) is None

    def test_trailing_text_allowed_with_partial_option(self):
        program = parse_program("create f(){} trailing", ParseOptions(require_full_match=False))
        assert program.name == "f"

    def test_parse_is_repeatable(self):
        assert parse_program(EXAMPLE) == parse_program(EXAMPLE)

    def test_str_round_trips_through_parser(self):
        program = parse_program(EXAMPLE)
        assert parse_program(str(program)) == program


class TestProgramBuilder:
    def test_builds_in_call_order(self):
        builder = ProgramBuilder()
        builder.set_name("f")
        builder.add_parameter("a")
        builder.add_command("create")
        builder.add_command_operand("t")
        builder.add_command("setvar")
        builder.add_command_operand("t")
        builder.add_command_operand("a")
        program = builder.take_program()
        assert program == AssemblyFunction(
            "f", ["a"], [Command("create", ["t"]), Command("setvar", ["t", "a"])]
        )

    def test_missing_name_is_invalid(self, diagnostics):
        builder = ProgramBuilder(diagnostics.append)
        builder.add_command("print")
        assert not builder.check_validity()
        assert builder.diagnostics[0].kind is ErrorKind.SCHEMA_VIOLATION
        assert builder.take_program() is None

    def test_operand_before_command(self, diagnostics):
        builder = ProgramBuilder(diagnostics.append)
        builder.set_name("f")
        builder.add_command_operand("x")
        assert not builder.check_validity()

    def test_third_operand(self, diagnostics):
        builder = ProgramBuilder(diagnostics.append)
        builder.set_name("f")
        builder.add_command("add")
        for operand in ("a", "b", "c"):
            builder.add_command_operand(operand)
        assert not builder.check_validity()
        assert builder.commands[0].operands == ["a", "b"]
        assert "at most 2 operands" in diagnostics[0]

    def test_take_program_only_once(self):
        builder = ProgramBuilder()
        builder.set_name("f")
        assert builder.take_program() is not None
        assert builder.take_program() is None
        with pytest.raises(BuilderConsumedError):
            builder.add_command("print")


class TestCommand:
    def test_missing_operand_reads_as_empty(self):
        command = Command("print", ["x"])
        assert command.operand(0) == "x"
        assert command.operand(1) == ""

    def test_str(self):
        assert str(Command("add", ["a", "b"])) == "add a b"
