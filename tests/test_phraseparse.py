"""Tests for the command line front end."""

import pytest

from combinators import ParseOptions
from phraseparse import run_assembly, run_cli, run_markup

PROGRAM = "create f(a,b){ setval a 5, setval b 10, add b a, print b }"


class TestRunMarkup:
    def test_reports_each_line(self):
        out = []
        status = run_markup(iter(["<a>hi</a>", "<a></b>", "", "<x/>"]), ParseOptions(), out.append)
        assert status == 1
        assert out == ["Parsing successful", "<a>\n hi\n</a>", "Parsing failed"]

    def test_too_deeply_nested_line_reports_failure(self, capsys):
        """A line deeper than the recursion limit fails without a traceback."""
        depth = 2000
        line = "<a>" * depth + "</a>" * depth
        out = []
        status = run_markup(iter([line, "<b></b>"]), ParseOptions(), out.append)
        assert status == 1
        assert out == ["Parsing failed", "Parsing successful", "<b>\n</b>"]
        assert "nested too deeply" in capsys.readouterr().err


class TestRunAssembly:
    def test_successful_run(self):
        out = []
        assert run_assembly(PROGRAM, ParseOptions(), out=out.append) == 0
        assert out == ["Parsing successful", "Executing:", "b = 15", "Variables stats:", "a = 5", "b = 15"]

    def test_parse_failure(self):
        out = []
        assert run_assembly("create f(", ParseOptions(), out=out.append) == 1
        assert out == ["Parsing failed"]

    def test_runtime_error_prints_traceback(self, capsys):
        out = []
        status = run_assembly("create f(a){ print q }", ParseOptions(), traceback_json=True, out=out.append)
        assert status == 1
        assert out == ["Parsing successful", "Executing:"]
        err = capsys.readouterr().err
        assert "UndefinedVariableError: Variable 'q' does not exist" in err
        assert '"kind": "UndefinedVariable"' in err


class TestRunCli:
    def test_markup_source(self, capsys):
        assert run_cli(["markup", "-source", "<a>hi</a>"]) == 0
        assert capsys.readouterr().out == "Parsing successful\n<a>\n hi\n</a>\n"

    def test_asm_source(self, capsys):
        assert run_cli(["asm", "--source", PROGRAM]) == 0
        assert capsys.readouterr().out.splitlines()[-2:] == ["a = 5", "b = 15"]

    def test_source_flag_before_dialect(self, capsys):
        assert run_cli(["-source", "markup", "<a></a>"]) == 0
        assert capsys.readouterr().out.startswith("Parsing successful")

    def test_asm_file(self, tmp_path, capsys):
        path = tmp_path / "prog.asm"
        path.write_text("create g(x){\n  setval x 3,\n  print x\n}\n", encoding="utf-8")
        assert run_cli(["asm", str(path)]) == 0
        assert "x = 3" in capsys.readouterr().out.splitlines()

    def test_missing_file(self, tmp_path, capsys):
        assert run_cli(["asm", str(tmp_path / "absent.asm")]) == 1
        assert "Failed to read" in capsys.readouterr().err

    def test_partial_flag(self, capsys):
        assert run_cli(["markup", "-source", "<a></a> junk"]) == 1
        assert run_cli(["markup", "--partial", "-source", "<a></a> junk"]) == 0

    def test_immediate_actions_flag(self, capsys):
        assert run_cli(["markup", "--immediate-actions", "-source", '<t k="v"/>']) == 0
        assert capsys.readouterr().out.splitlines()[-1] == '<t k="v"/>'

    def test_prompted_markup_lines(self, monkeypatch, capsys):
        lines = iter(["<a></a>", "<b/>", ""])
        monkeypatch.setattr("builtins.input", lambda prompt: next(lines))
        assert run_cli(["markup"]) == 0
        assert capsys.readouterr().out.count("Parsing successful") == 2

    def test_prompted_program_until_eof(self, monkeypatch, capsys):
        lines = iter(["create f(a){", "setval a 2, print a", "}"])

        def fake_input(prompt):
            try:
                return next(lines)
            except StopIteration:
                raise EOFError

        monkeypatch.setattr("builtins.input", fake_input)
        assert run_cli(["asm"]) == 0
        assert "a = 2" in capsys.readouterr().out.splitlines()

    def test_source_flag_needs_program(self, capsys):
        assert run_cli(["asm", "-source"]) == 1

    def test_unknown_dialect(self):
        with pytest.raises(SystemExit):
            run_cli(["json", "-source", "{}"])
