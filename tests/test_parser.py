import pytest

from instructions import (
    Command,
    Decrement,
    Increment,
    Input,
    LoopEnd,
    LoopStart,
    Output,
    ShiftLeft,
    ShiftRight,
)
from lexer import BFParseError, Lexer
from parser import Parser, ParserMode, parse_source


def check_loops(instructions):
    """Every bracket pair points at each other."""
    for index, instruction in enumerate(instructions):
        if isinstance(instruction, LoopEnd):
            assert instructions[instruction.start] == LoopStart(index + 1)
        if isinstance(instruction, LoopStart):
            assert instruction.target is not None
            assert instructions[instruction.target - 1] == LoopEnd(index)


class TestRunLength:
    @pytest.mark.parametrize("op, kind", [("+", Increment), ("-", Decrement), ("<", ShiftLeft), (">", ShiftRight)])
    def test_run_collapses_to_one_instruction(self, op, kind):
        for k in range(1, 12):
            assert parse_source(op * k) == [kind(k)]

    def test_comments_inside_run(self):
        assert parse_source("+ one\n+ two +") == [Increment(3)]

    def test_mixed(self):
        assert parse_source("+->><->++++<<>--<+++++") == [
            Increment(1), Decrement(1), ShiftRight(2), ShiftLeft(1),
            Decrement(1), ShiftRight(1), Increment(4), ShiftLeft(2),
            ShiftRight(1), Decrement(2), ShiftLeft(1), Increment(5),
        ]

    def test_io_is_not_collapsed(self):
        assert parse_source("..,,") == [Output(), Output(), Input(), Input()]
        assert parse_source("+++.+++") == [Increment(3), Output(), Increment(3)]

    def test_count_must_be_positive(self):
        with pytest.raises(ValueError):
            Increment(0)


class TestLoops:
    def test_empty(self):
        assert parse_source("") == []

    def test_simple(self):
        assert parse_source("[]") == [LoopStart(2), LoopEnd(0)]

    def test_nested(self):
        assert parse_source("+[>[-]<]") == [
            Increment(1), LoopStart(8), ShiftRight(1), LoopStart(6),
            Decrement(1), LoopEnd(3), ShiftLeft(1), LoopEnd(1),
        ]

    @pytest.mark.parametrize("source", [
        "[]",
        "[[]]",
        "+[>+<-]",
        "++[>+++[>+<-]<-]",
        "[-][-][[-]>]",
        "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]>>.>---.",
    ])
    def test_targets_are_resolved(self, source):
        check_loops(parse_source(source))

    @pytest.mark.parametrize("source", ["[", "]", "[[]", "[]]", "+]", "][", "[>[-]"])
    def test_unbalanced(self, source):
        with pytest.raises(BFParseError):
            parse_source(source)

    def test_unmatched_close_location(self):
        with pytest.raises(BFParseError) as info:
            parse_source("+\n ]", "prog.bf")
        assert "Unmatched ']'" in str(info.value)
        assert "prog.bf:2:2" in str(info.value)

    def test_unmatched_open_reports_innermost(self):
        with pytest.raises(BFParseError) as info:
            parse_source("[[]\n[")
        assert "Unmatched '['" in str(info.value)
        assert "<string>:2:1" in str(info.value)


class TestCommandMode:
    def test_command(self):
        assert parse_source("+#include a.bf b.bf;-", mode=ParserMode.COMMAND) == [
            Increment(1), Command("include a.bf b.bf"), Decrement(1),
        ]

    def test_operators_inside_payload_are_text(self):
        assert parse_source("#include a-b.bf;", mode=ParserMode.COMMAND) == [Command("include a-b.bf")]

    def test_unterminated_runs_to_end(self):
        assert parse_source("#clear", mode=ParserMode.COMMAND) == [Command("clear")]

    def test_normal_mode_ignores_commands(self):
        assert parse_source("#clear;+") == [Increment(1)]

    def test_command_breaks_runs(self):
        assert parse_source("+#clear;+", mode=ParserMode.COMMAND) == [Increment(1), Command("clear"), Increment(1)]

    def test_command_inside_loop(self):
        instructions = parse_source("[#clear;]", mode=ParserMode.COMMAND)
        assert instructions == [LoopStart(3), Command("clear"), LoopEnd(0)]

    def test_command_name_and_args(self):
        command = Command("  INCLUDE a.bf  b.bf ")
        assert command.name == "include"
        assert command.args == ["a.bf", "b.bf"]
        assert Command("").name == ""


class TestParser:
    def test_parser_is_single_use(self):
        parser = Parser(Lexer(b"+"))
        assert parser.parse() == [Increment(1)]
        with pytest.raises(BFParseError):
            parser.parse()

    def test_bytes_source(self):
        assert parse_source(b"\xff+\x00") == [Increment(1)]
