"""Tests for the formula parser, interpreter and sandbox."""

import math

import pytest

from botcalc import (
    FormulaError,
    FormulaSyntaxError,
    Interpreter,
    Lexer,
    RanOutOfEnergyError,
    Sandbox,
    parse,
)
from botcalc.sandbox import replace_macros


def run(source, receiver=None, library=None, energy=100_000):
    return Interpreter(energy=energy).evaluate(source, receiver, library or {})


class TestLexer:
    def test_tokens(self):
        types = [t.type for t in Lexer('getBots("#name").length').tokens]
        assert types == [
            "IDENT",
            "LPAREN",
            "STRING",
            "RPAREN",
            "DOT",
            "IDENT",
            "EOF",
        ]

    def test_keywords_and_operators(self):
        types = [t.type for t in Lexer("let x = a === null ?? this").tokens]
        assert types == ["LET", "IDENT", "ASSIGN", "IDENT", "SEQ", "NULL", "NULLISH", "THIS", "EOF"]

    def test_unexpected_char(self):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            Lexer("1 +\n@")
        assert exc_info.value.line == 2
        assert exc_info.value.col == 1


class TestParser:
    def test_statements(self):
        program = parse("let a = 1; return a")
        assert [s.type for s in program.statements] == ["let", "return"]

    def test_arrow(self):
        program = parse("(a, b) => a + b")
        arrow = program.statements[0].expr
        assert arrow.type == "arrow"
        assert arrow.params == ["a", "b"]

    def test_parenthesised_expression_is_not_arrow(self):
        program = parse("(a + b) * 2")
        assert program.statements[0].expr.type == "binop"

    def test_precedence(self):
        expr = parse("1 + 2 * 3").statements[0].expr
        assert expr.op == "+"
        assert expr.right.op == "*"

    def test_syntax_error(self):
        with pytest.raises(FormulaSyntaxError):
            parse("getBots(")

    def test_syntax_error_name(self):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            parse("1 +")
        assert exc_info.value.name == "SyntaxError"


class TestArithmetic:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("1 + 2 * 3", 7),
            ("(1 + 2) * 3", 9),
            ("10 / 4", 2.5),
            ("10 / 2", 5),
            ("10 / 0", 0),
            ("7 % 3", 1),
            ("-3 + 1", -2),
            ('"a" + 1', "a1"),
            ('"5" * 2', 10),
            ("1.5 + .5", 2.0),
        ],
    )
    def test_expressions(self, source, expected):
        assert run(source) == expected

    def test_string_concat_formats_numbers(self):
        assert run('"total: " + 4 / 2') == "total: 2"


class TestLogic:
    @pytest.mark.parametrize(
        "source,expected",
        [
            ("1 < 2 && 2 < 3", True),
            ("1 > 2 || false", False),
            ("0 || 'x'", "x"),
            ("null ?? 5", 5),
            ("0 ?? 5", 0),
            ("true ? 1 : 2", 1),
            ("!''", True),
            ("'1' == 1", True),
            ("'1' === 1", False),
            ("1 === 1.0", True),
            ("null == undefined", True),
            ("'b' > 'a'", True),
            ("typeof 'x'", "string"),
            ("typeof null", "undefined"),
        ],
    )
    def test_expressions(self, source, expected):
        assert run(source) == expected

    def test_short_circuit(self):
        assert run("false && missing()") is False


class TestCollections:
    def test_list_methods(self):
        assert run("[1, 2, 3].length") == 3
        assert run("[1, 2, 3].map(x => x * 2)") == [2, 4, 6]
        assert run("[1, 2, 3].filter(x => x > 1)") == [2, 3]
        assert run("[1, 2, 3].includes(2)") is True
        assert run("[1, 2, 3].indexOf(4)") == -1
        assert run("[1, 2, 3].join('-')") == "1-2-3"
        assert run("[1, 2, 3].find(x => x > 1)") == 2

    def test_index(self):
        assert run("[1, 2, 3][1]") == 2
        assert run("[1, 2, 3][5]") is None
        assert run("'abc'[0]") == "a"

    def test_string_methods(self):
        assert run("'abc'.toUpperCase()") == "ABC"
        assert run("' x '.trim()") == "x"
        assert run("'a,b'.split(',')") == ["a", "b"]
        assert run("'abc'.length") == 3

    def test_objects(self):
        assert run("({a: 1, 'b c': 2})") == {"a": 1, "b c": 2}
        assert run("({a: 1}).a") == 1
        assert run("({a: 1})['a']") == 1

    def test_number_methods(self):
        assert run("(1.005).toFixed(1)") == "1.0"


class TestStatements:
    def test_let(self):
        assert run("let a = 2; const b = 3; a * b") == 6

    def test_return(self):
        assert run("return 5; 6") == 5

    def test_last_expression_value(self):
        assert run("1; 2; 3") == 3

    def test_closures(self):
        assert run("let n = 10; [1, 2].map(x => x + n)") == [11, 12]

    def test_this(self):
        assert run("this", receiver="me") == "me"

    def test_library(self):
        assert run("inc(2)", library={"inc": lambda x: x + 1}) == 3

    def test_builtins(self):
        assert run("Infinity") == math.inf
        assert run("Number('4')") == 4
        assert run("String(4)") == "4"


class TestErrors:
    def test_throw_string(self):
        with pytest.raises(FormulaError, match="boom"):
            run("throw 'boom'")

    def test_throw_error(self):
        with pytest.raises(FormulaError) as exc_info:
            run('throw new Error("Test Error")')
        assert exc_info.value.name == "Error"
        assert str(exc_info.value) == "Test Error"

    def test_error_is_a_value(self):
        assert isinstance(run("Error('x')"), FormulaError)

    def test_undefined_name(self):
        with pytest.raises(FormulaError) as exc_info:
            run("missing")
        assert exc_info.value.name == "ReferenceError"

    def test_call_non_function(self):
        with pytest.raises(FormulaError) as exc_info:
            run("let a = 1; a()")
        assert exc_info.value.name == "TypeError"

    def test_member_of_null(self):
        with pytest.raises(FormulaError) as exc_info:
            run("null.x")
        assert exc_info.value.name == "TypeError"

    def test_energy(self):
        with pytest.raises(RanOutOfEnergyError, match="Ran out of energy"):
            run("[1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12]", energy=10)


class TestSandbox:
    def test_success(self):
        result = Sandbox().run("=1 + 1", None, {})
        assert result.success
        assert result.result == 2
        assert result.error is None

    def test_failure_never_raises(self):
        result = Sandbox().run('=throw new Error("bad")', None, {})
        assert not result.success
        assert isinstance(result.error, FormulaError)
        assert str(result.error) == "bad"

    def test_syntax_failure(self):
        result = Sandbox().run("=getBots(", None, {})
        assert not result.success
        assert isinstance(result.error, FormulaSyntaxError)

    def test_macros(self):
        assert replace_macros("=1") == "1"
        assert replace_macros(":=1") == "1"
        assert replace_macros("=“a” + ‘b’") == "\"a\" + 'b'"

    def test_curly_quotes_evaluate(self):
        assert Sandbox().run("=“a” + ‘b’", None, {}).result == "ab"

    def test_pluggable_evaluator(self):
        class Constant:
            def evaluate(self, source, receiver, library, energy=None):
                return (source, receiver)

        result = Sandbox(Constant()).run("=x", "me", {})
        assert result.result == ("x", "me")
