"""Parser for formula programs (the text after a leading ``=``).

Grammar (simplified):
    program     = stmt (";" stmt)* [";"]
    stmt        = ("let" | "const" | "var") NAME "=" expr
                | "return" expr | "throw" expr | expr
    expr        = arrow | cond
    arrow       = (NAME | "(" [NAME ("," NAME)*] ")") "=>" expr
    cond        = nullish ["?" expr ":" expr]
    nullish     = or_expr ("??" or_expr)*
    or_expr     = and_expr ("||" and_expr)*
    and_expr    = eq_expr ("&&" eq_expr)*
    eq_expr     = rel_expr (("==" | "!=" | "===" | "!==") rel_expr)*
    rel_expr    = add_expr (("<" | ">" | "<=" | ">=") add_expr)*
    add_expr    = mul_expr (("+" | "-") mul_expr)*
    mul_expr    = unary (("*" | "/" | "%") unary)*
    unary       = ("-" | "+" | "!" | "typeof") unary | "new" postfix | postfix
    postfix     = primary ("(" args ")" | "." NAME | "[" expr "]")*
    primary     = NUMBER | STRING | "true" | "false" | "null" | "undefined"
                | "this" | NAME | array | object | "(" expr ")"
"""

import re
from dataclasses import dataclass
from functools import lru_cache

from . import ast


@dataclass
class Token:
    type: str
    value: str
    line: int
    col: int


class FormulaSyntaxError(Exception):
    """Raised when formula text cannot be parsed."""

    name = "SyntaxError"

    def __init__(self, msg: str, line: int, col: int):
        super().__init__(f"line {line}, col {col}: {msg}")
        self.line = line
        self.col = col


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}


def _unescape(body: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


class Lexer:
    """Simple lexer for formula programs."""

    KEYWORDS = {
        "let",
        "const",
        "var",
        "return",
        "throw",
        "new",
        "typeof",
        "true",
        "false",
        "null",
        "undefined",
        "this",
    }

    TOKEN_PATTERNS = [
        (re.compile(r"//[^\n]*"), "COMMENT"),
        (re.compile(r"\s+"), "WS"),
        (re.compile(r"\d+\.\d*|\.\d+"), "FLOAT"),
        (re.compile(r"\d+"), "INT"),
        (re.compile(r'"(?:[^"\\]|\\.)*"'), "STRING"),
        (re.compile(r"'(?:[^'\\]|\\.)*'"), "STRING"),
        (re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*"), "IDENT"),
        (re.compile(r"==="), "SEQ"),
        (re.compile(r"!=="), "SNE"),
        (re.compile(r"=>"), "ARROW"),
        (re.compile(r"=="), "EQ"),
        (re.compile(r"!="), "NE"),
        (re.compile(r"<="), "LE"),
        (re.compile(r">="), "GE"),
        (re.compile(r"&&"), "AND"),
        (re.compile(r"\|\|"), "OR"),
        (re.compile(r"\?\?"), "NULLISH"),
        (re.compile(r"="), "ASSIGN"),
        (re.compile(r"<"), "LT"),
        (re.compile(r">"), "GT"),
        (re.compile(r"\+"), "PLUS"),
        (re.compile(r"-"), "MINUS"),
        (re.compile(r"\*"), "STAR"),
        (re.compile(r"/"), "SLASH"),
        (re.compile(r"%"), "PERCENT"),
        (re.compile(r"!"), "BANG"),
        (re.compile(r"\?"), "QUESTION"),
        (re.compile(r":"), "COLON"),
        (re.compile(r"\("), "LPAREN"),
        (re.compile(r"\)"), "RPAREN"),
        (re.compile(r"\["), "LBRACKET"),
        (re.compile(r"\]"), "RBRACKET"),
        (re.compile(r"\{"), "LBRACE"),
        (re.compile(r"\}"), "RBRACE"),
        (re.compile(r","), "COMMA"),
        (re.compile(r"\."), "DOT"),
        (re.compile(r";"), "SEMI"),
    ]

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1
        self.tokens: list[Token] = []
        self._tokenise()

    def _tokenise(self) -> None:
        while self.pos < len(self.source):
            for pattern, ttype in self.TOKEN_PATTERNS:
                m = pattern.match(self.source, self.pos)
                if m:
                    value = m.group(0)
                    if ttype == "WS":
                        for c in value:
                            if c == "\n":
                                self.line += 1
                                self.col = 1
                            else:
                                self.col += 1
                    elif ttype != "COMMENT":
                        if ttype == "IDENT" and value in self.KEYWORDS:
                            ttype = value.upper()
                        self.tokens.append(Token(ttype, value, self.line, self.col))
                        self.col += len(value)
                    self.pos += len(value)
                    break
            else:
                raise FormulaSyntaxError(
                    f"unexpected char: {self.source[self.pos]!r}",
                    self.line,
                    self.col,
                )

        self.tokens.append(Token("EOF", "", self.line, self.col))


class Parser:
    """Recursive descent parser for formula programs."""

    NAME_TOKENS = ("IDENT", *(k.upper() for k in Lexer.KEYWORDS))

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[idx]

    def at(self, *types: str) -> bool:
        return self.peek().type in types

    def consume(self, ttype: str) -> Token:
        tok = self.peek()
        if tok.type != ttype:
            raise FormulaSyntaxError(f"expected {ttype}, got {tok.type}", tok.line, tok.col)
        self.pos += 1
        return tok

    def match(self, *types: str) -> Token | None:
        if self.at(*types):
            tok = self.peek()
            self.pos += 1
            return tok
        return None

    def parse_program(self) -> ast.Program:
        """Parse a complete formula program."""
        program = ast.Program()

        while not self.at("EOF"):
            if self.match("SEMI"):
                continue
            program.statements.append(self.parse_statement())
            if not self.at("EOF"):
                self.consume("SEMI")

        return program

    def parse_statement(self) -> ast.Let | ast.Return | ast.Throw | ast.ExprStmt:
        if self.match("LET", "CONST", "VAR"):
            name = self.consume("IDENT").value
            self.consume("ASSIGN")
            return ast.Let(name=name, value=self.parse_expr())
        if self.match("RETURN"):
            if self.at("SEMI", "EOF"):
                return ast.Return(value=ast.Undefined())
            return ast.Return(value=self.parse_expr())
        if self.match("THROW"):
            return ast.Throw(value=self.parse_expr())
        return ast.ExprStmt(expr=self.parse_expr())

    def parse_expr(self) -> ast.Expr:
        """Parse expression."""
        if self._at_arrow():
            return self.parse_arrow()
        return self.parse_cond()

    def _at_arrow(self) -> bool:
        if self.at("IDENT") and self.peek(1).type == "ARROW":
            return True
        if not self.at("LPAREN"):
            return False
        offset = 1
        while self.peek(offset).type in ("IDENT", "COMMA"):
            offset += 1
        return self.peek(offset).type == "RPAREN" and self.peek(offset + 1).type == "ARROW"

    def parse_arrow(self) -> ast.Arrow:
        params: list[str] = []
        if self.match("LPAREN"):
            if not self.at("RPAREN"):
                params.append(self.consume("IDENT").value)
                while self.match("COMMA"):
                    params.append(self.consume("IDENT").value)
            self.consume("RPAREN")
        else:
            params.append(self.consume("IDENT").value)
        self.consume("ARROW")
        return ast.Arrow(params=params, body=self.parse_expr())

    def parse_cond(self) -> ast.Expr:
        test = self.parse_nullish()
        if self.match("QUESTION"):
            then_expr = self.parse_expr()
            self.consume("COLON")
            else_expr = self.parse_expr()
            return ast.Conditional(test=test, then_expr=then_expr, else_expr=else_expr)
        return test

    def _binary(self, next_level, op_map: dict[str, str]) -> ast.Expr:
        left = next_level()
        while tok := self.match(*op_map):
            right = next_level()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_nullish(self) -> ast.Expr:
        return self._binary(self.parse_or, {"NULLISH": "??"})

    def parse_or(self) -> ast.Expr:
        return self._binary(self.parse_and, {"OR": "||"})

    def parse_and(self) -> ast.Expr:
        return self._binary(self.parse_equality, {"AND": "&&"})

    def parse_equality(self) -> ast.Expr:
        op_map = {"EQ": "==", "NE": "!=", "SEQ": "===", "SNE": "!=="}
        return self._binary(self.parse_relational, op_map)

    def parse_relational(self) -> ast.Expr:
        op_map = {"LT": "<", "GT": ">", "LE": "<=", "GE": ">="}
        return self._binary(self.parse_add, op_map)

    def parse_add(self) -> ast.Expr:
        return self._binary(self.parse_mul, {"PLUS": "+", "MINUS": "-"})

    def parse_mul(self) -> ast.Expr:
        return self._binary(self.parse_unary, {"STAR": "*", "SLASH": "/", "PERCENT": "%"})

    def parse_unary(self) -> ast.Expr:
        if self.match("MINUS"):
            return ast.UnaryOp(op="-", operand=self.parse_unary())
        if self.match("PLUS"):
            return ast.UnaryOp(op="+", operand=self.parse_unary())
        if self.match("BANG"):
            return ast.UnaryOp(op="!", operand=self.parse_unary())
        if self.match("TYPEOF"):
            return ast.UnaryOp(op="typeof", operand=self.parse_unary())
        if self.match("NEW"):
            return self.parse_postfix()
        return self.parse_postfix()

    def parse_postfix(self) -> ast.Expr:
        """Parse postfix operations (calls, member and index access)."""
        expr = self.parse_primary()

        while True:
            if self.match("LPAREN"):
                args = []
                if not self.at("RPAREN"):
                    args.append(self.parse_expr())
                    while self.match("COMMA"):
                        args.append(self.parse_expr())
                self.consume("RPAREN")
                expr = ast.Call(callee=expr, args=args)
            elif self.match("DOT"):
                tok = self.peek()
                if tok.type not in self.NAME_TOKENS:
                    raise FormulaSyntaxError(
                        f"expected property name, got {tok.type}", tok.line, tok.col
                    )
                self.pos += 1
                expr = ast.Member(obj=expr, name=tok.value)
            elif self.match("LBRACKET"):
                index = self.parse_expr()
                self.consume("RBRACKET")
                expr = ast.Index(obj=expr, index=index)
            else:
                break

        return expr

    def parse_primary(self) -> ast.Expr:
        """Parse primary expression."""
        if self.at("INT"):
            return ast.Literal(value=int(self.consume("INT").value))
        if self.at("FLOAT"):
            return ast.Literal(value=float(self.consume("FLOAT").value))
        if self.at("STRING"):
            return ast.Literal(value=_unescape(self.consume("STRING").value[1:-1]))
        if self.match("TRUE"):
            return ast.Literal(value=True)
        if self.match("FALSE"):
            return ast.Literal(value=False)
        if self.match("NULL"):
            return ast.Literal(value=None)
        if self.match("UNDEFINED"):
            return ast.Undefined()
        if self.match("THIS"):
            return ast.This()
        if tok := self.match("IDENT"):
            return ast.Identifier(name=tok.value)
        if self.match("LBRACKET"):
            elements = []
            while not self.at("RBRACKET"):
                elements.append(self.parse_expr())
                if not self.match("COMMA"):
                    break
            self.consume("RBRACKET")
            return ast.ArrayExpr(elements=elements)
        if self.match("LBRACE"):
            return self._parse_object()
        if self.match("LPAREN"):
            expr = self.parse_expr()
            self.consume("RPAREN")
            return expr

        tok = self.peek()
        raise FormulaSyntaxError(
            f"unexpected token in expression: {tok.type}", tok.line, tok.col
        )

    def _parse_object(self) -> ast.ObjectExpr:
        properties: list[tuple[str, ast.Expr]] = []
        while not self.at("RBRACE"):
            tok = self.peek()
            if tok.type == "STRING":
                key = _unescape(tok.value[1:-1])
            elif tok.type in self.NAME_TOKENS or tok.type in ("INT", "FLOAT"):
                key = tok.value
            else:
                raise FormulaSyntaxError(
                    f"expected property name, got {tok.type}", tok.line, tok.col
                )
            self.pos += 1
            if self.match("COLON"):
                value = self.parse_expr()
            elif tok.type == "IDENT":
                value = ast.Identifier(name=key)
            else:
                raise FormulaSyntaxError("expected ':'", tok.line, tok.col)
            properties.append((key, value))
            if not self.match("COMMA"):
                break
        self.consume("RBRACE")
        return ast.ObjectExpr(properties=properties)


@lru_cache(maxsize=1024)
def parse(source: str) -> ast.Program:
    """Parse formula source into an AST. Results are cached per source text."""
    lexer = Lexer(source)
    parser = Parser(lexer.tokens)
    return parser.parse_program()
