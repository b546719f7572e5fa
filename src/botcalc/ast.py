"""AST nodes for formula programs."""

from typing import Annotated, Any
from typing import Literal as TypingLiteral

from pydantic import BaseModel, Field


# Expressions - using discriminated union for type safety
class Literal(BaseModel):
    type: TypingLiteral["literal"] = "literal"
    value: Any  # int, float, str, bool, None


class Undefined(BaseModel):
    type: TypingLiteral["undefined"] = "undefined"


class Identifier(BaseModel):
    type: TypingLiteral["identifier"] = "identifier"
    name: str


class This(BaseModel):
    """The bot that owns the formula."""

    type: TypingLiteral["this"] = "this"


class ArrayExpr(BaseModel):
    type: TypingLiteral["array"] = "array"
    elements: list["Expr"]


class ObjectExpr(BaseModel):
    type: TypingLiteral["object"] = "object"
    properties: list[tuple[str, "Expr"]]


class Member(BaseModel):
    """Property access (e.g., ``bot.name``, ``list.length``)."""

    type: TypingLiteral["member"] = "member"
    obj: "Expr"
    name: str


class Index(BaseModel):
    """Computed access (e.g., ``list[0]``, ``bot["name"]``)."""

    type: TypingLiteral["index"] = "index"
    obj: "Expr"
    index: "Expr"


class Call(BaseModel):
    type: TypingLiteral["call"] = "call"
    callee: "Expr"
    args: list["Expr"]


class UnaryOp(BaseModel):
    type: TypingLiteral["unaryop"] = "unaryop"
    op: str  # -, +, !, typeof
    operand: "Expr"


class BinOp(BaseModel):
    type: TypingLiteral["binop"] = "binop"
    op: str  # + - * / % < > <= >= == != === !== && || ??
    left: "Expr"
    right: "Expr"


class Conditional(BaseModel):
    type: TypingLiteral["conditional"] = "conditional"
    test: "Expr"
    then_expr: "Expr"
    else_expr: "Expr"


class Arrow(BaseModel):
    """Arrow function (e.g., ``x => x > 1``)."""

    type: TypingLiteral["arrow"] = "arrow"
    params: list[str]
    body: "Expr"


Expr = Annotated[
    Literal
    | Undefined
    | Identifier
    | This
    | ArrayExpr
    | ObjectExpr
    | Member
    | Index
    | Call
    | UnaryOp
    | BinOp
    | Conditional
    | Arrow,
    Field(discriminator="type"),
]


# Statements
class Let(BaseModel):
    type: TypingLiteral["let"] = "let"
    name: str
    value: Expr


class Return(BaseModel):
    type: TypingLiteral["return"] = "return"
    value: Expr


class Throw(BaseModel):
    type: TypingLiteral["throw"] = "throw"
    value: Expr


class ExprStmt(BaseModel):
    type: TypingLiteral["expr"] = "expr"
    expr: Expr


Stmt = Annotated[Let | Return | Throw | ExprStmt, Field(discriminator="type")]


class Program(BaseModel):
    """A parsed formula: statements separated by ``;``."""

    statements: list[Stmt] = []


# Rebuild models for forward references
ArrayExpr.model_rebuild()
ObjectExpr.model_rebuild()
Member.model_rebuild()
Index.model_rebuild()
Call.model_rebuild()
UnaryOp.model_rebuild()
BinOp.model_rebuild()
Conditional.model_rebuild()
Arrow.model_rebuild()
Let.model_rebuild()
Return.model_rebuild()
Throw.model_rebuild()
ExprStmt.model_rebuild()
Program.model_rebuild()
