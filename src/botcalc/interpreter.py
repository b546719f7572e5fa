"""Interpreter: evaluates parsed formula programs.

Values are plain Python values. ``null`` and ``undefined`` are both ``None``.
Objects that expose a ``member(name)`` method (bot views) control their own
property access, so that reading ``bot.name`` goes back through the
calculation context.
"""

import math
from collections.abc import Callable, Mapping
from typing import Any

from . import ast
from .parser import parse
from .values import format_value


class FormulaError(Exception):
    """An error raised by a formula (``throw``, bad calls, missing names)."""

    def __init__(self, message: str = "", name: str = "Error"):
        super().__init__(message)
        self.name = name


class RanOutOfEnergyError(Exception):
    name = "RanOutOfEnergyError"

    def __init__(self, message: str = "Ran out of energy"):
        super().__init__(message)


class Energy:
    """Evaluation budget shared by every nested evaluation of one formula read."""

    def __init__(self, budget: int):
        self.remaining = budget

    def spend(self, amount: int = 1) -> None:
        self.remaining -= amount
        if self.remaining < 0:
            raise RanOutOfEnergyError()


class _Return(Exception):
    def __init__(self, value: Any):
        self.value = value


class Scope:
    """Variable bindings for one program run or one arrow function call."""

    def __init__(
        self,
        receiver: Any,
        library: Mapping[str, Any],
        energy: Energy,
        parent: "Scope | None" = None,
    ):
        self.receiver = receiver
        self.library = library
        self.energy = energy
        self.parent = parent
        self.variables: dict[str, Any] = {}

    def get(self, name: str) -> Any:
        scope: Scope | None = self
        while scope is not None:
            if name in scope.variables:
                return scope.variables[name]
            scope = scope.parent
        if name in self.library:
            return self.library[name]
        if name in BUILTINS:
            return BUILTINS[name]
        raise FormulaError(f"{name} is not defined", name="ReferenceError")

    def define(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def child(self) -> "Scope":
        return Scope(self.receiver, self.library, self.energy, parent=self)


class ArrowFunction:
    """A closure created by an arrow expression."""

    name = ""

    def __init__(self, node: ast.Arrow, scope: Scope):
        self.node = node
        self.scope = scope

    def __call__(self, *args: Any) -> Any:
        call_scope = self.scope.child()
        for i, param in enumerate(self.node.params):
            call_scope.define(param, args[i] if i < len(args) else None)
        return evaluate(self.node.body, call_scope)


class BoundMethod:
    """A string/list/number method bound to its receiver value."""

    def __init__(self, name: str, func: Callable[..., Any], target: Any):
        self.name = name
        self.func = func
        self.target = target

    def __call__(self, *args: Any) -> Any:
        return self.func(self.target, *args)


def _make_error(message: Any = "") -> FormulaError:
    return FormulaError(to_string(message))


BUILTINS: dict[str, Any] = {
    "Error": _make_error,
    "Infinity": math.inf,
    "NaN": math.nan,
    "Number": lambda v=0: to_number(v),
    "String": lambda v="": to_string(v),
    "Boolean": lambda v=None: truthy(v),
    "isNaN": lambda v=None: math.isnan(to_number(v)),
}


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def to_number(value: Any) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return math.nan
        if number.is_integer() and "." not in text and "e" not in text.lower():
            return int(number)
        return number
    return math.nan


def to_string(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join("" if v is None else to_string(v) for v in value)
    return format_value(value) or ""


def _normalise(number: int | float) -> int | float:
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if isinstance(left, (list, dict)) or isinstance(right, (list, dict)):
        return left is right
    return type(left) is type(right) and left == right


def loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, (str, bool, int, float)) and isinstance(right, (str, bool, int, float)):
        if isinstance(left, str) and isinstance(right, str):
            return left == right
        return to_number(left) == to_number(right)
    return strict_equals(left, right)


def type_of(value: Any) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if callable(value):
        return "function"
    return "object"


def _arith(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (
        isinstance(left, (str, list)) or isinstance(right, (str, list))
    ):
        return to_string(left) + to_string(right)
    a = to_number(left)
    b = to_number(right)
    match op:
        case "+":
            return a + b
        case "-":
            return a - b
        case "*":
            return a * b
        case "/":
            return _normalise(a / b) if b != 0 else 0
        case "%":
            return _normalise(math.fmod(a, b)) if b != 0 else 0
    raise FormulaError(f"unknown op: {op}")


def _compare(op: str, left: Any, right: Any) -> bool:
    if not (isinstance(left, str) and isinstance(right, str)):
        left = to_number(left)
        right = to_number(right)
    match op:
        case "<":
            return left < right
        case ">":
            return left > right
        case "<=":
            return left <= right
        case ">=":
            return left >= right
    raise FormulaError(f"unknown op: {op}")


def _index_of(items: Any, value: Any) -> int:
    if isinstance(items, str):
        return items.find(to_string(value))
    for i, item in enumerate(items):
        if strict_equals(item, value):
            return i
    return -1


def _includes(items: Any, value: Any) -> bool:
    return _index_of(items, value) >= 0


def _join(items: list, separator: str = ",") -> str:
    return separator.join("" if v is None else to_string(v) for v in items)


def _map(items: list, func: Callable[..., Any]) -> list:
    return [func(item, i) for i, item in enumerate(items)]


def _filter(items: list, func: Callable[..., Any]) -> list:
    return [item for i, item in enumerate(items) if truthy(func(item, i))]


def _find(items: list, func: Callable[..., Any]) -> Any:
    for i, item in enumerate(items):
        if truthy(func(item, i)):
            return item
    return None


def _split(text: str, separator: str | None = None) -> list[str]:
    if separator is None:
        return [text]
    if separator == "":
        return list(text)
    return text.split(separator)


def _slice(items: Any, start: int = 0, end: int | None = None) -> Any:
    return items[int(start) : None if end is None else int(end)]


def _to_fixed(number: Any, digits: int = 0) -> str:
    return f"{to_number(number):.{int(digits)}f}"


LIST_METHODS: dict[str, Callable[..., Any]] = {
    "map": _map,
    "filter": _filter,
    "find": _find,
    "some": lambda items, func: any(truthy(func(v, i)) for i, v in enumerate(items)),
    "every": lambda items, func: all(truthy(func(v, i)) for i, v in enumerate(items)),
    "includes": _includes,
    "indexOf": _index_of,
    "join": _join,
    "slice": _slice,
    "concat": lambda items, *others: items
    + [v for other in others for v in (other if isinstance(other, list) else [other])],
    "reverse": lambda items: list(reversed(items)),
}

STRING_METHODS: dict[str, Callable[..., Any]] = {
    "includes": _includes,
    "indexOf": _index_of,
    "slice": _slice,
    "split": _split,
    "toUpperCase": lambda text: text.upper(),
    "toLowerCase": lambda text: text.lower(),
    "trim": lambda text: text.strip(),
    "startsWith": lambda text, prefix: text.startswith(to_string(prefix)),
    "endsWith": lambda text, suffix: text.endswith(to_string(suffix)),
    "replace": lambda text, old, new: text.replace(to_string(old), to_string(new), 1),
}

NUMBER_METHODS: dict[str, Callable[..., Any]] = {
    "toFixed": _to_fixed,
    "toString": to_string,
}


def get_member(obj: Any, name: str) -> Any:
    """Property access with JavaScript-like semantics for plain values."""
    if obj is None:
        raise FormulaError(
            f"Cannot read properties of null (reading '{name}')", name="TypeError"
        )
    if hasattr(obj, "member"):
        return obj.member(name)
    if isinstance(obj, Mapping):
        return obj.get(name)
    if isinstance(obj, str):
        if name == "length":
            return len(obj)
        if name in STRING_METHODS:
            return BoundMethod(name, STRING_METHODS[name], obj)
        return None
    if isinstance(obj, list):
        if name == "length":
            return len(obj)
        if name in LIST_METHODS:
            return BoundMethod(name, LIST_METHODS[name], obj)
        return None
    if isinstance(obj, (int, float)) and not isinstance(obj, bool):
        if name in NUMBER_METHODS:
            return BoundMethod(name, NUMBER_METHODS[name], obj)
        return None
    if isinstance(obj, BaseException) and name in ("message", "name"):
        return str(obj) if name == "message" else getattr(obj, "name", type(obj).__name__)
    if name == "name" and callable(obj):
        return getattr(obj, "name", getattr(obj, "__name__", ""))
    return None


def get_index(obj: Any, index: Any) -> Any:
    if isinstance(obj, (list, str)) and isinstance(index, (int, float)) and not isinstance(index, bool):
        if float(index).is_integer() and 0 <= index < len(obj):
            return obj[int(index)]
        return None
    return get_member(obj, to_string(index))


def evaluate(expr: ast.Expr, scope: Scope) -> Any:
    """Evaluate an expression in scope."""
    scope.energy.spend()
    match expr:
        case ast.Literal(value=v):
            return v

        case ast.Undefined():
            return None

        case ast.This():
            return scope.receiver

        case ast.Identifier(name=name):
            return scope.get(name)

        case ast.ArrayExpr(elements=elements):
            return [evaluate(e, scope) for e in elements]

        case ast.ObjectExpr(properties=properties):
            return {key: evaluate(value, scope) for key, value in properties}

        case ast.Member(obj=obj, name=name):
            return get_member(evaluate(obj, scope), name)

        case ast.Index(obj=obj, index=index):
            return get_index(evaluate(obj, scope), evaluate(index, scope))

        case ast.Call(callee=callee, args=args):
            func = evaluate(callee, scope)
            if not callable(func):
                raise FormulaError(f"{_describe(callee)} is not a function", name="TypeError")
            arg_vals = [evaluate(a, scope) for a in args]
            return func(*arg_vals)

        case ast.UnaryOp(op=op, operand=operand):
            v = evaluate(operand, scope)
            match op:
                case "-":
                    return -to_number(v)
                case "+":
                    return to_number(v)
                case "!":
                    return not truthy(v)
                case "typeof":
                    return type_of(v)
                case _:
                    raise FormulaError(f"unknown unary op: {op}")

        case ast.BinOp(op="&&", left=left, right=right):
            left_val = evaluate(left, scope)
            return evaluate(right, scope) if truthy(left_val) else left_val

        case ast.BinOp(op="||", left=left, right=right):
            left_val = evaluate(left, scope)
            return left_val if truthy(left_val) else evaluate(right, scope)

        case ast.BinOp(op="??", left=left, right=right):
            left_val = evaluate(left, scope)
            return evaluate(right, scope) if left_val is None else left_val

        case ast.BinOp(op=op, left=left, right=right):
            left_val = evaluate(left, scope)
            right_val = evaluate(right, scope)
            match op:
                case "+" | "-" | "*" | "/" | "%":
                    return _arith(op, left_val, right_val)
                case "<" | ">" | "<=" | ">=":
                    return _compare(op, left_val, right_val)
                case "===":
                    return strict_equals(left_val, right_val)
                case "!==":
                    return not strict_equals(left_val, right_val)
                case "==":
                    return loose_equals(left_val, right_val)
                case "!=":
                    return not loose_equals(left_val, right_val)
                case _:
                    raise FormulaError(f"unknown op: {op}")

        case ast.Conditional(test=test, then_expr=then_e, else_expr=else_e):
            if truthy(evaluate(test, scope)):
                return evaluate(then_e, scope)
            return evaluate(else_e, scope)

        case ast.Arrow():
            return ArrowFunction(expr, scope)

        case _:
            raise FormulaError(f"unknown expr type: {type(expr)}")


def _describe(expr: ast.Expr) -> str:
    match expr:
        case ast.Identifier(name=name):
            return name
        case ast.Member(obj=obj, name=name):
            return f"{_describe(obj)}.{name}"
    return "expression"


def execute(program: ast.Program, scope: Scope) -> Any:
    """Run a program. The result is the ``return`` value or the last expression."""
    result = None
    for stmt in program.statements:
        match stmt:
            case ast.Let(name=name, value=value):
                scope.define(name, evaluate(value, scope))
                result = None
            case ast.Return(value=value):
                raise _Return(evaluate(value, scope))
            case ast.Throw(value=value):
                thrown = evaluate(value, scope)
                if isinstance(thrown, BaseException):
                    raise thrown
                raise FormulaError(to_string(thrown))
            case ast.ExprStmt(expr=e):
                result = evaluate(e, scope)
    return result


class Interpreter:
    """Reference evaluator: parses formula source and walks the tree."""

    def __init__(self, energy: int = 100_000):
        self.energy = energy

    def evaluate(
        self,
        source: str,
        receiver: Any,
        library: Mapping[str, Any],
        energy: Energy | None = None,
    ) -> Any:
        program = parse(source)
        scope = Scope(receiver, library, energy or Energy(self.energy))
        try:
            return execute(program, scope)
        except _Return as ret:
            return ret.value
