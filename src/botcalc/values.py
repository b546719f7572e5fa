"""Literal parsing: classify raw tag values and coerce them to typed values.

Raw tag values are strings as typed by users (or already-typed JSON values).
The coercion pipeline is:

    formula -> assignment -> array -> number -> boolean -> string

Classification never raises. Formula evaluation is delegated to the
calculation context; a failing formula either degrades to its own source
text (display path) or raises (precalculation path), depending on the
caller.
"""

import json
import math
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from .bot import Assignment, Bot

if TYPE_CHECKING:
    from .context import BotView, CalculationContext

_NUMBER_PATTERN = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)$")


def has_value(value: Any) -> bool:
    """Whether the value is present. ``None`` and ``""`` mean absent."""
    return not (value is None or value == "")


def is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=")


def is_assignment(value: Any) -> bool:
    if isinstance(value, Assignment):
        return True
    if isinstance(value, Mapping):
        return bool(value.get("isAssignment") or value.get("_assignment"))
    return False


def is_assignment_formula(value: Any) -> bool:
    """Whether the value is a ``:=`` assignment expression or an assignment."""
    if isinstance(value, str):
        return value.startswith(":=")
    return is_assignment(value)


def as_assignment(value: Any) -> Assignment:
    """Normalise an assignment mapping into an ``Assignment``."""
    if isinstance(value, Assignment):
        return value
    return Assignment(
        editing=bool(value.get("editing", True)),
        formula=value.get("formula", ""),
        value=value.get("value"),
    )


def convert_to_assignment(value: Any) -> Assignment:
    """Wrap a ``:=`` string into an assignment that still needs evaluating."""
    if is_assignment(value):
        return as_assignment(value)
    return Assignment(editing=True, formula=value)


def is_array(value: Any) -> bool:
    """Whether the string looks like ``[...]``. Brackets are not balanced."""
    return isinstance(value, str) and value.startswith("[") and value.endswith("]")


def parse_array(value: str) -> list[str]:
    """Split an array string on every comma.

    Nested parentheses and brackets are not protected:
    ``"[f(a, b)]"`` splits into ``["f(a", "b)"]``.
    """
    inner = value[1:-1]
    parts = inner.split(",")
    if parts and parts[0]:
        return [part.strip() for part in parts]
    return []


def contains_formula(value: Any) -> bool:
    return is_formula(value) or (
        is_array(value) and any(is_formula(v) for v in parse_array(value))
    )


def is_number(value: Any) -> bool:
    return isinstance(value, str) and (
        bool(_NUMBER_PATTERN.match(value)) or value.lower() == "infinity"
    )


def parse_number(value: str) -> int | float:
    """Parse text accepted by ``is_number``. Integral text yields an int."""
    if value.lower() == "infinity":
        return math.inf
    if "." in value:
        return float(value)
    return int(value)


def parse_literal(value: str) -> Any:
    """Coerce a literal (non-formula) string: array, number, boolean or string."""
    if is_array(value):
        return [parse_literal(v) for v in parse_array(value)]
    if is_number(value):
        return parse_number(value)
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def format_value(value: Any) -> str | None:
    """Format a computed value for display."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_format_element(v) for v in value) + "]"
    if isinstance(value, BaseException):
        return error_to_string(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, (int, str)):
        return str(value)
    bot_id = _object_id(value)
    if bot_id is not None:
        return str(bot_id)[:5]
    if isinstance(value, Mapping):
        return json.dumps(dict(value), separators=(",", ":"), default=str)
    if callable(value):
        return function_to_string(value)
    return str(value)


def _format_element(value: Any) -> str:
    formatted = format_value(value)
    return "" if formatted is None else formatted


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer():
        return str(int(value))
    # positional notation, so the text parses back as a number
    return format(Decimal(repr(value)), "f")


def _object_id(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("id") or None
    if isinstance(value, Bot):
        return value.id
    return getattr(value, "bot_id", None)


def error_to_string(error: BaseException) -> str:
    """``"<ErrorName>: <message>"`` for an evaluation error."""
    name = getattr(error, "name", None) or type(error).__name__
    return f"{name}: {error}"


def function_to_string(func: Any) -> str:
    name = getattr(func, "name", None)
    if name is None:
        name = getattr(func, "__name__", "")
    return f"[Function {name}]"


def convert_to_copiable_value(value: Any, _seen: set[int] | None = None) -> Any:
    """Convert a computed value into plain data.

    Functions become ``"[Function name]"``, errors ``"Name: message"``, bots
    ``{id, tags}``. Containers are converted recursively; a container that
    contains itself is cut off with ``"[Circular]"``.
    """
    from .context import BotView

    if isinstance(value, BaseException):
        return error_to_string(value)
    if isinstance(value, BotView):
        return {"id": value.id, "tags": dict(value.bot.tags)}
    if isinstance(value, Bot):
        return {"id": value.id, "tags": dict(value.tags)}
    if isinstance(value, (list, tuple, Mapping)):
        seen = _seen if _seen is not None else set()
        if id(value) in seen:
            return "[Circular]"
        seen.add(id(value))
        try:
            if isinstance(value, Mapping):
                return {
                    str(k): convert_to_copiable_value(v, seen) for k, v in value.items()
                }
            return [convert_to_copiable_value(v, seen) for v in value]
        finally:
            seen.discard(id(value))
    if callable(value):
        return function_to_string(value)
    return value


def calculate_value(
    context: "CalculationContext",
    bot: "Bot | BotView",
    tag: str,
    raw: Any,
    raise_errors: bool = False,
) -> Any:
    """Coerce a raw tag value, evaluating formulas against the context.

    When a formula fails, ``raise_errors`` decides between raising the
    evaluation error and returning the formula text unchanged.
    """
    if is_formula(raw):
        return _formula_value(context, bot, tag, raw, raise_errors)
    if is_assignment(raw):
        assignment = as_assignment(raw)
        if assignment.editing:
            return _formula_value(context, bot, tag, assignment.formula, raise_errors)
        return assignment.value
    if is_array(raw):
        return [
            calculate_value(context, bot, tag, element, raise_errors)
            for element in parse_array(raw)
        ]
    if is_number(raw):
        return parse_number(raw)
    if raw == "true":
        return True
    if raw == "false":
        return False
    return raw


def _formula_value(
    context: "CalculationContext",
    bot: "Bot | BotView",
    tag: str,
    formula: str,
    raise_errors: bool,
) -> Any:
    result = context.evaluate_formula(bot, tag, formula)
    if result.success:
        return result.result
    if raise_errors:
        raise result.error
    return formula


def calculate_bot_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, raise_errors: bool = False
) -> Any:
    """Computed value of a bot's tag. ``id`` and ``space`` are reserved."""
    if tag == "id":
        return bot.id
    if tag == "space":
        return bot.space
    raw_tags = bot.tags if isinstance(bot, Bot) else bot.bot.tags
    return calculate_value(context, bot, tag, raw_tags.get(tag), raise_errors)


def calculate_formatted_bot_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str
) -> str | None:
    return format_value(calculate_bot_value(context, bot, tag))


def calculate_copiable_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, raw: Any
) -> Any:
    """Computed value converted to plain data. Errors become descriptive strings."""
    try:
        value = calculate_value(context, bot, tag, raw, raise_errors=True)
    except Exception as err:  # noqa: BLE001 - user formula errors become values
        return convert_to_copiable_value(err)
    return convert_to_copiable_value(value)


def calculate_numerical_tag_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, default: float | None
) -> float | None:
    value = calculate_bot_value(context, bot, tag)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return default


def calculate_boolean_tag_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, default: bool
) -> bool:
    value = calculate_bot_value(context, bot, tag)
    if isinstance(value, bool):
        return value
    return default


def calculate_string_tag_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, default: str | None
) -> str | None:
    value = calculate_bot_value(context, bot, tag)
    if isinstance(value, str) and value:
        return value
    return default


def calculate_string_list_tag_value(
    context: "CalculationContext", bot: "Bot | BotView", tag: str, default: list[str]
) -> list[str]:
    value = calculate_bot_value(context, bot, tag)
    if isinstance(value, list):
        return [format_value(v) or "" for v in value]
    if has_value(value):
        return [format_value(value) or ""]
    return default


def prepare_tag_updates(
    context: "CalculationContext", bot: "Bot", tags: Mapping[str, Any]
) -> dict[str, Any]:
    """Preprocess a tag write.

    Absent values become ``None`` and assignment expressions are evaluated
    exactly once, producing a committed ``Assignment``.
    """
    prepared: dict[str, Any] = {}
    for tag, value in tags.items():
        if not has_value(value):
            prepared[tag] = None
        elif is_assignment_formula(value):
            assignment = convert_to_assignment(value)
            if assignment.editing:
                result = context.evaluate_formula(bot, tag, assignment.formula)
                computed = (
                    convert_to_copiable_value(result.result)
                    if result.success
                    else error_to_string(result.error)
                )
                assignment = Assignment(
                    editing=False, formula=assignment.formula, value=computed
                )
            prepared[tag] = assignment
        else:
            prepared[tag] = value
    return prepared
