"""Formula library: the functions formulas call to query and change bots.

Every function closes over one ``CalculationContext``. Queries record the
selectors they depend on, so that the precalculation manager knows what to
recompute when bots change. Filters built with ``byTag``/``byMod`` record
narrow selectors; any other predicate records the "all bots" selector.
"""

import math
import uuid
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from .filters import same_value, trim_tag
from .interpreter import FormulaError, get_member, to_number, truthy
from .values import has_value

if TYPE_CHECKING:
    from .context import BotView, CalculationContext


class LibraryFunction:
    """A named host function callable from formulas."""

    def __init__(self, name: str, func: Callable[..., Any]):
        self.name = name
        self.func = func

    def __call__(self, *args: Any) -> Any:
        return self.func(*args)

    def __repr__(self) -> str:
        return f"[Function {self.name}]"


class BotFilter(LibraryFunction):
    """A bot predicate that knows which selectors it depends on."""

    def __init__(
        self,
        name: str,
        predicate: Callable[["BotView"], bool],
        record: Callable[[], None],
    ):
        super().__init__(name, predicate)
        self.record = record


def _tag_matches(value: Any, expected: Any) -> bool:
    if expected is None:
        return has_value(value)
    if callable(expected):
        return truthy(expected(value))
    return same_value(value, expected)


def create_library(context: "CalculationContext") -> dict[str, Any]:
    """Build the library for one context."""

    def by_tag(tag: str, value: Any = None) -> BotFilter:
        tag = trim_tag(tag)

        def record() -> None:
            if value is None or callable(value):
                context.record_tag(tag)
            else:
                context.record_tag(tag, value)

        return BotFilter(
            "byTag",
            lambda bot: _tag_matches(context.compute(bot, tag), value),
            record,
        )

    def by_mod(mod: Mapping[str, Any]) -> BotFilter:
        filters = [by_tag(tag, value) for tag, value in mod.items()]

        def record() -> None:
            for f in filters:
                f.record()

        return BotFilter("byMod", lambda bot: all(f(bot) for f in filters), record)

    def by_space(space: str) -> BotFilter:
        return BotFilter("bySpace", lambda bot: bot.space == space, context.record_all)

    def either(*filters: Any) -> BotFilter:
        def record() -> None:
            _record_filters(filters)

        return BotFilter("either", lambda bot: any(truthy(f(bot)) for f in filters), record)

    def negate(f: Any) -> BotFilter:
        # bots lacking a tag can appear anywhere
        return BotFilter("not", lambda bot: not truthy(f(bot)), context.record_all)

    def _record_filters(filters: Any) -> None:
        for f in filters:
            if isinstance(f, BotFilter):
                f.record()
            else:
                context.record_all()

    def _filters_from(args: tuple) -> list[Any]:
        if args and isinstance(args[0], str):
            value = args[1] if len(args) > 1 else None
            return [by_tag(args[0], value)]
        for arg in args:
            if not callable(arg):
                raise FormulaError(f"invalid bot filter: {arg!r}", name="TypeError")
        return list(args)

    def get_bots(*args: Any) -> list["BotView"]:
        filters = _filters_from(args)
        if filters:
            _record_filters(filters)
        else:
            context.record_all()
        views = [context.view(bot) for bot in context.objects]
        return [v for v in views if all(truthy(f(v)) for f in filters)]

    def get_bot(*args: Any) -> "BotView | None":
        bots = get_bots(*args)
        return bots[0] if bots else None

    def get_bot_tag_values(tag: str, *filters: Any) -> list[Any]:
        tag = trim_tag(tag)
        expected = filters[0] if filters else None
        if expected is None or callable(expected):
            context.record_tag(tag)
        else:
            context.record_tag(tag, expected)
        values = []
        for bot in context.objects:
            value = context.compute(bot, tag)
            if has_value(value) and (expected is None or _tag_matches(value, expected)):
                values.append(value)
        return values

    def get_tag_values(tag: str, value: Any = None) -> Any:
        """Values of ``tag``; a single value when exactly one bot matches."""
        values = get_bot_tag_values(tag) if value is None else get_bot_tag_values(tag, value)
        if len(values) == 1:
            return values[0]
        return values

    def get_tag(bot: Any, *tags: str) -> Any:
        value = bot
        for tag in tags:
            if value is None:
                return None
            value = get_member(value, trim_tag(tag))
        return value

    def get_id(bot: Any) -> Any:
        if isinstance(bot, str):
            return bot
        return get_member(bot, "id") if bot is not None else None

    def set_tag(bot: Any, tag: str, value: Any) -> Any:
        tag = trim_tag(tag)
        targets = bot if isinstance(bot, list) else [bot]
        for target in targets:
            if isinstance(target, str):
                context.queue_write(target, tag, value)
            elif hasattr(target, "set"):
                target.set(tag, value)
            else:
                raise FormulaError(f"cannot set #{tag} on {target!r}", name="TypeError")
        return value

    def make_uuid() -> str:
        return str(uuid.uuid4())

    return {
        "getBots": LibraryFunction("getBots", get_bots),
        "getBot": LibraryFunction("getBot", get_bot),
        "getBotTagValues": LibraryFunction("getBotTagValues", get_bot_tag_values),
        "getTagValues": LibraryFunction("getTagValues", get_tag_values),
        "getTag": LibraryFunction("getTag", get_tag),
        "getID": LibraryFunction("getID", get_id),
        "byTag": LibraryFunction("byTag", by_tag),
        "byMod": LibraryFunction("byMod", by_mod),
        "bySpace": LibraryFunction("bySpace", by_space),
        "either": LibraryFunction("either", either),
        "not": LibraryFunction("not", negate),
        "setTag": LibraryFunction("setTag", set_tag),
        "uuid": LibraryFunction("uuid", make_uuid),
        "math": MATH,
    }


def _numbers(args: tuple) -> list[Any]:
    if len(args) == 1 and isinstance(args[0], list):
        return args[0]
    return list(args)


def _sum(*args: Any) -> Any:
    return sum(to_number(v) for v in _numbers(args))


def _avg(*args: Any) -> Any:
    numbers = _numbers(args)
    if not numbers:
        return math.nan
    return _sum(numbers) / len(numbers)


def _round(value: Any, digits: int = 0) -> Any:
    factor = 10 ** int(digits)
    rounded = math.floor(to_number(value) * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


MATH: dict[str, LibraryFunction] = {
    "sum": LibraryFunction("sum", _sum),
    "avg": LibraryFunction("avg", _avg),
    "abs": LibraryFunction("abs", lambda value: abs(value)),
    "min": LibraryFunction("min", lambda *args: min(_numbers(args))),
    "max": LibraryFunction("max", lambda *args: max(_numbers(args))),
    "round": LibraryFunction("round", _round),
}
