"""Filter tags: ``eventName(#tag:"value")`` listeners and selectors.

The grammar is recoverable. A tag that has an event name and an opening
paren but is not yet complete parses as a *partial* success, so that tags
being typed can still validate.

Examples:
    parse_filter_tag('+(#name:"Joe")')      -> success, filter name == "Joe"
    parse_filter_tag('+ ( # lal alal : "abc') -> success, filter lal alal == "abc"
    parse_filter_tag('onClick(')             -> partial success
    parse_filter_tag('onClick()')            -> success, no filter
"""

import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .bot import Bot
from .values import calculate_bot_value, parse_literal

if TYPE_CHECKING:
    from .context import BotView, CalculationContext

_CURLY_DOUBLE_QUOTES = re.compile("[“”]")
_WHITESPACE_ONLY = re.compile(r"^\s*$")


class TagFilter(BaseModel):
    tag: str
    value: Any = None


class FilterParseResult(BaseModel):
    """Result of parsing a filter tag.

    ``success`` means a complete filter tag. ``partial_success`` means the
    event name and opening paren were found but the filter is incomplete.
    """

    success: bool
    partial_success: bool = False
    tag: str
    event_name: str | None = None
    filter: TagFilter | None = None


class TagValidation(BaseModel):
    valid: bool = True
    required: bool = False
    invalid_char: str | None = None


def parse_filter_tag(tag: str) -> FilterParseResult:
    """Parse a tag name into its event name and ``(tag, value)`` filter."""
    original = tag
    tag = _CURLY_DOUBLE_QUOTES.sub('"', tag)
    first_paren = tag.find("(")
    tag_index = tag.find("#")

    if first_paren > 0 and (tag_index > first_paren or tag_index < 0):
        event_name = tag[:first_paren].strip()

        if event_name:
            colon_index = tag.find(":")
            if colon_index > tag_index:
                tag_name = tag[tag_index + 1 : colon_index].strip()
                if tag_name and tag_index > 0:
                    first_quote = tag.find('"')
                    if first_quote < 0:
                        first_quote = colon_index
                    last_quote = tag.rfind('"')
                    if last_quote < 0:
                        last_quote = tag.rfind(")")
                        if last_quote < 0:
                            last_quote = len(tag)
                    elif last_quote == first_quote:
                        last_quote = len(tag)
                    value = tag[first_quote + 1 : last_quote]
                    return FilterParseResult(
                        success=True,
                        tag=original,
                        event_name=event_name,
                        filter=TagFilter(tag=tag_name, value=parse_literal(value)),
                    )

            last_paren = tag.rfind(")")
            if last_paren > first_paren:
                between = tag[first_paren + 1 : last_paren]
                if _WHITESPACE_ONLY.match(between):
                    return FilterParseResult(
                        success=True, tag=original, event_name=event_name, filter=None
                    )

            return FilterParseResult(
                success=False, partial_success=True, tag=original, event_name=event_name
            )

    return FilterParseResult(success=False, partial_success=False, tag=original)


def is_filter_tag(tag: str) -> bool:
    return parse_filter_tag(tag).success


def trim_tag(tag: str) -> str:
    """Remove one leading ``#``."""
    if tag.startswith("#"):
        return tag[1:]
    return tag


def trim_event(tag: str) -> str:
    """Remove one leading ``@``."""
    if tag.startswith("@"):
        return tag[1:]
    return tag


def validate_tag(tag: str | None) -> TagValidation:
    """Validate a tag name.

    Blank tags are required-invalid. A tag containing ``#`` is only valid
    when it parses as a (full or partial) filter tag.
    """
    if not tag or not tag.strip():
        return TagValidation(valid=False, required=True)

    parsed = parse_filter_tag(tag)
    if not (parsed.success or parsed.partial_success) and "#" in tag:
        return TagValidation(valid=False, invalid_char="#")
    return TagValidation(valid=True)


def tag_matches_filter(tag: str, bot: "Bot | BotView", event_name: str) -> bool:
    """Whether ``tag`` is a filter tag for ``event_name`` matching the bot's raw tags."""
    parsed = parse_filter_tag(tag)
    if not parsed.success or parsed.event_name != event_name:
        return False
    if parsed.filter is None:
        return True
    raw = _raw_tags(bot).get(parsed.filter.tag)
    if isinstance(raw, str) and not isinstance(parsed.filter.value, str):
        raw = parse_literal(raw)
    return same_value(raw, parsed.filter.value)


def same_value(first: Any, second: Any) -> bool:
    """Strict equality: ``True`` never equals ``1`` and ``"1"`` never equals ``1``."""
    if isinstance(first, bool) or isinstance(second, bool):
        return type(first) is type(second) and first == second
    if isinstance(first, (int, float)) and isinstance(second, (int, float)):
        return first == second
    return type(first) is type(second) and first == second


def tags_matching_filter(
    subject: "Bot | BotView", other: "Bot | BotView", event_name: str
) -> list[str]:
    """Tags on ``other`` that are filters for ``event_name`` matching ``subject``."""
    return [t for t in _raw_tags(other) if tag_matches_filter(t, subject, event_name)]


def filter_matches_arguments(
    context: "CalculationContext",
    parsed: FilterParseResult,
    event_name: str,
    args: list[Any],
) -> bool:
    """Whether the parsed filter matches the computed value of the first argument."""
    if not parsed.success or parsed.event_name != event_name:
        return False
    if parsed.filter is None:
        return True
    arg = args[0] if args else None
    if arg is None:
        return False
    value = calculate_bot_value(context, arg, parsed.filter.tag)
    if same_value(value, parsed.filter.value):
        return True
    return isinstance(parsed.filter.value, list) and (
        _raw_tags(arg).get(parsed.filter.tag) == parsed.filter.value
    )


def filters_matching_arguments(
    context: "CalculationContext",
    bot: "Bot | BotView",
    event_name: str,
    args: list[Any],
) -> list[FilterParseResult]:
    """Parsed filter tags on the bot that match the event and arguments."""
    parsed = (parse_filter_tag(t) for t in _raw_tags(bot))
    return [p for p in parsed if filter_matches_arguments(context, p, event_name, args)]


def _raw_tags(bot: "Bot | BotView") -> dict[str, Any]:
    if isinstance(bot, Bot):
        return bot.tags
    return bot.bot.tags
