"""Dependency tracking for incremental recomputation.

Every evaluation of a ``(bot_id, tag)`` records the selectors its library
calls used. The tracker keeps those edges in a flat table keyed by
``(bot_id, tag)`` and maintains reverse indexes by selector kind, so that a
change to the bot set can be turned into the list of tags to recompute.

Selector kinds:
    AllSelector()                any bot anywhere (unfiltered queries)
    TagSelector(tag)             bots having ``tag``
    TagValueSelector(tag, value) bots whose ``tag`` equals ``value``
    BotTagSelector(bot_id, tag)  one specific bot's tag (reads through a view)
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .bot import Bot
from .filters import same_value
from .values import has_value, is_assignment, is_formula, parse_literal

Key = tuple[str, str]


@dataclass(frozen=True)
class AllSelector:
    pass


@dataclass(frozen=True)
class TagSelector:
    tag: str


@dataclass(frozen=True)
class TagValueSelector:
    tag: str
    value: Any


@dataclass(frozen=True)
class BotTagSelector:
    bot_id: str
    tag: str


Selector = AllSelector | TagSelector | TagValueSelector | BotTagSelector


class DependencyRecorder:
    """Collects the selectors used during one evaluation, without duplicates."""

    def __init__(self):
        self.selectors: list[Selector] = []

    def record(self, selector: Selector) -> None:
        if selector not in self.selectors:
            self.selectors.append(selector)

    def record_all(self) -> None:
        self.record(AllSelector())

    def record_tag(self, tag: str, value: Any = None) -> None:
        if value is None:
            self.record(TagSelector(tag))
        else:
            self.record(TagValueSelector(tag, value))

    def record_bot_tag(self, bot_id: str, tag: str) -> None:
        self.record(BotTagSelector(bot_id, tag))


class _OrderedKeys:
    """Insertion-ordered set of consumer keys."""

    def __init__(self):
        self._keys: dict[Key, None] = {}

    def add(self, items: Iterable[Key]) -> None:
        for item in items:
            self._keys.setdefault(item, None)

    def __iter__(self):
        return iter(self._keys)

    def to_list(self) -> list[Key]:
        return list(self._keys)


class DependencyTracker:
    """Edge table plus reverse indexes by selector kind."""

    def __init__(self):
        self._edges: dict[Key, list[Selector]] = {}
        self._all: dict[Key, None] = {}
        self._by_tag: dict[str, dict[Key, None]] = {}
        self._by_tag_value: dict[str, dict[Key, list[Any]]] = {}
        self._by_bot_tag: dict[Key, dict[Key, None]] = {}

    def set_dependencies(
        self, bot_id: str, tag: str, selectors: Iterable[Selector]
    ) -> None:
        """Replace the edges of ``(bot_id, tag)``. Stale edges are dropped first."""
        key = (bot_id, tag)
        self.remove_tag(bot_id, tag)
        edges = list(selectors)
        if not edges:
            return
        self._edges[key] = edges
        for selector in edges:
            match selector:
                case AllSelector():
                    self._all[key] = None
                case TagSelector(tag=t):
                    self._by_tag.setdefault(t, {})[key] = None
                case TagValueSelector(tag=t, value=v):
                    self._by_tag_value.setdefault(t, {}).setdefault(key, []).append(v)
                case BotTagSelector(bot_id=b, tag=t):
                    self._by_bot_tag.setdefault((b, t), {})[key] = None

    def remove_tag(self, bot_id: str, tag: str) -> None:
        key = (bot_id, tag)
        edges = self._edges.pop(key, None)
        if not edges:
            return
        for selector in edges:
            match selector:
                case AllSelector():
                    self._all.pop(key, None)
                case TagSelector(tag=t):
                    _discard(self._by_tag, t, key)
                case TagValueSelector(tag=t):
                    _discard(self._by_tag_value, t, key)
                case BotTagSelector(bot_id=b, tag=t):
                    _discard(self._by_bot_tag, (b, t), key)

    def remove_bot(self, bot_id: str) -> None:
        for key in [k for k in self._edges if k[0] == bot_id]:
            self.remove_tag(*key)

    def dependencies_of(self, bot_id: str, tag: str) -> list[Selector]:
        return list(self._edges.get((bot_id, tag), []))

    def tags_with_dependencies(self, bot_id: str) -> list[str]:
        return [tag for b, tag in self._edges if b == bot_id]

    def affected_by_added(self, bot: Bot) -> list[Key]:
        """Consumers whose selectors could match the newly added bot."""
        found = _OrderedKeys()
        found.add(self._all)
        for tag, raw in _matchable_tags(bot):
            found.add(self._by_tag.get(tag, {}))
            found.add(self._tag_value_consumers(tag, raw))
            found.add(self._by_bot_tag.get((bot.id, tag), {}))
        return found.to_list()

    def affected_by_removed(self, bot: Bot) -> list[Key]:
        """Consumers that may have seen the bot, judged by its last-known tags."""
        found = _OrderedKeys()
        found.add(self._all)
        for tag, raw in _matchable_tags(bot):
            found.add(self._by_tag.get(tag, {}))
            found.add(self._tag_value_consumers(tag, raw))
        for (producer, _), consumers in self._by_bot_tag.items():
            if producer == bot.id:
                found.add(consumers)
        return found.to_list()

    def affected_by_updated(self, bot: Bot, tags: Iterable[str]) -> list[Key]:
        """Consumers of the specific tags changed on ``bot``."""
        found = _OrderedKeys()
        found.add(self._all)
        found.add(self.affected_by_value_change(bot.id, tags))
        return found.to_list()

    def affected_by_value_change(self, bot_id: str, tags: Iterable[str]) -> list[Key]:
        """Consumers of the computed values of ``tags`` on one bot."""
        found = _OrderedKeys()
        for tag in tags:
            found.add(self._by_tag.get(tag, {}))
            found.add(self._by_tag_value.get(tag, {}))
            found.add(self._by_bot_tag.get((bot_id, tag), {}))
        return found.to_list()

    def _tag_value_consumers(self, tag: str, raw: Any) -> list[Key]:
        consumers = self._by_tag_value.get(tag, {})
        return [
            key
            for key, values in consumers.items()
            if any(_value_may_match(raw, v) for v in values)
        ]


def _value_may_match(raw: Any, value: Any) -> bool:
    # computed tags can hold any value until evaluated
    if is_formula(raw) or is_assignment(raw):
        return True
    if isinstance(raw, str):
        return same_value(parse_literal(raw), value) or raw == value
    return same_value(raw, value)


def _discard(index: dict, group: Any, key: Key) -> None:
    consumers = index.get(group)
    if consumers is None:
        return
    consumers.pop(key, None)
    if not consumers:
        del index[group]


def _matchable_tags(bot: Bot) -> list[tuple[str, Any]]:
    """Tag/value pairs a selector can match, including ``id`` and ``space``."""
    pairs: list[tuple[str, Any]] = [("id", bot.id)]
    if bot.space is not None:
        pairs.append(("space", bot.space))
    pairs.extend((tag, raw) for tag, raw in bot.tags.items() if has_value(raw))
    return pairs
