"""In-process bot state store."""

from collections.abc import Iterable, Mapping
from typing import Any

from .bot import Bot, UpdatedBot
from .values import has_value


class MemoryBotStore:
    """Holds raw bots by id. Bots are replaced, never mutated in place."""

    def __init__(self, bots: Iterable[Bot] = ()):
        self.state: dict[str, Bot] = {}
        self.add_bots(bots)

    def add_bots(self, bots: Iterable[Bot]) -> list[Bot]:
        added = []
        for bot in bots:
            tags = {tag: value for tag, value in bot.tags.items() if has_value(value)}
            stored = bot.model_copy(update={"tags": tags})
            self.state[stored.id] = stored
            added.append(stored)
        return added

    def remove_bots(self, bot_ids: Iterable[str]) -> list[str]:
        removed = []
        for bot_id in bot_ids:
            if self.state.pop(bot_id, None) is not None:
                removed.append(bot_id)
        return removed

    def update_bot(self, bot_id: str, tags: Mapping[str, Any]) -> UpdatedBot:
        """Write tags onto a bot. Absent values delete the tag.

        Only tags whose raw value actually changed are reported.
        """
        bot = self.state.get(bot_id)
        if bot is None:
            raise KeyError(f"unknown bot: {bot_id}")

        new_tags = dict(bot.tags)
        changed = []
        for tag, value in tags.items():
            if has_value(value):
                if tag not in new_tags or new_tags[tag] != value:
                    new_tags[tag] = value
                    changed.append(tag)
            elif tag in new_tags:
                del new_tags[tag]
                changed.append(tag)

        updated = bot.model_copy(update={"tags": new_tags})
        self.state[bot_id] = updated
        return UpdatedBot(bot=updated, tags=changed)
