"""Bot runtime: a store, a precalculation manager and formula writes, wired together."""

import logging
from collections.abc import Mapping
from typing import Any

from .bot import Bot, StateUpdate, UpdatedBot
from .config import RuntimeConfig
from .context import CalculationContext
from .filters import tag_matches_filter, tags_matching_filter
from .interpreter import Interpreter
from .precalculation import PrecalculationManager
from .sandbox import Sandbox
from .store import MemoryBotStore
from .values import prepare_tag_updates

logger = logging.getLogger(__name__)


class BotRuntime:
    """One independent bot-state instance.

    Every runtime owns its own store, sandbox and dependency tracker, so
    several runtimes can coexist in one process.
    """

    def __init__(
        self,
        store: MemoryBotStore | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.store = store or MemoryBotStore()
        self.config = config or RuntimeConfig()
        self.sandbox = Sandbox(Interpreter(energy=self.config.energy))
        self.precalculation = PrecalculationManager(
            lambda: self.store.state,
            self.create_context,
            self.config,
            apply_writes=self._apply_writes,
        )

    def create_context(self) -> CalculationContext:
        return CalculationContext(list(self.store.state.values()), self.sandbox, self.config)

    def apply_added(self, bots: list[Bot]) -> StateUpdate:
        """Add bots, evaluating their assignment tags once, and precalculate them."""
        context = self.create_context()
        prepared = []
        for bot in bots:
            tags = prepare_tag_updates(context, bot, bot.tags)
            prepared.append(bot.model_copy(update={"tags": tags}))
        added = self.store.add_bots(prepared)
        return self.precalculation.bots_added(added)

    def apply_removed(self, bot_ids: list[str]) -> StateUpdate:
        removed = self.store.remove_bots(bot_ids)
        return self.precalculation.bots_removed(removed)

    def apply_updated(
        self, entries: list[tuple[str, Mapping[str, Any]]]
    ) -> StateUpdate:
        """Write tags onto several bots and recompute what depends on them.

        ``entries`` is a list of ``(bot_id, tags)`` pairs. All writes land
        before anything is recomputed, so the whole list is one batch.
        """
        updates = []
        for bot_id, tags in entries:
            updated = self._write(bot_id, tags)
            if updated.tags:
                updates.append(updated)
        if not updates:
            return StateUpdate()
        return self.precalculation.bots_updated(updates)

    def set_tag(self, bot_id: str, tag: str, value: Any) -> StateUpdate:
        return self.apply_updated([(bot_id, {tag: value})])

    def get_all_precalculated_state(self) -> dict[str, dict[str, Any]]:
        return self.precalculation.get_all_precalculated_state()

    def tags_matching_filter(self, subject_id: str, other_id: str, event_name: str) -> list[str]:
        """Filter tags on ``other_id`` for ``event_name`` that match ``subject_id``."""
        subject = self.store.state[subject_id]
        other = self.store.state[other_id]
        return tags_matching_filter(subject, other, event_name)

    def tag_matches_filter(self, tag: str, bot_id: str, event_name: str) -> bool:
        return tag_matches_filter(tag, self.store.state[bot_id], event_name)

    def _write(self, bot_id: str, tags: Mapping[str, Any]) -> UpdatedBot:
        bot = self.store.state.get(bot_id)
        if bot is None:
            raise KeyError(f"unknown bot: {bot_id}")
        prepared = prepare_tag_updates(self.create_context(), bot, tags)
        return self.store.update_bot(bot_id, prepared)

    def _apply_writes(self, writes: dict[str, dict[str, Any]]) -> list[UpdatedBot]:
        updates = []
        for bot_id, tags in writes.items():
            if bot_id not in self.store.state:
                logger.warning("ignoring formula write to missing bot %s", bot_id)
                continue
            updated = self._write(bot_id, tags)
            if updated.tags:
                updates.append(updated)
        return updates
