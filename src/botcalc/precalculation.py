"""Precalculation manager: incremental recomputation of bot values.

Each batch (bots added, removed or updated) evaluates the tags that changed
directly, asks the dependency tracker which other tags could have seen the
change, re-evaluates those, and then keeps following value changes until
nothing else changes. The result is a sparse ``StateUpdate``:

    new bots          full ``{id, precalculated, tags, values}``
    updated bots      ``{tags: {changed}, values: {changed}}``
    affected bots     ``{values: {changed}}``
    removed bots      ``None``
"""

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .bot import Bot, PrecalculatedBot, StateUpdate, UpdatedBot, state_value
from .config import RuntimeConfig
from .context import CalculationContext
from .dependencies import DependencyTracker, Key
from .values import calculate_value, convert_to_copiable_value, has_value

logger = logging.getLogger(__name__)

# Applies queued formula writes ({bot_id: {tag: value}}) to the bot state
# and reports which tags actually changed.
WriteHandler = Callable[[dict[str, dict[str, Any]]], list[UpdatedBot]]


class PrecalculationError(Exception):
    """Internal bookkeeping is inconsistent (e.g. updating a bot never added)."""


class PrecalculationManager:
    """Keeps precalculated values in step with the bot state."""

    def __init__(
        self,
        get_state: Callable[[], Mapping[str, Bot]],
        create_context: Callable[[], CalculationContext],
        config: RuntimeConfig | None = None,
        apply_writes: WriteHandler | None = None,
    ):
        self.get_state = get_state
        self.create_context = create_context
        self.config = config or RuntimeConfig()
        self.log_formula_errors = self.config.log_formula_errors
        self.apply_writes = apply_writes
        self.bots_state: dict[str, PrecalculatedBot] = {}
        self.dependencies = DependencyTracker()

    def get_all_precalculated_state(self) -> dict[str, dict[str, Any]]:
        return {bot_id: bot.to_state() for bot_id, bot in self.bots_state.items()}

    def bots_added(self, bots: list[Bot]) -> StateUpdate:
        """Precalculate new bots and refresh the tags that can see them."""
        return self._apply_writes(*self._added(bots))

    def bots_removed(self, bot_ids: list[str]) -> StateUpdate:
        """Drop removed bots and refresh the tags that could see them."""
        return self._apply_writes(*self._removed(bot_ids))

    def bots_updated(self, updates: list[UpdatedBot]) -> StateUpdate:
        """Re-evaluate changed tags and refresh the tags that read them."""
        return self._apply_writes(*self._updated(updates))

    def _added(self, bots: list[Bot]) -> tuple[StateUpdate, CalculationContext]:
        context = self.create_context()
        update = StateUpdate(added_bots=[bot.id for bot in bots])

        for bot in bots:
            values = {tag: self._evaluate(context, bot, tag) for tag in bot.tags}
            precalculated = PrecalculatedBot(
                id=bot.id, tags=dict(bot.tags), values=values, space=bot.space
            )
            self.bots_state[bot.id] = precalculated
            update.state[bot.id] = precalculated.to_state()

        added = set(update.added_bots)
        affected = _unique(
            key
            for bot in bots
            for key in self.dependencies.affected_by_added(bot)
            if key[0] not in added
        )
        evaluated = {(bot.id, tag) for bot in bots for tag in bot.tags}
        self._refresh(context, affected, update, evaluated)
        logger.debug("added %d bots, %d tags affected", len(bots), len(affected))
        return update, context

    def _removed(self, bot_ids: list[str]) -> tuple[StateUpdate, CalculationContext]:
        unknown = [bot_id for bot_id in bot_ids if bot_id not in self.bots_state]
        if unknown:
            raise PrecalculationError(f"cannot remove bots never added: {unknown}")

        context = self.create_context()
        update = StateUpdate(removed_bots=list(bot_ids))
        removed = set(bot_ids)

        affected: list[Key] = []
        for bot_id in bot_ids:
            last = self.bots_state[bot_id]
            affected.extend(
                self.dependencies.affected_by_removed(
                    Bot(id=bot_id, tags=last.tags, space=last.space)
                )
            )
        for bot_id in bot_ids:
            del self.bots_state[bot_id]
            self.dependencies.remove_bot(bot_id)
            update.state[bot_id] = None

        affected = _unique(key for key in affected if key[0] not in removed)
        self._refresh(context, affected, update, set())
        logger.debug("removed %d bots, %d tags affected", len(bot_ids), len(affected))
        return update, context

    def _updated(
        self, updates: list[UpdatedBot]
    ) -> tuple[StateUpdate, CalculationContext]:
        unknown = [u.bot.id for u in updates if u.bot.id not in self.bots_state]
        if unknown:
            raise PrecalculationError(f"cannot update bots never added: {unknown}")

        context = self.create_context()
        update = StateUpdate()
        evaluated: set[Key] = set()
        changed_tags: list[tuple[Bot, list[str]]] = []

        for change in updates:
            bot = change.bot
            precalculated = self.bots_state[bot.id]
            entry = update.state.setdefault(bot.id, {"tags": {}, "values": {}})
            tags = list(change.tags)
            for tag in change.tags:
                raw = bot.tags.get(tag)
                evaluated.add((bot.id, tag))
                if has_value(raw):
                    value = self._evaluate(context, bot, tag)
                    precalculated.tags[tag] = raw
                    precalculated.values[tag] = value
                    entry["tags"][tag] = state_value(raw)
                    entry["values"][tag] = value
                else:
                    precalculated.tags.pop(tag, None)
                    precalculated.values.pop(tag, None)
                    self.dependencies.remove_tag(bot.id, tag)
                    entry["tags"][tag] = None
                    entry["values"][tag] = None
            if bot.space != precalculated.space:
                # selectors on ``space`` see this like a tag change
                precalculated.space = bot.space
                entry["space"] = bot.space
                tags.append("space")
            changed_tags.append((bot, tags))
            if bot.id not in update.updated_bots:
                update.updated_bots.append(bot.id)

        affected = _unique(
            key
            for bot, tags in changed_tags
            for key in self.dependencies.affected_by_updated(bot, tags)
            if key not in evaluated
        )
        self._refresh(context, affected, update, evaluated)
        logger.debug("updated %d bots, %d tags affected", len(updates), len(affected))
        return update, context

    def _evaluate(self, context: CalculationContext, bot: Bot, tag: str) -> Any:
        """Evaluate one tag, recording its dependencies. Errors become values."""
        raw = bot.tags.get(tag)
        if not has_value(raw):
            self.dependencies.remove_tag(bot.id, tag)
            return None

        with context.recording() as recorder:
            try:
                value = calculate_value(context, bot, tag, raw, raise_errors=True)
            except Exception as err:  # noqa: BLE001 - formula errors become values
                if self.log_formula_errors:
                    logger.error("formula error in %s#%s", bot.id, tag, exc_info=err)
                value = err
        self.dependencies.set_dependencies(bot.id, tag, recorder.selectors)
        return convert_to_copiable_value(value)

    def _refresh(
        self,
        context: CalculationContext,
        keys: list[Key],
        update: StateUpdate,
        evaluated: set[Key],
    ) -> None:
        """Re-evaluate ``keys``, then follow value changes until nothing new changes.

        Every key is evaluated at most once per batch. All reads in a batch
        go through one context over the current state, so a key's value is
        final once it has been evaluated.
        """
        visited = set(evaluated)
        pending = [key for key in keys if key not in visited]
        while pending:
            visited.update(pending)
            changed = self._recompute(context, pending, update)
            pending = _unique(
                key
                for bot_id, tags in changed.items()
                for key in self.dependencies.affected_by_value_change(bot_id, tags)
                if key not in visited
            )

    def _recompute(
        self, context: CalculationContext, keys: list[Key], update: StateUpdate
    ) -> dict[str, list[str]]:
        changed: dict[str, list[str]] = {}
        state = self.get_state()
        for bot_id, tag in keys:
            precalculated = self.bots_state.get(bot_id)
            bot = state.get(bot_id)
            if precalculated is None or bot is None:
                raise PrecalculationError(
                    f"dependency on {bot_id}#{tag} refers to an unknown bot"
                )

            value = self._evaluate(context, bot, tag)
            if _same(precalculated.values.get(tag), value):
                continue

            precalculated.values[tag] = value
            entry = update.state.get(bot_id)
            if entry is None:
                entry = update.state[bot_id] = {"values": {}}
            entry["values"][tag] = value
            changed.setdefault(bot_id, []).append(tag)
            if bot_id not in update.added_bots and bot_id not in update.updated_bots:
                update.updated_bots.append(bot_id)
        return changed

    def _apply_writes(self, update: StateUpdate, context: CalculationContext) -> StateUpdate:
        """Feed tag writes queued by formulas back in as follow-up update batches."""
        writes = context.take_writes()
        rounds = 0
        while writes and self.apply_writes is not None:
            if rounds >= self.config.max_write_rounds:
                logger.warning(
                    "dropping formula writes after %d rounds: %s",
                    rounds,
                    sorted(writes),
                )
                break
            rounds += 1
            updates = [u for u in self.apply_writes(writes) if u.bot.id in self.bots_state]
            if not updates:
                break
            follow_up, context = self._updated(updates)
            update = update.merge(follow_up)
            writes = context.take_writes()
        return update


def _same(old: Any, new: Any) -> bool:
    if isinstance(old, float) and isinstance(new, float):
        if math.isnan(old) and math.isnan(new):
            return True
    return type(old) is type(new) and old == new


def _unique(keys: Iterable[Key]) -> list[Key]:
    return list(dict.fromkeys(keys))
