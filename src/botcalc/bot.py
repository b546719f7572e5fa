"""Bot data model: bots, assignments, precalculated bots and state updates."""

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Assignment(BaseModel):
    """A formula evaluated once when written, then served from ``value``.

    ``value`` is only trusted once ``editing`` is False, i.e. after the
    formula has been evaluated at least once.
    """

    model_config = ConfigDict(populate_by_name=True)

    is_assignment: bool = Field(default=True, alias="isAssignment")
    editing: bool = True
    formula: str
    value: Any = None


class Bot(BaseModel):
    """An addressable entity with an id and a tag map."""

    id: str
    tags: dict[str, Any] = {}
    space: str | None = None


class PrecalculatedBot(BaseModel):
    """A bot's raw tags paired with their most recently computed values."""

    id: str
    precalculated: bool = True
    tags: dict[str, Any] = {}
    values: dict[str, Any] = {}
    space: str | None = None

    def to_state(self) -> dict[str, Any]:
        """Plain dict form used in state updates (``space`` only when set)."""
        state = {
            "id": self.id,
            "precalculated": True,
            "tags": {tag: state_value(raw) for tag, raw in self.tags.items()},
            "values": dict(self.values),
        }
        if self.space is not None:
            state["space"] = self.space
        return state


class UpdatedBot(BaseModel):
    """A change notification: the bot's new state and the tags that changed."""

    bot: Bot
    tags: list[str]


class StateUpdate(BaseModel):
    """Sparse diff returned by every recomputation batch."""

    state: dict[str, dict[str, Any] | None] = {}
    added_bots: list[str] = []
    removed_bots: list[str] = []
    updated_bots: list[str] = []

    def merge(self, other: "StateUpdate") -> "StateUpdate":
        """Fold a follow-up update into this one, keeping first-seen order."""
        state = dict(self.state)
        for bot_id, partial in other.state.items():
            current = state.get(bot_id)
            if partial is None or current is None or bot_id not in state:
                state[bot_id] = partial
                continue
            merged = dict(current)
            for key, sub in partial.items():
                if isinstance(sub, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **sub}
                else:
                    merged[key] = sub
            state[bot_id] = merged

        return StateUpdate(
            state=state,
            added_bots=_union(self.added_bots, other.added_bots),
            removed_bots=_union(self.removed_bots, other.removed_bots),
            updated_bots=[
                bot_id
                for bot_id in _union(self.updated_bots, other.updated_bots)
                if bot_id not in self.added_bots
            ],
        )


def _union(first: list[str], second: list[str]) -> list[str]:
    result = list(first)
    for item in second:
        if item not in result:
            result.append(item)
    return result


def create_bot(
    id: str | None = None,  # noqa: A002
    tags: dict[str, Any] | None = None,
    space: str | None = None,
) -> Bot:
    """Create a bot with the given tags and a random id when none is given."""
    return Bot(id=id or str(uuid.uuid4()), tags=dict(tags or {}), space=space)


def create_precalculated_bot(
    id: str | None = None,  # noqa: A002
    values: dict[str, Any] | None = None,
    tags: dict[str, Any] | None = None,
    space: str | None = None,
) -> PrecalculatedBot:
    """Create a precalculated bot. Tags default to the values."""
    values = dict(values or {})
    return PrecalculatedBot(
        id=id or str(uuid.uuid4()),
        tags=dict(tags) if tags is not None else dict(values),
        values=values,
        space=space,
    )


def state_value(raw: Any) -> Any:
    """Raw tag value in its plain-data form (assignments become mappings)."""
    if isinstance(raw, Assignment):
        return raw.model_dump(by_alias=True)
    return raw
