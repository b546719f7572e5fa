"""Calculation context: the bot set, the sandbox and the formula library.

A context is created per recomputation batch. Formulas reach other bots
through ``BotView`` objects, whose reads go back through the context so
that they are recorded as dependencies and evaluated with the same
limits as the formula that made them.
"""

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from .bot import Bot
from .config import RuntimeConfig
from .dependencies import DependencyRecorder, Selector
from .interpreter import Energy, RanOutOfEnergyError
from .sandbox import Sandbox, SandboxResult
from .values import calculate_bot_value


class FormulaRecursionError(Exception):
    """Formula reads nested deeper than the configured limit (usually a cycle)."""

    name = "RecursionError"


class TagsView(Mapping):
    """Computed tag values of one bot, read through the context."""

    def __init__(self, view: "BotView"):
        self._view = view

    def __getitem__(self, tag: str) -> Any:
        return self._view.get(tag)

    def __iter__(self) -> Iterator[str]:
        return iter(self._view.bot.tags)

    def __len__(self) -> int:
        return len(self._view.bot.tags)


class RawTagsView(Mapping):
    """Raw (uncomputed) tag values of one bot."""

    def __init__(self, view: "BotView"):
        self._view = view

    def __getitem__(self, tag: str) -> Any:
        self._view.context.record_bot_tag(self._view.id, tag)
        return self._view.bot.tags.get(tag)

    def __iter__(self) -> Iterator[str]:
        return iter(self._view.bot.tags)

    def __len__(self) -> int:
        return len(self._view.bot.tags)


class BotView:
    """Accessor handed to formulas in place of a bot.

    ``view.name`` and ``view.tags.name`` read the computed value of the
    ``name`` tag. Writes are queued on the context and applied after the
    batch.
    """

    def __init__(self, context: "CalculationContext", bot: Bot):
        self.context = context
        self.bot = bot

    @property
    def id(self) -> str:
        return self.bot.id

    @property
    def bot_id(self) -> str:
        return self.bot.id

    @property
    def space(self) -> str | None:
        return self.bot.space

    @property
    def tags(self) -> TagsView:
        return TagsView(self)

    @property
    def raw(self) -> RawTagsView:
        return RawTagsView(self)

    def get(self, tag: str) -> Any:
        if tag != "id":
            self.context.record_bot_tag(self.id, tag)
        return self.context.compute(self.bot, tag)

    def set(self, tag: str, value: Any) -> Any:
        self.context.queue_write(self.id, tag, value)
        return value

    def delete(self, tag: str) -> None:
        self.context.queue_write(self.id, tag, None)

    def member(self, name: str) -> Any:
        """Property access from formulas."""
        if name == "id":
            return self.id
        if name == "space":
            self.context.record_bot_tag(self.id, "space")
            return self.space
        if name == "tags":
            return self.tags
        if name == "raw":
            return self.raw
        return self.get(name)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BotView) and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"BotView({self.id!r})"


class CalculationContext:
    """Bundles the current bot set with a sandbox and the formula library."""

    def __init__(
        self,
        objects: list[Bot],
        sandbox: Sandbox | None = None,
        config: RuntimeConfig | None = None,
    ):
        from .library import create_library

        self.objects = sorted(objects, key=lambda b: b.id)
        self.sandbox = sandbox or Sandbox()
        self.config = config or RuntimeConfig()
        self.depth = 0
        self.energy: Energy | None = None
        self.recorder: DependencyRecorder | None = None
        self.writes: dict[str, dict[str, Any]] = {}
        self._by_id = {bot.id: bot for bot in self.objects}
        self._values: dict[tuple[str, str], tuple[Any, list[Selector]]] = {}
        self.library = create_library(self)

    def bot_by_id(self, bot_id: str) -> Bot | None:
        return self._by_id.get(bot_id)

    def view(self, bot: "Bot | BotView") -> BotView:
        if isinstance(bot, BotView):
            return bot
        return BotView(self, bot)

    def evaluate_formula(self, bot: "Bot | BotView", tag: str, formula: str) -> SandboxResult:
        """Run a formula with ``this`` bound to ``bot``.

        Limit errors raised by nested reads propagate to the outermost
        evaluation, which reports them as its own failure.
        """
        nested = self.depth > 0
        if self.depth >= self.config.max_depth:
            raise FormulaRecursionError(
                f"formula nesting exceeded {self.config.max_depth} levels at #{tag}"
            )
        if not nested:
            self.energy = Energy(self.config.energy)
        self.depth += 1
        try:
            result = self.sandbox.run(formula, self.view(bot), self.library, self.energy)
        finally:
            self.depth -= 1
            if not nested:
                self.energy = None
        if nested and isinstance(
            result.error, (FormulaRecursionError, RanOutOfEnergyError, RecursionError)
        ):
            raise result.error
        return result

    def compute(self, bot: "Bot | BotView", tag: str) -> Any:
        """Computed value of a tag read by a formula, cached for this context.

        The selectors recorded while computing the value are cached with it
        and replayed on every read, so each reader depends on everything the
        value was computed from.
        """
        if isinstance(bot, BotView):
            bot = bot.bot
        key = (bot.id, tag)
        cached = self._values.get(key)
        if cached is not None:
            value, selectors = cached
            self._replay(selectors)
            return value

        recorder = DependencyRecorder()
        try:
            with self.recording(recorder):
                value = calculate_bot_value(self, bot, tag)
        finally:
            # a failed read still depends on what it saw
            self._replay(recorder.selectors)
        self._values[key] = (value, recorder.selectors)
        return value

    def _replay(self, selectors: list[Selector]) -> None:
        if self.recorder is not None:
            for selector in selectors:
                self.recorder.record(selector)

    @contextmanager
    def recording(
        self, recorder: DependencyRecorder | None = None
    ) -> Iterator[DependencyRecorder]:
        """Collect the selectors used by evaluations inside the block."""
        previous = self.recorder
        self.recorder = recorder or DependencyRecorder()
        try:
            yield self.recorder
        finally:
            self.recorder = previous

    def record_all(self) -> None:
        if self.recorder is not None:
            self.recorder.record_all()

    def record_tag(self, tag: str, value: Any = None) -> None:
        if self.recorder is not None:
            self.recorder.record_tag(tag, value)

    def record_bot_tag(self, bot_id: str, tag: str) -> None:
        if self.recorder is not None:
            self.recorder.record_bot_tag(bot_id, tag)

    def queue_write(self, bot_id: str, tag: str, value: Any) -> None:
        self.writes.setdefault(bot_id, {})[tag] = value

    def take_writes(self) -> dict[str, dict[str, Any]]:
        writes = self.writes
        self.writes = {}
        return writes
