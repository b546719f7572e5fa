"""Tests for incremental precalculation."""

import logging

import pytest

from botcalc import (
    BotRuntime,
    FormulaSyntaxError,
    PrecalculationError,
    RuntimeConfig,
    StateUpdate,
    UpdatedBot,
    create_bot,
)

COUNT_BOBS = '=getBots("#name", "bob").length'


@pytest.fixture
def add(store, precalc):
    def add(*bots):
        return precalc.bots_added(store.add_bots(bots))

    return add


@pytest.fixture
def remove(store, precalc):
    def remove(*bot_ids):
        return precalc.bots_removed(store.remove_bots(bot_ids))

    return remove


@pytest.fixture
def update(store, precalc):
    def update(bot_id, tags):
        return precalc.bots_updated([store.update_bot(bot_id, tags)])

    return update


class TestBotsAdded:
    def test_calculates_all_tags(self, add):
        result = add(create_bot("test", {"abc": "def", "formula": '=getTag(this, "#abc")'}))

        assert result.state == {
            "test": {
                "id": "test",
                "precalculated": True,
                "tags": {"abc": "def", "formula": '=getTag(this, "#abc")'},
                "values": {"abc": "def", "formula": "def"},
            }
        }
        assert result.added_bots == ["test"]
        assert result.updated_bots == []

    def test_space_is_kept(self, add):
        result = add(create_bot("test", {"abc": "def"}, space="tempLocal"))
        assert result.state["test"]["space"] == "tempLocal"

    def test_updates_formulas_that_see_new_bot(self, add):
        add(create_bot("test", {"formula": COUNT_BOBS}))

        result = add(create_bot("test2", {"name": "bob"}))

        assert result.state == {
            "test2": {
                "id": "test2",
                "precalculated": True,
                "tags": {"name": "bob"},
                "values": {"name": "bob"},
            },
            "test": {"values": {"formula": 1}},
        }
        assert result.added_bots == ["test2"]
        assert result.updated_bots == ["test"]

    def test_unmatched_bot_leaves_others_alone(self, add):
        add(create_bot("test", {"formula": COUNT_BOBS}))

        result = add(create_bot("test2", {"name": "alice"}))

        assert list(result.state) == ["test2"]
        assert result.updated_bots == []

    def test_only_matching_bots_in_batch_count(self, add):
        add(
            create_bot("test", {"formula": COUNT_BOBS}),
            create_bot("test2", {"formula": '=getBots("#color").length'}),
        )

        result = add(create_bot("bob", {"name": "bob"}), create_bot("other", {"size": "3"}))

        assert list(result.state) == ["bob", "other", "test"]
        assert result.state["test"] == {"values": {"formula": 1}}
        assert result.updated_bots == ["test"]

    def test_one_failing_tag_leaves_the_rest(self, add):
        result = add(
            create_bot(
                "test",
                {"ok": "=1 + 1", "bad": '=throw new Error("Test Error")', "plain": "x"},
            )
        )

        assert result.state["test"]["values"] == {
            "ok": 2,
            "bad": "Error: Test Error",
            "plain": "x",
        }

    def test_function_values(self, add):
        result = add(create_bot("test", {"formula": "=getBots"}))
        assert result.state["test"]["values"]["formula"] == "[Function getBots]"

    def test_error_values(self, add):
        result = add(create_bot("test", {"formula": '=throw new Error("Test Error")'}))
        assert result.state["test"]["values"]["formula"] == "Error: Test Error"

    def test_bots_state(self, add, precalc):
        add(create_bot("test", {"abc": "def"}), create_bot("test2", {"num": "5"}))

        assert precalc.get_all_precalculated_state() == {
            "test": {
                "id": "test",
                "precalculated": True,
                "tags": {"abc": "def"},
                "values": {"abc": "def"},
            },
            "test2": {
                "id": "test2",
                "precalculated": True,
                "tags": {"num": "5"},
                "values": {"num": 5},
            },
        }


class TestBotsRemoved:
    def test_removed_bots_are_null(self, add, remove, precalc):
        add(create_bot("test", {"abc": "def"}))

        result = remove("test")

        assert result.state == {"test": None}
        assert result.removed_bots == ["test"]
        assert precalc.get_all_precalculated_state() == {}

    def test_updates_formulas_that_saw_removed_bot(self, add, remove):
        add(create_bot("test", {"formula": COUNT_BOBS}))
        add(create_bot("test2", {"name": "bob"}))

        result = remove("test2")

        assert result.state == {"test2": None, "test": {"values": {"formula": 0}}}
        assert result.updated_bots == ["test"]

    def test_removing_bots_that_depend_on_each_other(self, add, remove, precalc):
        add(
            create_bot("test", {"name": "bob", "formula": COUNT_BOBS}),
            create_bot("test2", {"name": "bob", "formula": COUNT_BOBS}),
        )

        result = remove("test", "test2")

        assert result.state == {"test": None, "test2": None}
        assert result.updated_bots == []
        assert precalc.get_all_precalculated_state() == {}

    def test_unknown_bot(self, precalc):
        with pytest.raises(PrecalculationError):
            precalc.bots_removed(["missing"])


class TestBotsUpdated:
    def test_own_dependent_tags(self, add, update):
        add(create_bot("test", {"abc": "def", "formula": '=getTag(this, "#abc")'}))

        result = update("test", {"abc": "ghi"})

        assert result.state == {
            "test": {
                "tags": {"abc": "ghi"},
                "values": {"abc": "ghi", "formula": "ghi"},
            }
        }
        assert result.updated_bots == ["test"]

    def test_other_bots(self, add, update):
        add(create_bot("test", {"formula": COUNT_BOBS}), create_bot("test2", {"name": "bob"}))

        result = update("test2", {"name": "alice"})

        assert result.state == {
            "test2": {"tags": {"name": "alice"}, "values": {"name": "alice"}},
            "test": {"values": {"formula": 0}},
        }
        assert result.updated_bots == ["test2", "test"]

    @pytest.mark.parametrize("empty", ["", None])
    def test_cleared_tags_are_null(self, add, update, precalc, empty):
        add(create_bot("test", {"formula": "=1 + 1"}))

        result = update("test", {"formula": empty})

        assert result.state == {"test": {"tags": {"formula": None}, "values": {"formula": None}}}
        assert precalc.bots_state["test"].tags == {}
        assert precalc.dependencies.tags_with_dependencies("test") == []

    def test_formula_replaced(self, add, update):
        add(create_bot("test", {"formula": "=1 + 1"}))

        result = update("test", {"formula": "=2 + 2"})

        assert result.state["test"]["values"] == {"formula": 4}

    def test_value_changes_propagate(self, add, update):
        add(
            create_bot("a", {"x": "1"}),
            create_bot("b", {"y": '=getBot("#x").x + 1'}),
            create_bot("c", {"z": '=getBot("#y").y * 10'}),
        )

        result = update("a", {"x": "5"})

        assert result.state == {
            "a": {"tags": {"x": "5"}, "values": {"x": 5}},
            "b": {"values": {"y": 6}},
            "c": {"values": {"z": 60}},
        }
        assert result.updated_bots == ["a", "b", "c"]

    def test_unknown_bot(self, store, precalc):
        store.add_bots([create_bot("test")])
        with pytest.raises(PrecalculationError):
            precalc.bots_updated([store.update_bot("test", {"abc": "x"})])


class TestErrorLogging:
    def test_errors_logged_when_enabled(self, add, precalc, caplog):
        precalc.log_formula_errors = True

        with caplog.at_level(logging.ERROR, logger="botcalc.precalculation"):
            result = add(create_bot("test", {"formula": "=getBots("}))

        assert result.state["test"]["values"]["formula"].startswith("SyntaxError")
        assert len(caplog.records) == 1
        assert caplog.records[0].exc_info[0] is FormulaSyntaxError

    def test_errors_not_logged_by_default(self, add, caplog):
        with caplog.at_level(logging.ERROR, logger="botcalc.precalculation"):
            add(create_bot("test", {"formula": "=getBots("}))

        assert caplog.records == []


class TestFormulaWrites:
    def test_set_tag_applies_after_batch(self):
        runtime = BotRuntime()

        result = runtime.apply_added([create_bot("test", {"trigger": '=setTag(this, "#count", 5)'})])

        assert result.state["test"]["values"] == {"trigger": 5, "count": 5}
        assert result.added_bots == ["test"]
        assert result.updated_bots == []
        assert runtime.store.state["test"].tags["count"] == 5

    def test_writes_reach_other_bots(self):
        runtime = BotRuntime()
        runtime.apply_added([create_bot("target", {"label": "old"})])

        result = runtime.apply_added(
            [create_bot("writer", {"trigger": '=setTag(getBot("#label"), "#label", "new")'})]
        )

        assert result.state["target"] == {"tags": {"label": "new"}, "values": {"label": "new"}}
        assert result.updated_bots == ["target"]

    def test_write_rounds_are_bounded(self, caplog):
        runtime = BotRuntime(config=RuntimeConfig(max_write_rounds=3))

        with caplog.at_level(logging.WARNING, logger="botcalc.precalculation"):
            runtime.apply_added(
                [
                    create_bot(
                        "test",
                        {"count": "0", "trigger": '=setTag(this, "#count", this.count + 1)'},
                    )
                ]
            )

        assert "dropping formula writes" in caplog.text
        assert runtime.store.state["test"].tags["count"] == 3


class TestReservedKeys:
    def test_id_selector_sees_added_and_removed_bots(self, add, remove):
        add(create_bot("c", {"x": '=getBots("#id", "b").length'}))

        result = add(create_bot("b"))
        assert result.state["c"] == {"values": {"x": 1}}

        result = remove("b")
        assert result.state["c"] == {"values": {"x": 0}}

    def test_id_tag_values(self, add):
        add(create_bot("c", {"x": '=getBotTagValues("#id").length'}))

        result = add(create_bot("b"))

        assert result.state["c"] == {"values": {"x": 3}}

    def test_space_selector_sees_added_bot(self, add):
        add(create_bot("c", {"x": '=getBots("#space", "tempLocal").length'}))

        result = add(create_bot("b", space="tempLocal"))

        assert result.state["c"] == {"values": {"x": 1}}
        assert result.updated_bots == ["c"]

    def test_space_change_is_an_update(self, add, store, precalc):
        add(
            create_bot("b"),
            create_bot("c", {"x": '=getBots("#space", "tempLocal").length'}),
        )
        store.state["b"] = store.state["b"].model_copy(update={"space": "tempLocal"})

        result = precalc.bots_updated([UpdatedBot(bot=store.state["b"], tags=[])])

        assert result.state["b"]["space"] == "tempLocal"
        assert result.state["c"] == {"values": {"x": 1}}
        assert precalc.bots_state["b"].space == "tempLocal"


class TestPropagation:
    def chain(self, length):
        bots = [create_bot("b00", {"k": "0", "v": "1"})]
        for n in range(1, length):
            bots.append(
                create_bot(f"b{n:02d}", {"k": str(n), "v": f'=getBots("#k", {n - 1})[0].v + 1'})
            )
        return bots

    def test_long_chain_updates_every_link(self):
        runtime = BotRuntime()
        for bot in reversed(self.chain(16)):
            runtime.apply_added([bot])

        result = runtime.set_tag("b00", "v", "100")

        values = {
            bot_id: state["values"]["v"]
            for bot_id, state in runtime.get_all_precalculated_state().items()
        }
        assert values == {f"b{n:02d}": 100 + n for n in range(16)}
        assert result.state["b15"] == {"values": {"v": 115}}

    def test_each_tag_evaluated_once(self, add, update, precalc, monkeypatch):
        add(
            create_bot("a", {"x": "1"}),
            create_bot("b", {"y": '=getBot("#x").x + 1', "z": "=this.y + 1"}),
            create_bot("c", {"w": '=getBot("#z").z + getBot("#y").y'}),
        )
        evaluated = []
        evaluate = precalc._evaluate

        def counting(context, bot, tag):
            evaluated.append((bot.id, tag))
            return evaluate(context, bot, tag)

        monkeypatch.setattr(precalc, "_evaluate", counting)

        result = update("a", {"x": "5"})

        assert result.state["c"] == {"values": {"w": 13}}
        assert len(evaluated) == len(set(evaluated))


class TestIdempotence:
    def test_incremental_matches_fresh(self):
        incremental = BotRuntime()
        incremental.apply_added([create_bot("a", {"n": "1"})])
        incremental.apply_added(
            [create_bot("b", {"n": "2", "sum": '=math.sum(getBotTagValues("#n"))'})]
        )
        incremental.apply_added(
            [
                create_bot("c", {"name": "bob"}),
                create_bot("d", {"count": COUNT_BOBS, "double": '=getBot("#sum").sum * 2'}),
            ]
        )
        incremental.set_tag("a", "n", "10")
        incremental.apply_removed(["c"])
        incremental.set_tag("b", "name", "bob")

        fresh = BotRuntime()
        fresh.apply_added(list(incremental.store.state.values()))

        assert incremental.get_all_precalculated_state() == fresh.get_all_precalculated_state()
        assert fresh.get_all_precalculated_state()["d"]["values"] == {"count": 1, "double": 24}

    def test_repeated_update_is_empty(self):
        runtime = BotRuntime()
        runtime.apply_added(
            [create_bot("a", {"n": "1"}), create_bot("b", {"m": '=getBot("#n").n'})]
        )

        runtime.set_tag("a", "n", "2")

        assert runtime.set_tag("a", "n", "2") == StateUpdate()
        assert runtime.get_all_precalculated_state()["b"]["values"] == {"m": 2}
