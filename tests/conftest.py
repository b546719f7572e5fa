"""Shared fixtures."""

import pytest

from botcalc import (
    CalculationContext,
    MemoryBotStore,
    PrecalculationManager,
    RuntimeConfig,
    create_bot,
)


@pytest.fixture
def config():
    return RuntimeConfig(max_depth=10)


@pytest.fixture
def store():
    return MemoryBotStore([create_bot("user")])


@pytest.fixture
def precalc(store, config):
    return PrecalculationManager(
        lambda: store.state,
        lambda: CalculationContext(list(store.state.values()), config=config),
        config,
    )


@pytest.fixture
def make_context(config):
    def make(*bots):
        return CalculationContext(list(bots), config=config)

    return make
