"""Shared fixtures for forecasting engine tests."""

import pytest

from models.types import MarketSnapshot


class ConstantRandom:
    """Stand-in for numpy Generator.random() that always returns one value."""

    def __init__(self, value: float = 0.5):
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


@pytest.fixture
def snapshot():
    return MarketSnapshot(
        price=2000.0,
        tvl=1_000_000.0,
        yield_pct=3.5,
        gas_price=20.0,
        volatility=0.25,
        timestamp=1_700_000_000.0,
    )


@pytest.fixture
def constant_rng():
    return ConstantRandom(0.5)
