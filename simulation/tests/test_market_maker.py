"""Tests for market-maker inventory and spread multipliers."""

import random

import pytest

from models.config import MarketMakerConfig
from simulation.market_maker import (
    apply_fill,
    calculate_spread_multiplier,
    can_accept_sell,
    can_fill_buy,
    initial_inventories,
    rebalance,
    spread_multiplier,
)


@pytest.fixture
def mm_config() -> MarketMakerConfig:
    return MarketMakerConfig()


@pytest.fixture
def inventories(mm_config):
    return initial_inventories(["AAPL", "XOM"], mm_config)


# =============================================================================
# SPREAD MULTIPLIER
# =============================================================================


class TestSpreadMultiplier:

    @pytest.mark.parametrize("inventory", [0, 5_000, 10_000])
    def test_at_or_below_low_threshold_is_maximal(self, mm_config, inventory):
        assert calculate_spread_multiplier(inventory, 100_000, mm_config) == 3.0

    @pytest.mark.parametrize("inventory", [190_000, 250_000])
    def test_at_or_above_high_threshold_is_minimal(self, mm_config, inventory):
        assert calculate_spread_multiplier(inventory, 100_000, mm_config) == 0.5

    def test_exactly_one_at_base(self, mm_config):
        assert calculate_spread_multiplier(100_000, 100_000, mm_config) == 1.0

    def test_monotonic_in_inventory(self, mm_config):
        values = [calculate_spread_multiplier(i, 100_000, mm_config) for i in range(0, 200_001, 10_000)]
        assert values == sorted(values, reverse=True)


# =============================================================================
# FILLS AND REBALANCING
# =============================================================================


class TestInventory:

    def test_trader_buy_removes_and_sell_adds(self, inventories, mm_config):
        after_buy = apply_fill(inventories, "AAPL", "buy", 1_000, mm_config)
        assert after_buy["AAPL"].inventory == 99_000
        after_sell = apply_fill(after_buy, "AAPL", "sell", 3_000, mm_config)
        assert after_sell["AAPL"].inventory == 102_000
        assert after_sell["AAPL"].spread_multiplier < 1.0

    def test_agent_fill_has_half_effect_rounded_down(self, inventories, mm_config):
        updated = apply_fill(inventories, "AAPL", "buy", 101, mm_config, is_agent=True)
        assert updated["AAPL"].inventory == 100_000 - 50

    def test_inventory_never_negative(self, inventories, mm_config):
        updated = apply_fill(inventories, "AAPL", "buy", 250_000, mm_config)
        assert updated["AAPL"].inventory == 0
        assert updated["AAPL"].spread_multiplier == 3.0

    def test_random_sequence_stays_non_negative(self, inventories, mm_config):
        rng = random.Random(11)
        state = inventories
        for _ in range(500):
            side = rng.choice(["buy", "sell"])
            state = apply_fill(state, "XOM", side, rng.randint(1, 60_000), mm_config, is_agent=rng.random() < 0.5)
            if rng.random() < 0.3:
                state = rebalance(state, mm_config)
            assert state["XOM"].inventory >= 0

    def test_rebalance_closes_one_percent_of_gap(self, inventories, mm_config):
        drained = apply_fill(inventories, "AAPL", "buy", 50_000, mm_config)
        rebalanced = rebalance(drained, mm_config)
        assert rebalanced["AAPL"].inventory == 50_500
        assert rebalanced["XOM"] is drained["XOM"]

    def test_unknown_symbol_is_noop(self, inventories, mm_config):
        assert apply_fill(inventories, "ZZZZ", "buy", 10, mm_config) is inventories
        assert spread_multiplier(inventories, "ZZZZ") == 1.0

    def test_liquidity_checks(self, inventories, mm_config):
        assert can_fill_buy(inventories, "AAPL", 100_000)
        assert not can_fill_buy(inventories, "AAPL", 100_001)
        assert can_accept_sell(inventories, "AAPL")
        assert not can_accept_sell(inventories, "ZZZZ")
