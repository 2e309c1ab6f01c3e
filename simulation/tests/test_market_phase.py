"""Tests for the phase state machine, crashes and the Fear/Greed index."""

import random

import pytest

from models.config import PhaseConfig
from models.phase import MarketMetrics, MarketPhaseState
from simulation.market_phase import (
    advance_phases,
    calculate_fear_greed,
    check_crash,
    check_sector_transition,
    global_phase_from_sectors,
    initialize_phases,
    record_cycle,
    spread_modifier,
    volatility_multipliers,
)


@pytest.fixture
def phase_config() -> PhaseConfig:
    return PhaseConfig()


class _AlwaysLow(random.Random):
    """Generator whose ``random()`` always passes probability gates."""

    def random(self):
        return 0.0


class _AlwaysHigh(random.Random):
    def random(self):
        return 0.999999


# =============================================================================
# GLOBAL PHASE AGGREGATION
# =============================================================================


class TestGlobalPhase:

    def test_uniform_sectors(self):
        assert global_phase_from_sectors({s: "boom" for s in ("a", "b", "c", "d")}) == "boom"

    def test_rounded_average(self):
        # scores 0, 4, 4, 4 -> 3.0 -> recovery
        phases = {"tech": "panic", "finance": "prosperity", "industrial": "prosperity", "commodities": "prosperity"}
        assert global_phase_from_sectors(phases) == "recovery"

    def test_half_rounds_up(self):
        # scores 2, 3 -> 2.5 -> recovery
        assert global_phase_from_sectors({"tech": "consolidation", "finance": "recovery"}) == "recovery"

    def test_initialization_derives_global_phase(self, phase_config):
        state = initialize_phases(phase_config, random.Random(3))
        assert state.global_phase == global_phase_from_sectors(state.sector_phases)
        assert 0 <= state.fear_greed_index <= 100


# =============================================================================
# TRANSITIONS AND CRASHES
# =============================================================================


class TestTransitions:

    def test_nothing_before_min_duration(self, phase_config):
        assert check_sector_transition("prosperity", 10, 0.9, phase_config, _AlwaysLow()) is None

    def test_transition_after_min_duration(self, phase_config):
        assert check_sector_transition("prosperity", 30, 0.9, phase_config, _AlwaysLow()) == "boom"

    def test_random_gate_blocks(self, phase_config):
        assert check_sector_transition("prosperity", 30, 0.9, phase_config, _AlwaysHigh()) is None

    def test_panic_only_reachable_by_crash(self, phase_config):
        for phase in ("prosperity", "boom", "consolidation", "recession", "recovery"):
            for momentum in (-1.0, 0.0, 1.0):
                assert check_sector_transition(phase, 500, momentum, phase_config, _AlwaysLow()) != "panic"

    def test_crash_probability_and_impact(self, phase_config):
        impact = check_crash(5, phase_config, _AlwaysLow())
        assert 0.08 <= impact <= 0.15
        assert check_crash(5, phase_config, _AlwaysHigh()) is None

    def test_crash_forces_panic_and_resets_counters(self, phase_config):
        state = MarketPhaseState(overheat_cycles={"tech": 3, "finance": 2, "industrial": 0, "commodities": 0})
        metrics = MarketMetrics(sector_overheated={"tech": True, "finance": False})
        update = advance_phases(state, metrics, phase_config, _AlwaysLow())
        assert update.state.sector_phases["tech"] == "panic"
        assert update.state.overheat_cycles["tech"] == 0
        assert update.state.overheat_cycles["finance"] == 0
        assert update.state.cycles_in_sector_phase["tech"] == 0
        assert [c.sector for c in update.crashes] == ["tech"]
        assert update.state.history.total_crashes == 1
        assert update.state.global_phase == global_phase_from_sectors(update.state.sector_phases)

    def test_overheat_counter_increments(self, phase_config):
        state = MarketPhaseState()
        metrics = MarketMetrics(sector_overheated={"industrial": True})
        update = advance_phases(state, metrics, phase_config, _AlwaysHigh())
        assert update.state.overheat_cycles["industrial"] == 1
        assert update.crashes == []

    def test_global_counter_resets_only_on_change(self, phase_config):
        state = MarketPhaseState(cycles_in_global_phase=7)
        update = advance_phases(state, MarketMetrics(), phase_config, _AlwaysHigh())
        assert update.state.global_phase == "prosperity"
        assert update.state.cycles_in_global_phase == 8


# =============================================================================
# MODIFIERS, FEAR/GREED AND HISTORY
# =============================================================================


class TestModifiers:

    def test_volatility_blend(self, make_stock, phase_config):
        state = MarketPhaseState(
            global_phase="prosperity",
            sector_phases={"tech": "panic", "finance": "prosperity", "industrial": "prosperity", "commodities": "prosperity"},
        )
        result = volatility_multipliers([make_stock("AAPL", "tech")], state, phase_config)
        assert result["AAPL"] == pytest.approx(1.0 * 0.4 + 3.0 * 0.6)

    def test_spread_modifier_average(self, phase_config):
        state = MarketPhaseState(
            global_phase="boom",
            sector_phases={"tech": "panic", "finance": "boom", "industrial": "boom", "commodities": "boom"},
        )
        assert spread_modifier("tech", state, phase_config) == pytest.approx((-0.2 + 1.0) / 2)

    def test_fear_greed_bounded(self, make_stock, phase_config):
        stocks = [make_stock(prices=[100.0] * 20)]
        greedy = MarketMetrics(global_momentum=1.0, avg_price_change=0.5)
        fearful = MarketMetrics(global_momentum=-1.0, avg_price_change=-0.5)
        assert calculate_fear_greed("boom", greedy, stocks, phase_config) == 100
        assert calculate_fear_greed("panic", fearful, stocks, phase_config) == 0

    def test_fear_greed_flat_market(self, make_stock, phase_config):
        stocks = [make_stock(prices=[100.0] * 20)]
        # base 55 + volatility term 10
        assert calculate_fear_greed("prosperity", MarketMetrics(), stocks, phase_config) == 65

    def test_record_cycle(self):
        state = record_cycle(MarketPhaseState(global_phase="boom", fear_greed_index=70), 4)
        assert state.history.cycles_per_phase["boom"] == 1
        assert state.history.climate_history[-1].cycle == 4
        assert state.history.climate_history[-1].fear_greed_index == 70
