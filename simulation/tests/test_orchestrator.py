"""Tests for the cycle orchestrator: lifecycle, scheduling and commands."""

import pytest

from models.config import EngineConfig, ScheduleConfig, WarmupConfig
from models.orders import CompletedTrade
from simulation.orchestrator import CycleOrchestrator
from simulation.order_settlement import available_cash


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def game_config() -> EngineConfig:
    return EngineConfig(
        symbols=["AAPL", "JPM", "XOM"],
        virtual_player_count=5,
        warmup=WarmupConfig(cycles=4),
        game_duration_cycles=3,
        seed=11,
        schedule=ScheduleConfig(update_interval_ms=5000),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orchestrator(game_config, clock) -> CycleOrchestrator:
    orch = CycleOrchestrator(game_config, clock=clock)
    orch.start_game()
    return orch


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:

    def test_start_runs_warmup(self, orchestrator):
        world = orchestrator.world
        assert world.session.is_started
        assert world.session.warmup_complete
        assert world.session.current_cycle == 0
        assert world.notifications == []
        assert [s.symbol for s in world.stocks] == ["AAPL", "JPM", "XOM"]
        assert len(world.agents) == 5
        assert not orchestrator.is_suspended

    def test_same_seed_same_game(self, game_config, clock):
        first = CycleOrchestrator(game_config, clock=clock)
        second = CycleOrchestrator(game_config, clock=clock)
        first.start_game(seed=3)
        second.start_game(seed=3)
        first.tick()
        second.tick()
        assert first.snapshot() == second.snapshot()

    def test_game_ends_at_duration(self, orchestrator):
        results = [orchestrator.tick() for _ in range(3)]
        assert [r.cycle for r in results] == [1, 2, 3]
        session = orchestrator.world.session
        assert session.is_ended
        assert session.end_stats.player_ranking >= 1
        assert len(session.end_stats.all_players_ranked) == 6
        assert orchestrator.is_suspended
        assert not orchestrator.scheduler.is_running
        with pytest.raises(RuntimeError):
            orchestrator.tick()

    def test_tick_without_game(self, game_config):
        with pytest.raises(RuntimeError):
            CycleOrchestrator(game_config).tick()

    def test_reset(self, orchestrator):
        orchestrator.reset_game()
        assert orchestrator.world is None
        assert orchestrator.is_suspended
        with pytest.raises(RuntimeError):
            orchestrator.snapshot()

    def test_restore_from_snapshot(self, orchestrator, game_config, clock):
        orchestrator.tick()
        other = CycleOrchestrator(game_config, clock=clock)
        restored = other.restore(orchestrator.snapshot())
        assert restored == orchestrator.world
        assert other.scheduler.is_running


# =============================================================================
# SCHEDULING AND SUSPENSION
# =============================================================================


class TestScheduling:

    def test_poll_ticks_when_due(self, orchestrator, clock):
        clock.now = 4_000
        assert orchestrator.poll() is None
        clock.now = 5_000
        result = orchestrator.poll()
        assert result.cycle == 1

    def test_open_panel_suspends_countdown(self, orchestrator, clock):
        clock.now = 2_000
        orchestrator.set_panel_state("trade_panel", True)
        assert orchestrator.is_suspended
        clock.now = 20_000
        assert orchestrator.poll() is None
        orchestrator.set_panel_state("trade_panel", False)
        assert orchestrator.countdown_ms() == pytest.approx(3_000)

    def test_pause_and_resume(self, orchestrator, clock):
        orchestrator.pause()
        clock.now = 10_000
        assert orchestrator.poll() is None
        orchestrator.resume()
        clock.now = 15_000
        assert orchestrator.poll().cycle == 1

    def test_speed(self, orchestrator):
        assert orchestrator.set_speed(4).status == "rejected"
        assert orchestrator.set_speed(2).status == "accepted"
        assert orchestrator.scheduler.effective_interval_ms == pytest.approx(2_500)

    def test_unknown_panel(self, orchestrator):
        assert orchestrator.set_panel_state("inbox", True).status == "rejected"


# =============================================================================
# COMMANDS
# =============================================================================


class TestCommands:

    def test_commands_rejected_without_game(self, game_config):
        orch = CycleOrchestrator(game_config)
        assert orch.place_order("AAPL", "buy", "market", 1).status == "rejected"
        assert orch.request_loan(1_000).status == "rejected"
        assert orch.cover_short("AAPL").status == "rejected"
        assert orch.dismiss_notification("ntf_1").status == "rejected"

    def test_order_settles_on_next_tick(self, orchestrator):
        result = orchestrator.place_order("AAPL", "buy", "market", 10)
        assert result.status == "accepted"
        tick = orchestrator.tick()
        trades = [e for e in tick.events if isinstance(e, CompletedTrade) and e.order_id == result.order_id]
        assert trades[0].status == "executed"
        assert orchestrator.world.player.portfolio.shares_of("AAPL") == 10
        assert orchestrator.world.player.pending_orders == []

    def test_short_and_cover(self, orchestrator):
        assert orchestrator.short_sell("JPM", 5).status == "accepted"
        orchestrator.tick()
        assert orchestrator.world.player.short_position("JPM").shares == 5
        assert orchestrator.add_margin("JPM", 100).status == "accepted"
        assert orchestrator.cover_short("JPM").status == "accepted"
        orchestrator.tick()
        assert orchestrator.world.player.short_position("JPM") is None

    def test_loan_round_trip(self, orchestrator):
        cash = orchestrator.world.player.portfolio.cash
        result = orchestrator.request_loan(10_000)
        assert result.status == "accepted"
        player = orchestrator.world.player
        assert player.portfolio.cash == pytest.approx(cash + 10_000 - 150)
        assert player.max_loan_utilization > 0
        assert orchestrator.repay_loan(result.loan_id).status == "accepted"
        assert orchestrator.world.player.credit.loans == []

    def test_dismiss_unknown_notification(self, orchestrator):
        assert orchestrator.dismiss_notification("ntf_missing").status == "rejected"

    def test_margin_and_repayment_leave_reservations_covered(self, orchestrator):
        loan = orchestrator.request_loan(10_000)
        orchestrator.short_sell("JPM", 5)
        orchestrator.tick()
        config = orchestrator.config

        limit = round(orchestrator.world.stock("AAPL").current_price / 2, 2)
        shares = int(available_cash(orchestrator.world.player, config) // limit)
        assert orchestrator.place_order("AAPL", "buy", "limit", shares, limit_price=limit).status == "accepted"
        free = available_cash(orchestrator.world.player, config)
        assert 0 <= free < limit

        margin = orchestrator.add_margin("JPM", limit)
        repay = orchestrator.repay_loan(loan.loan_id)
        assert (margin.status, margin.message) == ("rejected", "Insufficient available cash")
        assert (repay.status, repay.message) == ("rejected", "Insufficient available cash")
        assert available_cash(orchestrator.world.player, config) == pytest.approx(free)
