"""Tests for the human order queue: reservations, cancel/edit and settlement."""

import pytest

from models.accounts import HumanPlayer
from models.orders import CompletedTrade, PendingOrder
from models.events import Notification
from models.portfolio import Holding, Portfolio
from simulation.order_settlement import (
    available_cash,
    cancel_order,
    reserved_cash,
    edit_order,
    place_order,
    settle_orders,
)


@pytest.fixture
def world(make_world, make_stock):
    return make_world([make_stock("AAPL"), make_stock("MSFT")], cash=100_000)


def _holder(shares: int, cash: float = 10_000) -> HumanPlayer:
    return HumanPlayer(
        portfolio=Portfolio(cash=cash, holdings=[Holding(symbol="AAPL", shares=shares, avg_buy_price=80.0)]),
        initial_cash=cash,
    )


# =============================================================================
# PLACEMENT AND RESERVATIONS
# =============================================================================


class TestPlacement:

    def test_market_buy_is_queued(self, world, engine_config, rng):
        updated, result = place_order(world, "AAPL", "buy", "market", 100, engine_config, rng)
        assert result.status == "accepted"
        assert result.order_id is not None
        assert len(updated.player.pending_orders) == 1
        assert updated.player.traded_symbols_this_cycle == ["AAPL"]
        assert updated.player.portfolio.cash == 100_000

    def test_one_order_per_symbol_per_cycle(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "market", 10, engine_config, rng)
        again, result = place_order(world, "AAPL", "buy", "market", 10, engine_config, rng)
        assert result.status == "rejected"
        assert again is world

    def test_market_buy_needs_cash_buffer(self, world, engine_config, rng):
        # 1,000 * 100 * 1.05 exceeds the 100,000 available
        updated, result = place_order(world, "AAPL", "buy", "market", 1_000, engine_config, rng)
        assert result.status == "rejected"
        assert updated is world

    def test_limit_orders_reserve_cash(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "limit", 500, engine_config, rng, limit_price=90.0)
        assert available_cash(world.player, engine_config) == pytest.approx(55_000)
        _, result = place_order(world, "MSFT", "buy", "limit", 600, engine_config, rng, limit_price=100.0)
        assert result.status == "rejected"

    def test_orders_without_limit_reserve_buffered_amount(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "market", 20, engine_config, rng)
        assert reserved_cash(world.player.pending_orders, engine_config) == pytest.approx(2_100)
        world, _ = place_order(world, "MSFT", "buy", "stop_buy", 20, engine_config, rng, stop_price=110.0)
        # the stop above the placement price sets the reservation
        assert reserved_cash(world.player.pending_orders, engine_config) == pytest.approx(2_100 + 2_310)

    def test_limit_price_required(self, world, engine_config, rng):
        _, result = place_order(world, "AAPL", "buy", "limit", 5, engine_config, rng)
        assert result.status == "rejected"

    def test_sell_reserves_shares_in_float(self, make_world, engine_config, rng):
        world = make_world(player=_holder(50))
        updated, result = place_order(world, "AAPL", "sell", "limit", 50, engine_config, rng, limit_price=120.0)
        assert result.status == "accepted"
        assert updated.floats["AAPL"].reserved_shares == 50
        _, too_many = place_order(world, "AAPL", "sell", "limit", 51, engine_config, rng, limit_price=120.0)
        assert too_many.status == "rejected"

    def test_unknown_symbol_and_bad_quantity(self, world, engine_config, rng):
        assert place_order(world, "ZZZ", "buy", "market", 1, engine_config, rng)[1].status == "rejected"
        assert place_order(world, "AAPL", "buy", "market", 0, engine_config, rng)[1].status == "rejected"

    def test_cover_requires_open_short(self, world, engine_config, rng):
        _, result = place_order(world, "AAPL", "buy_to_cover", "market", 1, engine_config, rng)
        assert result.status == "rejected"


# =============================================================================
# CANCEL AND EDIT
# =============================================================================


class TestCancelAndEdit:

    def test_cancel_releases_symbol_and_reservation(self, make_world, engine_config, rng):
        world = make_world(player=_holder(50))
        world, placed = place_order(world, "AAPL", "sell", "limit", 50, engine_config, rng, limit_price=120.0)
        world, result = cancel_order(world, placed.order_id)
        assert result.status == "accepted"
        assert world.player.pending_orders == []
        assert world.player.traded_symbols_this_cycle == []
        assert world.floats["AAPL"].reserved_shares == 0

    def test_cancel_unknown(self, world):
        _, result = cancel_order(world, "ord_missing")
        assert result.status == "rejected"

    def test_edit_limit_price(self, world, engine_config, rng):
        world, placed = place_order(world, "AAPL", "buy", "limit", 100, engine_config, rng, limit_price=90.0)
        world, result = edit_order(world, placed.order_id, engine_config, limit_price=95.0)
        assert result.status == "accepted"
        assert world.player.pending_orders[0].limit_price == 95.0

    def test_edit_rejected_when_reservation_grows_too_large(self, world, engine_config, rng):
        world, placed = place_order(world, "AAPL", "buy", "limit", 100, engine_config, rng, limit_price=90.0)
        updated, result = edit_order(world, placed.order_id, engine_config, shares=5_000)
        assert result.status == "rejected"
        assert updated is world


# =============================================================================
# SETTLEMENT
# =============================================================================


class TestSettlement:

    def test_market_buy_fills(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "market", 100, engine_config, rng)
        settled, events = settle_orders(world, engine_config, rng)
        trades = [e for e in events if isinstance(e, CompletedTrade)]
        assert len(trades) == 1
        trade = trades[0]
        assert trade.status == "executed"
        assert trade.price_per_share > 100.0
        assert settled.player.portfolio.shares_of("AAPL") == 100
        assert settled.player.portfolio.cash == pytest.approx(100_000 - trade.total_amount)
        assert settled.player.pending_orders == []
        assert settled.player.trade_history[-1].id == trade.id
        assert settled.floats["AAPL"].player_held_shares == 100

    def test_sell_realizes_profit(self, make_world, engine_config, rng):
        world = make_world(player=_holder(50))
        world, _ = place_order(world, "AAPL", "sell", "market", 50, engine_config, rng)
        settled, events = settle_orders(world, engine_config, rng)
        trade = events[0]
        assert trade.realized_profit_loss == pytest.approx((trade.price_per_share - 80.0) * 50)
        assert settled.player.portfolio.holdings == []
        assert settled.floats["AAPL"].reserved_shares == 0

    def test_limit_waits_and_ages(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "limit", 10, engine_config, rng, limit_price=90.0,
                               validity_cycles=1)
        world, events = settle_orders(world, engine_config, rng)
        assert events == []
        assert world.player.pending_orders[0].remaining_cycles == 0
        world, _ = settle_orders(world, engine_config, rng)
        assert world.player.pending_orders == []

    def test_stop_limit_triggers_then_fills_next_cycle(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "stop_buy_limit", 10, engine_config, rng,
                               limit_price=110.0, stop_price=95.0)
        world, events = settle_orders(world, engine_config, rng)
        assert events == []
        assert world.player.pending_orders[0].stop_triggered
        world, events = settle_orders(world, engine_config, rng)
        assert [e.status for e in events] == ["executed"]

    def test_short_sell_opens_position(self, world, engine_config, rng):
        world, result = place_order(world, "AAPL", "short_sell", "market", 10, engine_config, rng)
        assert result.status == "accepted"
        settled, _ = settle_orders(world, engine_config, rng)
        position = settled.player.short_position("AAPL")
        assert position.shares == 10
        assert position.collateral_locked == pytest.approx(1_500)

    def test_failure_notified_once_per_order(self, world, engine_config, rng):
        world, _ = place_order(world, "AAPL", "buy", "market", 100, engine_config, rng)
        broke = world.player.model_copy(update={"portfolio": Portfolio(cash=0)})
        world = world.model_copy(update={"player": broke})

        world, events = settle_orders(world, engine_config, rng)
        failed = [e for e in events if isinstance(e, CompletedTrade)]
        notes = [e for e in events if isinstance(e, Notification)]
        assert failed[0].status == "failed"
        assert failed[0].failure_reason == "insufficient available cash"
        assert len(notes) == 1
        assert world.player.pending_orders[0].failure_notified

        # dismissed by the user; the same failing order stays quiet
        world = world.model_copy(update={"notifications": []})
        _, events = settle_orders(world, engine_config, rng)
        assert [e.status for e in events] == ["failed"]


# =============================================================================
# RESERVED CASH ACROSS SEVERAL ORDERS
# =============================================================================


def _order(order_id: str, symbol: str, shares: int, order_type: str = "market", limit_price: float | None = None):
    return PendingOrder(
        id=order_id,
        symbol=symbol,
        side="buy",
        order_type=order_type,
        shares=shares,
        order_price=100.0,
        limit_price=limit_price,
        remaining_cycles=1 if order_type == "market" else 5,
    )


class TestReservedCash:

    def test_fill_keeps_other_reservations_covered(self, world, engine_config, rng):
        player = HumanPlayer(portfolio=Portfolio(cash=7_000), initial_cash=7_000)
        world, _ = place_order(world.model_copy(update={"player": player}), "AAPL", "buy", "market", 20, engine_config, rng)
        world, placed = place_order(world, "MSFT", "buy", "limit", 45, engine_config, rng, limit_price=90.0)
        assert placed.status == "accepted"

        settled, events = settle_orders(world, engine_config, rng)
        assert [e.status for e in events if isinstance(e, CompletedTrade)] == ["executed"]
        assert [o.symbol for o in settled.player.pending_orders] == ["MSFT"]
        assert reserved_cash(settled.player.pending_orders, engine_config) == pytest.approx(4_050)
        assert available_cash(settled.player, engine_config) >= 0

    def test_fill_never_spends_another_orders_reservation(self, world, engine_config, rng):
        # 20 shares cost about 2,030 but only 1,950 is not held by the limit order
        player = HumanPlayer(
            portfolio=Portfolio(cash=6_000),
            initial_cash=6_000,
            pending_orders=[_order("ord_mkt", "AAPL", 20), _order("ord_lmt", "MSFT", 45, "limit", 90.0)],
        )
        settled, events = settle_orders(world.model_copy(update={"player": player}), engine_config, rng)

        failed = [e for e in events if isinstance(e, CompletedTrade)]
        assert [(t.order_id, t.status, t.failure_reason) for t in failed] == [
            ("ord_mkt", "failed", "insufficient available cash")
        ]
        assert settled.player.portfolio.cash == 6_000
        assert settled.player.portfolio.cash >= reserved_cash([player.pending_orders[1]], engine_config)
        assert settled.player.portfolio.shares_of("AAPL") == 0
