"""Tests for the agent population, agent fills, resting orders, agent loans and warm-up forcing."""

import random

import pytest

from models.agents import TradeDecision, VirtualPlayer
from models.config import EngineConfig, WarmupConfig
from models.loans import CreditAccount, Loan
from models.orders import OrderBookEntry
from models.portfolio import Holding, Portfolio
from simulation import market_maker as mm
from simulation.floats import initialize_floats
from simulation.trader_engine import (
    _Market,
    age_order_book,
    decide_loan,
    execute_decision,
    fill_resting_orders,
    force_untraded_trades,
    initialize_agents,
    run_agent_pass,
)


def _agent(cash: float = 10_000, agent_id: str = "bot-1", risk: int = 0, **extra) -> VirtualPlayer:
    return VirtualPlayer(
        id=agent_id, name=agent_id, portfolio=Portfolio(cash=cash), initial_cash=cash, risk_tolerance=risk, **extra
    )


@pytest.fixture
def market(make_stock, engine_config, make_world):
    stocks = [make_stock("AAPL")]
    world = make_world(stocks)
    return _Market(
        stocks=list(world.stocks),
        inventories=dict(world.market_maker),
        floats=dict(world.floats),
        total_shorts={},
    )


def _decision(side: str, shares: int, symbol: str = "AAPL") -> TradeDecision:
    return TradeDecision(player_id="bot-1", symbol=symbol, side=side, shares=shares)


# =============================================================================
# POPULATION
# =============================================================================


class TestPopulation:

    def test_initial_agents(self, make_stock):
        config = EngineConfig(virtual_player_count=10, initial_cash=100_000, warmup=WarmupConfig(cycles=0))
        stocks = [make_stock("AAPL"), make_stock("JPM", "finance"), make_stock("XOM", "commodities")]
        agents = initialize_agents(config, stocks, random.Random(7))

        assert [a.id for a in agents] == [f"bot-{i}" for i in range(1, 11)]
        assert agents[0].name == "Apex Capital"
        assert agents[0].trader_type == "market_maker"
        assert agents[-1].trader_type == "balanced"
        for agent in agents:
            assert 50_000 <= agent.initial_cash <= 200_000
            assert -100 <= agent.risk_tolerance <= 100
            invested = sum(h.shares * 100.0 for h in agent.portfolio.holdings)
            assert agent.portfolio.cash + invested == pytest.approx(agent.initial_cash)
            assert agent.credit.credit_score == config.loans.initial_credit_score

    def test_same_seed_same_population(self, make_stock):
        config = EngineConfig(virtual_player_count=5)
        stocks = [make_stock()]
        first = initialize_agents(config, stocks, random.Random(3))
        second = initialize_agents(config, stocks, random.Random(3))
        assert first == second


# =============================================================================
# EXECUTION
# =============================================================================


class TestExecution:

    def test_buy_updates_agent_and_market(self, market, engine_config, rng):
        agent = execute_decision(market, _agent(), _decision("buy", 10), engine_config, rng, cycle=1)
        assert agent.portfolio.cash == pytest.approx(9_000)
        assert agent.portfolio.shares_of("AAPL") == 10
        assert agent.transactions[0].side == "buy"
        assert agent.total_trades_executed == 1
        assert market.floats["AAPL"].vp_held_shares == 10
        # agents move inventory at half strength
        assert market.inventories["AAPL"].inventory == 100_000 - 5
        assert market.trades_by_symbol == {"AAPL": 1}

    def test_one_trade_per_symbol_per_cycle(self, market, engine_config, rng):
        agent = execute_decision(market, _agent(), _decision("buy", 10), engine_config, rng, cycle=1)
        assert execute_decision(market, agent, _decision("buy", 1), engine_config, rng, cycle=1) is None

    def test_rejections(self, market, engine_config, rng):
        poor = _agent(cash=50)
        assert execute_decision(market, poor, _decision("buy", 1), engine_config, rng, cycle=1) is None
        assert execute_decision(market, _agent(), _decision("sell", 1), engine_config, rng, cycle=1) is None
        assert execute_decision(market, _agent(), _decision("buy", 1, "ZZZ"), engine_config, rng, cycle=1) is None
        assert market.trades_by_symbol == {}

    def test_buy_needs_inventory_for_full_quantity(self, market, engine_config, rng):
        # 8 shares left covers half of a 10-share order but not all of it
        market.inventories["AAPL"] = market.inventories["AAPL"].model_copy(update={"inventory": 8})
        assert execute_decision(market, _agent(), _decision("buy", 10), engine_config, rng, cycle=1) is None
        assert execute_decision(market, _agent(), _decision("buy", 8), engine_config, rng, cycle=1) is not None

    def test_short_sell_tracks_short_interest(self, market, engine_config, rng):
        agent = execute_decision(market, _agent(), _decision("short_sell", 10), engine_config, rng, cycle=1)
        assert agent.short_position("AAPL").collateral_locked == pytest.approx(1_500)
        assert agent.portfolio.cash == pytest.approx(10_000 + 1_000 - 1_500)
        assert market.total_shorts == {"AAPL": 10}

    def test_transaction_log_is_bounded(self, market, engine_config, rng):
        config = engine_config.model_copy(update={"max_transactions_per_player": 2})
        agent = _agent(cash=1_000_000)
        for cycle in range(4):
            market.traded.clear()
            agent = execute_decision(market, agent, _decision("buy", 1), config, rng, cycle=cycle)
        assert len(agent.transactions) == 2
        assert agent.transactions[0].cycle == 3


# =============================================================================
# RESTING ORDERS
# =============================================================================


class TestOrderBook:

    def test_crossed_bid_fills_at_posted_price(self, market, engine_config, rng):
        book = [
            OrderBookEntry(id="ob_1", trader_id="bot-1", symbol="AAPL", side="buy", shares=5, price=101.0,
                           remaining_cycles=3),
            OrderBookEntry(id="ob_2", trader_id="bot-1", symbol="AAPL", side="sell", shares=5, price=105.0,
                           remaining_cycles=3),
        ]
        agents = {"bot-1": _agent()}
        remaining = fill_resting_orders(market, agents, book, engine_config, rng, cycle=2)
        assert [e.id for e in remaining] == ["ob_2"]
        assert agents["bot-1"].portfolio.cash == pytest.approx(10_000 - 505)

    def test_unknown_trader_stays_in_book(self, market, engine_config, rng):
        book = [OrderBookEntry(id="ob_1", trader_id="ghost", symbol="AAPL", side="buy", shares=5, price=101.0,
                               remaining_cycles=3)]
        assert fill_resting_orders(market, {}, book, engine_config, rng, cycle=2) == book

    def test_aging_drops_expired(self):
        book = [
            OrderBookEntry(id="a", trader_id="bot-1", symbol="AAPL", side="buy", shares=1, price=1, remaining_cycles=1),
            OrderBookEntry(id="b", trader_id="bot-1", symbol="AAPL", side="buy", shares=1, price=1, remaining_cycles=3),
        ]
        aged = age_order_book(book)
        assert [(e.id, e.remaining_cycles) for e in aged] == [("b", 2)]


# =============================================================================
# LOANS
# =============================================================================


class TestAgentLoans:

    def test_repays_when_cash_is_ample(self, make_stock, engine_config, rng):
        loan = Loan(id="loan_1", loan_number=1, principal=1_000, balance=1_000, interest_rate=0.06,
                    duration_cycles=40, remaining_cycles=20)
        agent = _agent(cash=5_000, credit=CreditAccount(loans=[loan]))
        updated = decide_loan(agent, [make_stock()], engine_config, rng, cycle=5)
        assert updated.credit.loans == []

    def test_conservative_agents_never_borrow(self, make_stock, engine_config, rng):
        agent = _agent(cash=0, risk=-50)
        agent = agent.model_copy(
            update={"portfolio": Portfolio(cash=0, holdings=[Holding(symbol="AAPL", shares=100, avg_buy_price=100)])}
        )
        assert decide_loan(agent, [make_stock()], engine_config, rng, cycle=5) is agent


# =============================================================================
# AGENT PASS AND WARM-UP FORCING
# =============================================================================


class TestAgentPass:

    def test_no_agents_no_trades(self, make_world, engine_config, rng):
        world = make_world()
        result = run_agent_pass(world, engine_config, rng)
        assert result.trades_by_symbol == {}
        assert result.world.stocks == world.stocks

    def test_trade_count_matches_symbols(self, make_world, make_stock, engine_config):
        stocks = [make_stock("AAPL"), make_stock("JPM", "finance")]
        config = engine_config.model_copy(update={"virtual_player_count": 20})
        agents = initialize_agents(config, stocks, random.Random(5))
        world = make_world(stocks, agents=agents)
        result = run_agent_pass(world, config, random.Random(6))
        assert result.world.agent_trade_count == sum(result.trades_by_symbol.values())
        assert all(a.portfolio.cash >= 0 for a in result.world.agents)
        assert [a.id for a in result.world.agents] == [a.id for a in agents]

    def test_forced_trades_only_for_untraded(self, make_world, make_stock, engine_config, rng):
        stocks = [make_stock("AAPL"), make_stock("MSFT")]
        world = make_world(stocks, agents=[_agent()])
        updated, forced = force_untraded_trades(world, {"AAPL": 3}, engine_config, rng)
        assert forced == ["MSFT"]
        assert updated.agents[0].portfolio.shares_of("MSFT") == 10
        assert updated.agent_trade_count == 1

    def test_nothing_to_force(self, make_world, engine_config, rng):
        world = make_world(agents=[_agent(cash=1)])
        updated, forced = force_untraded_trades(world, {}, engine_config, rng)
        assert forced == []
        assert updated.agents == world.agents
