"""Virtual trader engine: agent population, trade execution, resting orders, loans and warm-up.

Every public step takes a ``WorldState`` and returns a new one. Agents face
the same constraints as the human player: cash and share availability,
market-maker liquidity, the float short-interest cap and the credit rules.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field

from models.agents import AgentTransaction, TradeDecision, VirtualPlayer
from models.config import EngineConfig
from models.market import MarketMakerInventory, Stock, StockFloat
from models.orders import OrderBookEntry, OrderSide
from models.portfolio import Holding, Portfolio
from models.world import WorldState
from simulation import floats as float_ops
from simulation import loans
from simulation import market_maker as mm
from simulation import shorts
from simulation.end_game import net_worth
from simulation.notifications import new_id
from simulation.price_generator import apply_trade_impact
from simulation.strategies import MarketView, WarmupContext, assign_trader_type, create_strategy

logger = logging.getLogger(__name__)

AGENT_NAMES = (
    "Apex Capital", "Harbor Trust", "Pinnacle Invest", "Quantum Fund", "Summit Partners",
    "Atlas Holdings", "Meridian Capital", "Horizon Ventures", "Sterling Assets", "Nexus Equity",
    "Vertex Capital", "Titan Invest", "Crescent Fund", "Falcon Partners", "Ironwood Capital",
    "Cobalt Ventures", "Northstar Fund", "Sapphire Trust", "Eclipse Capital", "Granite Partners",
    "Redstone Invest", "Azure Holdings", "Blackwood Fund", "Bastion Equity", "Drake Capital",
    "Emerald Trust", "Foxglove Invest", "Griffin Partners", "Harborview Fund", "Ivory Capital",
    "Jasper Holdings", "Keystone Trust", "Lighthouse Fund", "Magellan Invest", "Noble Partners",
    "Obsidian Capital", "Pacific Ventures", "Quartz Holdings", "Riverside Trust", "Silverlake Fund",
    "Trident Capital", "Unity Partners", "Venture Prime", "Westbrook Invest", "Xenon Holdings",
    "Yellowstone Fund", "Zenith Capital", "Anchor Trust", "Beacon Partners", "Compass Invest",
)


@dataclass
class _Market:
    """Scratch copy of the market-facing world sections threaded through one agent pass."""

    stocks: list[Stock]
    inventories: dict[str, MarketMakerInventory]
    floats: dict[str, StockFloat]
    total_shorts: dict[str, int]
    traded: set[tuple[str, str]] = field(default_factory=set)
    trades_by_symbol: dict[str, int] = field(default_factory=dict)

    def price(self, symbol: str) -> float | None:
        for s in self.stocks:
            if s.symbol == symbol:
                return s.current_price
        return None


@dataclass
class AgentPassResult:
    world: WorldState
    trades_by_symbol: dict[str, int]


# ---------------------------------------------------------------------------
# Population
# ---------------------------------------------------------------------------


def _initial_holdings(
    cash: float,
    risk_tolerance: int,
    stocks: list[Stock],
    rng: random.Random,
) -> tuple[list[Holding], float]:
    """Invest 30-70% of *cash* (more for risk seekers) in 1-4 random stocks at their base price."""
    normalized = (risk_tolerance + 100) / 200
    low = 0.30 + normalized * 0.10
    high = 0.50 + normalized * 0.20
    budget = cash * (low + rng.random() * (high - low))

    pool = list(stocks)
    rng.shuffle(pool)
    selected = pool[: 1 + rng.randrange(4)]

    holdings: list[Holding] = []
    spent = 0.0
    for i, stock in enumerate(selected):
        if budget <= 0:
            break
        price = stock.fair_value or stock.current_price
        share = 1.0 if i == len(selected) - 1 else 0.3 + rng.random() * 0.5
        max_shares = math.floor(budget * share / price)
        if max_shares <= 0:
            continue
        shares = max(1, math.floor(max_shares * (0.5 + rng.random() * 0.5)))
        holdings.append(Holding(symbol=stock.symbol, shares=shares, avg_buy_price=price))
        budget -= shares * price
        spent += shares * price
    return holdings, cash - spent


def initialize_agents(config: EngineConfig, stocks: list[Stock], rng: random.Random) -> list[VirtualPlayer]:
    """Create the agent population with archetypes assigned by index."""
    count = config.virtual_player_count
    low = math.floor(config.initial_cash / 2)
    high = math.floor(config.initial_cash * 2)
    agents: list[VirtualPlayer] = []
    for i in range(count):
        starting_cash = float(rng.randint(low, high))
        risk = rng.randint(-100, 100)
        holdings, cash = _initial_holdings(starting_cash, risk, stocks, rng)
        agents.append(
            VirtualPlayer(
                id=f"bot-{i + 1}",
                name=AGENT_NAMES[i] if i < len(AGENT_NAMES) else f"Bot {i + 1}",
                portfolio=Portfolio(cash=cash, holdings=holdings),
                initial_cash=starting_cash,
                risk_tolerance=risk,
                trader_type=assign_trader_type(i, count, config.traders.distribution),
            )
        )
    for agent in agents:
        agent.credit.credit_score = config.loans.initial_credit_score
    logger.info("Initialized %d agents", len(agents))
    return agents


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _record(agent: VirtualPlayer, decision: TradeDecision, price: float, cycle: int, limit: int, rng: random.Random):
    transaction = AgentTransaction(
        id=new_id(rng, "vtx"),
        symbol=decision.symbol,
        side=decision.side,
        shares=decision.shares,
        price=price,
        cycle=cycle,
        factors=decision.factors,
    )
    agent.transactions = ([transaction] + agent.transactions)[:limit]
    agent.total_trades_executed += 1


def _after_fill(market: _Market, agent_id: str, symbol: str, side: OrderSide, shares: int, config: EngineConfig, rng):
    market.inventories = mm.apply_fill(market.inventories, symbol, side, shares, config.market_maker, is_agent=True)
    market.stocks = apply_trade_impact(
        market.stocks, symbol, side, shares, rng, mm.spread_multiplier(market.inventories, symbol)
    )
    market.traded.add((agent_id, symbol))
    market.trades_by_symbol[symbol] = market.trades_by_symbol.get(symbol, 0) + 1


def execute_decision(
    market: _Market,
    agent: VirtualPlayer,
    decision: TradeDecision,
    config: EngineConfig,
    rng: random.Random,
    cycle: int,
    price: float | None = None,
) -> VirtualPlayer | None:
    """Fill *decision* against the market maker. Returns the updated agent or None when rejected."""
    current = market.price(decision.symbol)
    if current is None or (agent.id, decision.symbol) in market.traded:
        return None
    price = current if price is None else price
    shares = decision.shares

    if decision.side == "buy":
        cost = shares * price
        if cost > agent.portfolio.cash or not mm.can_fill_buy(market.inventories, decision.symbol, shares):
            return None
        agent = agent.model_copy(deep=True)
        agent.portfolio.cash = max(0.0, agent.portfolio.cash - cost)
        holding = agent.portfolio.holding(decision.symbol)
        if holding is None:
            agent.portfolio.holdings.append(Holding(symbol=decision.symbol, shares=shares, avg_buy_price=price))
        else:
            total = holding.shares + shares
            holding.avg_buy_price = (holding.shares * holding.avg_buy_price + cost) / total
            holding.shares = total
        market.floats = float_ops.transfer_shares(market.floats, decision.symbol, "mm", "vp", shares)
        _after_fill(market, agent.id, decision.symbol, "buy", shares, config, rng)

    elif decision.side == "sell":
        holding = agent.portfolio.holding(decision.symbol)
        if holding is None or holding.shares < shares or not mm.can_accept_sell(market.inventories, decision.symbol):
            return None
        agent = agent.model_copy(deep=True)
        agent.portfolio.cash += shares * price
        holding = agent.portfolio.holding(decision.symbol)
        holding.shares -= shares
        if holding.shares == 0:
            agent.portfolio.holdings = [h for h in agent.portfolio.holdings if h.symbol != decision.symbol]
        market.floats = float_ops.transfer_shares(market.floats, decision.symbol, "vp", "mm", shares)
        _after_fill(market, agent.id, decision.symbol, "sell", shares, config, rng)

    elif decision.side == "short_sell":
        if shorts.can_short(decision.symbol, shares, market.floats, market.total_shorts, config.shorts):
            return None
        agent, result = shorts.open_short(agent, decision.symbol, shares, price, shares * price, config.shorts, cycle)
        if result.status != "accepted":
            return None
        market.total_shorts[decision.symbol] = market.total_shorts.get(decision.symbol, 0) + shares
        _after_fill(market, agent.id, decision.symbol, "sell", shares, config, rng)

    else:
        position = agent.short_position(decision.symbol)
        if position is None or not mm.can_fill_buy(market.inventories, decision.symbol, shares):
            return None
        cover = shorts.close_short(agent, decision.symbol, shares, price, config.shorts)
        if cover is None:
            return None
        agent = cover.account
        market.total_shorts[decision.symbol] = max(0, market.total_shorts.get(decision.symbol, 0) - cover.shares)
        _after_fill(market, agent.id, decision.symbol, "buy", cover.shares, config, rng)

    _record(agent, decision, price, cycle, config.max_transactions_per_player, rng)
    return agent


# ---------------------------------------------------------------------------
# Resting orders
# ---------------------------------------------------------------------------


def fill_resting_orders(
    market: _Market,
    agents: dict[str, VirtualPlayer],
    order_book: list[OrderBookEntry],
    config: EngineConfig,
    rng: random.Random,
    cycle: int,
) -> list[OrderBookEntry]:
    """Fill resting entries crossed by the current price at their posted price.

    Bids fill when the price falls to or below them, asks when it rises to
    or above them. Entries that cannot be honoured stay in the book.
    """
    remaining: list[OrderBookEntry] = []
    for entry in order_book:
        price = market.price(entry.symbol)
        agent = agents.get(entry.trader_id)
        crossed = price is not None and (
            price <= entry.price if entry.side == "buy" else price >= entry.price
        )
        if agent is None or not crossed:
            remaining.append(entry)
            continue
        decision = TradeDecision(
            player_id=agent.id,
            symbol=entry.symbol,
            side=entry.side,
            shares=entry.shares,
            factors={"resting_price": entry.price},
        )
        updated = execute_decision(market, agent, decision, config, rng, cycle, price=entry.price)
        if updated is None:
            remaining.append(entry)
            continue
        agents[agent.id] = updated
        logger.debug("Resting %s of %s filled: %d %s at %.2f", entry.side, agent.id, entry.shares, entry.symbol, entry.price)
    return remaining


def age_order_book(order_book: list[OrderBookEntry]) -> list[OrderBookEntry]:
    """Decrement every entry's lifetime and drop the expired ones."""
    aged = [e.model_copy(update={"remaining_cycles": e.remaining_cycles - 1}) for e in order_book]
    return [e for e in aged if e.remaining_cycles > 0]


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------


def decide_loan(
    agent: VirtualPlayer,
    stocks: list[Stock],
    config: EngineConfig,
    rng: random.Random,
    cycle: int,
) -> VirtualPlayer:
    """Repay a loan the agent can comfortably cover, otherwise maybe borrow.

    Repayment needs cash of twice the balance. Borrowing is reserved for
    aggressive agents short on cash (below ``agent_loan_cash_ratio`` of net
    worth) with a free loan slot, with a probability proportional to risk.
    """
    for loan in agent.credit.loans:
        if agent.portfolio.cash >= 2 * loan.balance:
            agent, result = loans.repay_loan(agent, loan.id, config.loans, cycle)
            if result.status == "accepted":
                logger.debug("%s repaid %s", agent.id, loan.id)
                return agent

    risk = agent.risk_tolerance or 0
    if risk < config.traders.aggressive_risk_threshold or len(agent.credit.loans) >= config.loans.max_loans:
        return agent
    prices = {s.symbol: s.current_price for s in stocks}
    worth = net_worth(agent, prices, config.loans)
    if worth <= 0 or agent.portfolio.cash >= worth * config.traders.agent_loan_cash_ratio:
        return agent
    if rng.random() >= risk / 100:
        return agent

    info = loans.credit_line_info(agent, stocks, config.loans)
    amount = math.floor(info.available_credit / 2)
    if amount <= 0:
        return agent
    agent, result = loans.take_loan(
        agent,
        amount,
        config.loans.default_loan_duration_cycles,
        stocks,
        config.loans,
        rng,
        cycle,
        risk_score=risk,
    )
    if result.status == "accepted":
        logger.debug("%s borrowed %.2f", agent.id, amount)
    return agent


# ---------------------------------------------------------------------------
# Agent pass
# ---------------------------------------------------------------------------


def run_agent_pass(
    world: WorldState,
    config: EngineConfig,
    rng: random.Random,
    warmup: WarmupContext | None = None,
) -> AgentPassResult:
    """One trader-engine step: resting fills, loan decisions, direct trades and new quotes."""
    cycle = world.session.current_cycle
    market = _Market(
        stocks=list(world.stocks),
        inventories=dict(world.market_maker),
        floats=dict(world.floats),
        total_shorts=shorts.total_shorts_by_symbol([world.player, *world.agents]),
    )
    agents = {a.id: a for a in world.agents}
    order_book = fill_resting_orders(market, agents, list(world.order_book), config, rng, cycle)

    for agent_id in list(agents):
        agent = decide_loan(agents[agent_id], market.stocks, config, rng, cycle)
        strategy = create_strategy(agent.trader_type, config.traders, config.order_book)
        resting = {}
        for entry in order_book:
            if entry.trader_id == agent.id:
                resting[entry.symbol] = resting.get(entry.symbol, 0) + 1
        view = MarketView(
            stocks=market.stocks,
            global_phase=world.phase.global_phase,
            cycle=cycle,
            warmup=warmup,
            resting_orders=resting,
        )
        decision = strategy.decide(agent, view, rng)
        if decision is not None:
            agent = execute_decision(market, agent, decision, config, rng, cycle) or agent
        order_book.extend(strategy.quote(agent, view, rng))
        agents[agent_id] = agent

    traded = sum(market.trades_by_symbol.values())
    if traded:
        logger.debug("Cycle %d: agents executed %d trades", cycle, traded)
    updated = world.model_copy(
        update={
            "stocks": market.stocks,
            "market_maker": market.inventories,
            "floats": market.floats,
            "agents": [agents[a.id] for a in world.agents],
            "order_book": order_book,
            "agent_trade_count": world.agent_trade_count + traded,
        }
    )
    return AgentPassResult(world=updated, trades_by_symbol=market.trades_by_symbol)


def force_untraded_trades(
    world: WorldState,
    trade_counts: dict[str, int],
    config: EngineConfig,
    rng: random.Random,
) -> tuple[WorldState, list[str]]:
    """Inject one trade for every symbol still untraded at the end of warm-up.

    A random agent that can afford a share buys 10% of what it can afford;
    otherwise a random holder sells 10% of its position.
    """
    cycle = world.session.current_cycle
    market = _Market(
        stocks=list(world.stocks),
        inventories=dict(world.market_maker),
        floats=dict(world.floats),
        total_shorts={},
    )
    agents = {a.id: a for a in world.agents}
    fraction = config.warmup.forced_trade_fraction
    forced: list[str] = []

    for stock in world.stocks:
        if trade_counts.get(stock.symbol, 0) > 0:
            continue
        price = market.price(stock.symbol)
        buyers = [a for a in agents.values() if a.portfolio.cash >= price]
        sellers = [a for a in agents.values() if a.portfolio.shares_of(stock.symbol) > 0]
        if buyers:
            agent = buyers[rng.randrange(len(buyers))]
            shares = max(1, math.floor(math.floor(agent.portfolio.cash / price) * fraction))
            side = "buy"
        elif sellers:
            agent = sellers[rng.randrange(len(sellers))]
            shares = max(1, math.floor(agent.portfolio.shares_of(stock.symbol) * fraction))
            side = "sell"
        else:
            continue
        decision = TradeDecision(player_id=agent.id, symbol=stock.symbol, side=side, shares=shares)
        updated = execute_decision(market, agent, decision, config, rng, cycle)
        if updated is None:
            continue
        agents[agent.id] = updated
        forced.append(stock.symbol)

    if forced:
        logger.info("Forced warm-up trades for %s", ", ".join(forced))
    updated_world = world.model_copy(
        update={
            "stocks": market.stocks,
            "market_maker": market.inventories,
            "floats": market.floats,
            "agents": [agents[a.id] for a in world.agents],
            "agent_trade_count": world.agent_trade_count + len(forced),
        }
    )
    return updated_world, forced
