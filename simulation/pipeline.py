"""The per-tick pipeline: sixteen ordered steps threading one ``WorldState``.

Each step is ``(world, ctx) -> (world, events)``. ``TickContext`` carries
the per-tick inputs and the values one step hands to a later one (market
metrics, volatility multipliers, the pre-update global phase). Events are
collected in order and applied to the notification list once, at the end
of the tick.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Callable

from models.config import EngineConfig
from models.events import TickEvent
from models.phase import MarketMetrics
from models.world import WorldState
from simulation import floats as float_ops
from simulation import loans
from simulation import market_maker as mm
from simulation import market_phase
from simulation import shorts
from simulation.end_game import calculate_end_game_stats
from simulation.notifications import apply_events, expire_notifications, make_notification
from simulation.order_settlement import settle_orders
from simulation.price_generator import find_split_candidates, split_stock, update_prices
from simulation.sector_momentum import sector_influences, update_sector_state
from simulation.strategies import WarmupContext
from simulation.trader_engine import age_order_book, run_agent_pass

logger = logging.getLogger(__name__)

StepResult = tuple[WorldState, list[TickEvent]]


@dataclass
class TickContext:
    """Inputs of one tick and the intermediate values shared between steps."""

    config: EngineConfig
    rng: random.Random
    warmup: WarmupContext | None = None
    metrics: MarketMetrics | None = None
    volatility: dict[str, float] = field(default_factory=dict)
    previous_global_phase: str | None = None
    trades_by_symbol: dict[str, int] = field(default_factory=dict)

    @property
    def is_warmup(self) -> bool:
        return self.warmup is not None

    @property
    def notify(self) -> bool:
        return self.warmup is None


# ---------------------------------------------------------------------------
# Market steps
# ---------------------------------------------------------------------------


def step_sector_momentum(world: WorldState, ctx: TickContext) -> StepResult:
    if not ctx.config.sectors_enabled:
        return world, []
    sectors = update_sector_state(world.sectors, world.stocks, ctx.config.sector)
    return world.model_copy(update={"sectors": sectors}), []


def step_market_metrics(world: WorldState, ctx: TickContext) -> StepResult:
    ctx.metrics = market_phase.calculate_market_metrics(world.stocks, ctx.config.phase)
    return world, []


def step_volatility(world: WorldState, ctx: TickContext) -> StepResult:
    ctx.volatility = market_phase.volatility_multipliers(world.stocks, world.phase, ctx.config.phase)
    return world, []


def step_prices(world: WorldState, ctx: TickContext) -> StepResult:
    influences = sector_influences(world.sectors) if ctx.config.sectors_enabled else {}
    stocks = update_prices(
        world.stocks,
        ctx.rng,
        influences=influences,
        volatility_multipliers=ctx.volatility,
        max_history=ctx.config.max_history_candles,
    )
    return world.model_copy(update={"stocks": stocks}), []


def _split_holdings(account, symbol: str, ratio: int):
    holding = account.portfolio.holding(symbol)
    if holding is None and account.short_position(symbol) is None:
        return account
    account = shorts.apply_split(account, symbol, ratio)
    account = account.model_copy(deep=True)
    holding = account.portfolio.holding(symbol)
    if holding is not None:
        holding.shares *= ratio
        holding.avg_buy_price /= ratio
    return account


def apply_split(world: WorldState, symbol: str, ratio: int) -> tuple[WorldState, bool]:
    """Split *symbol* across prices, floats, holdings, shorts and orders.

    Returns the new world and whether the human player was affected.
    """
    stocks = [split_stock(s, ratio) if s.symbol == symbol else s for s in world.stocks]
    floats = float_ops.apply_split(world.floats, symbol, ratio)

    player = world.player
    involved = (
        player.portfolio.shares_of(symbol) > 0
        or player.short_position(symbol) is not None
        or any(o.symbol == symbol for o in player.pending_orders)
    )
    player = _split_holdings(player, symbol, ratio)
    if any(o.symbol == symbol for o in player.pending_orders):
        player = player.model_copy(deep=True)
        for order in player.pending_orders:
            if order.symbol != symbol:
                continue
            order.shares *= ratio
            order.order_price /= ratio
            if order.limit_price is not None:
                order.limit_price /= ratio
            if order.stop_price is not None:
                order.stop_price /= ratio

    agents = [_split_holdings(a, symbol, ratio) for a in world.agents]
    order_book = [
        e.model_copy(update={"shares": e.shares * ratio, "price": round(e.price / ratio, 2)})
        if e.symbol == symbol
        else e
        for e in world.order_book
    ]
    updated = world.model_copy(
        update={"stocks": stocks, "floats": floats, "player": player, "agents": agents, "order_book": order_book}
    )
    return updated, involved


def step_splits(world: WorldState, ctx: TickContext) -> StepResult:
    events: list[TickEvent] = []
    ratio = ctx.config.stock_split_ratio
    for symbol in find_split_candidates(world.stocks, ctx.config.stock_split_threshold):
        before = world.stock(symbol).current_price
        world, involved = apply_split(world, symbol, ratio)
        logger.info("Stock split %s %d:1 at %.2f", symbol, ratio, before)
        if ctx.notify and involved:
            events.append(
                make_notification(
                    ctx.rng,
                    "info",
                    "stock_split",
                    "Stock split",
                    f"{symbol} split {ratio}:1; your shares and orders were adjusted",
                    ctx.config.event_notification_ttl_ms,
                    world.session.current_cycle,
                    symbol=symbol,
                    payload={"ratio": ratio, "price_before": before},
                )
            )
    return world, events


# ---------------------------------------------------------------------------
# Trading steps
# ---------------------------------------------------------------------------


def step_agents(world: WorldState, ctx: TickContext) -> StepResult:
    result = run_agent_pass(world, ctx.config, ctx.rng, ctx.warmup)
    ctx.trades_by_symbol = result.trades_by_symbol
    return result.world, []


def step_settle_orders(world: WorldState, ctx: TickContext) -> StepResult:
    return settle_orders(world, ctx.config, ctx.rng)


def step_rebalance(world: WorldState, ctx: TickContext) -> StepResult:
    return world.model_copy(update={"market_maker": mm.rebalance(world.market_maker, ctx.config.market_maker)}), []


def step_age_order_book(world: WorldState, ctx: TickContext) -> StepResult:
    return world.model_copy(update={"order_book": age_order_book(world.order_book)}), []


# ---------------------------------------------------------------------------
# Risk steps
# ---------------------------------------------------------------------------


def step_interest(world: WorldState, ctx: TickContext) -> StepResult:
    cfg = ctx.config.loans
    player = loans.accrue_interest(world.player, cfg)
    agents = [loans.accrue_interest(a, cfg) for a in world.agents]
    return world.model_copy(update={"player": player, "agents": agents}), []


def step_maturities(world: WorldState, ctx: TickContext) -> StepResult:
    cfg = ctx.config.loans
    cycle = world.session.current_cycle
    player, events = loans.process_maturities(world.player, cfg, ctx.rng, cycle, notify=ctx.notify)
    agents = [loans.process_maturities(a, cfg, ctx.rng, cycle, notify=False)[0] for a in world.agents]
    return world.model_copy(update={"player": player, "agents": agents}), list(events)


def step_shorts(world: WorldState, ctx: TickContext) -> StepResult:
    cfg = ctx.config.shorts
    if not cfg.enabled:
        return world, []
    prices = world.prices()
    cycle = world.session.current_cycle
    total_shorts = shorts.total_shorts_by_symbol([world.player, *world.agents])

    events: list[TickEvent] = []
    player = shorts.charge_borrow_fees(world.player, prices, world.floats, total_shorts, cfg)
    update = shorts.update_margin_calls(player, prices, cfg, ctx.rng, cycle, notify=ctx.notify)
    player = update.account
    for cover in update.forced_covers:
        player.total_realized_profit_loss += cover.realized_profit_loss
    events.extend(update.events)

    agents = []
    for agent in world.agents:
        agent = shorts.charge_borrow_fees(agent, prices, world.floats, total_shorts, cfg)
        agents.append(shorts.update_margin_calls(agent, prices, cfg, ctx.rng, cycle, notify=False).account)
    return world.model_copy(update={"player": player, "agents": agents}), events


def step_reset_traded(world: WorldState, ctx: TickContext) -> StepResult:
    if not world.player.traded_symbols_this_cycle:
        return world, []
    player = world.player.model_copy(update={"traded_symbols_this_cycle": []})
    return world.model_copy(update={"player": player}), []


# ---------------------------------------------------------------------------
# Phase and bookkeeping steps
# ---------------------------------------------------------------------------


def step_phases(world: WorldState, ctx: TickContext) -> StepResult:
    ctx.previous_global_phase = world.phase.global_phase
    metrics = ctx.metrics or market_phase.calculate_market_metrics(world.stocks, ctx.config.phase)
    update = market_phase.advance_phases(world.phase, metrics, ctx.config.phase, ctx.rng)
    state = update.state
    events: list[TickEvent] = []
    cycle = world.session.current_cycle
    if update.crashes:
        state = state.model_copy(update={"last_crash_cycle": cycle})
    if ctx.notify:
        for crash in update.crashes:
            events.append(
                make_notification(
                    ctx.rng,
                    "error",
                    "sector_crash",
                    "Sector crash",
                    f"The {crash.sector} sector crashed ({crash.impact:.0%}); it enters a panic phase",
                    ctx.config.event_notification_ttl_ms,
                    cycle,
                    payload={"sector": crash.sector, "impact": round(crash.impact, 4)},
                )
            )
    return world.model_copy(update={"phase": state}), events


def step_fear_greed(world: WorldState, ctx: TickContext) -> StepResult:
    metrics = ctx.metrics or market_phase.calculate_market_metrics(world.stocks, ctx.config.phase)
    phase = ctx.previous_global_phase or world.phase.global_phase
    index = market_phase.calculate_fear_greed(phase, metrics, world.stocks, ctx.config.phase)
    state = world.phase.model_copy(update={"fear_greed_index": index})
    if not ctx.is_warmup:
        state = market_phase.record_cycle(state, world.session.current_cycle)
    return world.model_copy(update={"phase": state}), []


def step_advance_cycle(world: WorldState, ctx: TickContext) -> StepResult:
    if ctx.is_warmup:
        return world, []
    session = world.session.model_copy(update={"current_cycle": world.session.current_cycle + 1})
    world = world.model_copy(update={"session": session})
    duration = session.game_duration
    if duration is not None and session.current_cycle >= duration and not session.is_ended:
        stats = calculate_end_game_stats(world, ctx.config.loans)
        session = session.model_copy(update={"is_ended": True, "end_stats": stats})
        world = world.model_copy(update={"session": session})
    return world, []


STEPS: tuple[Callable[[WorldState, TickContext], StepResult], ...] = (
    step_sector_momentum,
    step_market_metrics,
    step_volatility,
    step_prices,
    step_splits,
    step_agents,
    step_settle_orders,
    step_rebalance,
    step_age_order_book,
    step_interest,
    step_maturities,
    step_shorts,
    step_reset_traded,
    step_phases,
    step_fear_greed,
    step_advance_cycle,
)


def run_tick(world: WorldState, ctx: TickContext) -> StepResult:
    """Run all steps in order, then expire old notifications and apply the collected events once."""
    events: list[TickEvent] = []
    for step in STEPS:
        world, emitted = step(world, ctx)
        events.extend(emitted)
    active = expire_notifications(world.notifications, ctx.config.schedule.update_interval_ms)
    notifications = apply_events(active, events)
    if notifications != world.notifications:
        world = world.model_copy(update={"notifications": notifications})
    return world, events
