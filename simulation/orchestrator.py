"""Cycle orchestrator: sole owner of the world state and the random generator.

Usage::

    orchestrator = CycleOrchestrator(EngineConfig.from_yaml("config/default.yaml"))
    orchestrator.start_game(seed=7)
    result = orchestrator.tick()
    orchestrator.place_order("AAPL", "buy", "market", 10)

Readers only see the world between ticks. Commands update reservations
and queues immediately and return a ``CommandResult``; their market
effects are settled by the next tick.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Any

from models.accounts import HumanPlayer
from models.config import EngineConfig
from models.orders import CommandResult, OrderAction, OrderType
from models.portfolio import Portfolio
from models.world import GameSession, TickResult, WorldState
from simulation import loans
from simulation import market_maker as mm
from simulation import order_settlement
from simulation import shorts
from simulation.floats import initialize_floats
from simulation.market_phase import initialize_phases
from simulation.notifications import dismiss, dismiss_for_loan
from simulation.pipeline import TickContext, run_tick
from simulation.scheduler import VALID_SPEEDS, Clock, CycleScheduler
from simulation.sector_momentum import initial_sector_state
from simulation.snapshot import from_snapshot, to_snapshot
from simulation.stock_data import initialize_stocks
from simulation.strategies import WarmupContext
from simulation.trader_engine import force_untraded_trades, initialize_agents

logger = logging.getLogger(__name__)

PANELS = ("trade_panel", "loan_modal", "settings", "help")


def _rejected(message: str) -> CommandResult:
    return CommandResult(status="rejected", message=message)


def new_world(config: EngineConfig, rng: random.Random) -> WorldState:
    """Build the starting world of a game, before warm-up."""
    stocks = initialize_stocks(config, rng)
    agents = initialize_agents(config, stocks, rng)
    player = HumanPlayer(portfolio=Portfolio(cash=config.initial_cash), initial_cash=config.initial_cash)
    player.credit.credit_score = config.loans.initial_credit_score
    return WorldState(
        game_mode=config.game_mode,
        session=GameSession(game_duration=config.game_duration_cycles),
        stocks=stocks,
        sectors=initial_sector_state(),
        phase=initialize_phases(config.phase, rng),
        market_maker=mm.initial_inventories([s.symbol for s in stocks], config.market_maker),
        floats=initialize_floats(stocks, player, agents, config.floats),
        player=player,
        agents=agents,
    )


def run_warmup(world: WorldState, config: EngineConfig, rng: random.Random) -> WorldState:
    """Accelerated ticks seeding history and liquidity, then forced trades for untraded symbols.

    Warm-up ticks do not advance the visible cycle and emit no notifications.
    """
    cfg = config.warmup
    counts = {s.symbol: 0 for s in world.stocks}
    prioritize_after = math.floor(cfg.cycles * cfg.prioritize_after_fraction)
    for i in range(cfg.cycles):
        warmup = WarmupContext(
            trade_counts=dict(counts),
            current_cycle=i,
            prioritize_after_cycle=prioritize_after,
            min_trades_required=cfg.min_trades_required,
            buy_boost=cfg.buy_boost,
        )
        ctx = TickContext(config=config, rng=rng, warmup=warmup)
        world, _ = run_tick(world, ctx)
        for symbol, traded in ctx.trades_by_symbol.items():
            counts[symbol] = counts.get(symbol, 0) + traded
    if cfg.cycles:
        world, _ = force_untraded_trades(world, counts, config, rng)
    logger.info("Warm-up complete: %d cycles, %d agent trades", cfg.cycles, world.agent_trade_count)
    session = world.session.model_copy(update={"warmup_complete": True})
    return world.model_copy(update={"session": session, "notifications": []})


class CycleOrchestrator:
    """Runs ticks in order, applies commands and decides when ticking is suspended."""

    def __init__(self, config: EngineConfig, clock: Clock | None = None) -> None:
        self._config = config
        self._rng = random.Random(config.seed)
        self._world: WorldState | None = None
        self._scheduler = CycleScheduler(
            config.schedule.update_interval_ms,
            clock=clock,
            speed=config.schedule.speed_multiplier,
        )
        self._paused = False
        self._open_panels: set[str] = set()

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def world(self) -> WorldState | None:
        return self._world

    @property
    def scheduler(self) -> CycleScheduler:
        return self._scheduler

    @property
    def is_suspended(self) -> bool:
        """Any of: no game started, manually paused, a panel open, game over."""
        world = self._world
        return (
            world is None
            or not world.session.is_started
            or self._paused
            or bool(self._open_panels)
            or world.session.is_ended
        )

    def countdown_ms(self) -> float:
        return self._scheduler.countdown_ms()

    def snapshot(self) -> dict[str, Any]:
        if self._world is None:
            raise RuntimeError("No game in progress")
        return to_snapshot(self._world)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_game(self, seed: int | None = None) -> WorldState:
        """Build a fresh world, run warm-up and start the scheduler."""
        if seed is None:
            seed = self._config.seed
        self._rng = random.Random(seed)
        world = new_world(self._config, self._rng)
        logger.info(
            "Starting game: %d stocks, %d agents, mode=%s, seed=%s",
            len(world.stocks),
            len(world.agents),
            self._config.game_mode,
            seed,
        )
        world = run_warmup(world, self._config, self._rng)
        self._world = world.model_copy(update={"session": world.session.model_copy(update={"is_started": True})})
        self._paused = False
        self._open_panels.clear()
        self._scheduler.start()
        return self._world

    def reset_game(self) -> None:
        self._world = None
        self._paused = False
        self._open_panels.clear()
        self._scheduler.stop()
        logger.info("Game reset")

    def restore(self, data: dict[str, Any]) -> WorldState:
        """Replace the world wholesale from a snapshot payload."""
        self._world = from_snapshot(data, self._config)
        if self._world.session.is_started and not self._world.session.is_ended:
            self._scheduler.start()
        self._sync_suspension()
        logger.info("Restored world at cycle %d", self._world.session.current_cycle)
        return self._world

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> TickResult:
        """Run one full tick. Raises ``RuntimeError`` when no game is running."""
        world = self._world
        if world is None or not world.session.is_started or world.session.is_ended:
            raise RuntimeError("No running game to tick")
        ctx = TickContext(config=self._config, rng=self._rng)
        world, events = run_tick(world, ctx)
        self._world = world
        logger.debug("Cycle %d done: %d events", world.session.current_cycle, len(events))
        if world.session.is_ended:
            logger.info("Game ended at cycle %d", world.session.current_cycle)
            self._scheduler.stop()
        return TickResult(world=world, events=events, cycle=world.session.current_cycle)

    def poll(self) -> TickResult | None:
        """Tick when the scheduler deadline has passed; otherwise only refresh the countdown."""
        self._sync_suspension()
        if not self._scheduler.is_due():
            return None
        self._scheduler.mark_fired()
        return self.tick()

    def _sync_suspension(self) -> None:
        if self.is_suspended:
            self._scheduler.suspend()
        else:
            self._scheduler.resume()

    def pause(self) -> CommandResult:
        self._paused = True
        self._sync_suspension()
        return CommandResult(status="accepted", message="Paused")

    def resume(self) -> CommandResult:
        self._paused = False
        self._sync_suspension()
        return CommandResult(status="accepted", message="Resumed")

    def set_speed(self, speed: int) -> CommandResult:
        if speed not in VALID_SPEEDS:
            return _rejected(f"Speed must be one of {VALID_SPEEDS}")
        self._scheduler.set_speed(speed)
        return CommandResult(status="accepted", message=f"Speed set to {speed}x")

    def set_panel_state(self, panel: str, is_open: bool) -> CommandResult:
        if panel not in PANELS:
            return _rejected(f"Unknown panel {panel}")
        if is_open:
            self._open_panels.add(panel)
        else:
            self._open_panels.discard(panel)
        self._sync_suspension()
        return CommandResult(status="accepted", message=f"{panel} {'opened' if is_open else 'closed'}")

    # ------------------------------------------------------------------
    # Order commands
    # ------------------------------------------------------------------

    def place_order(
        self,
        symbol: str,
        side: OrderAction,
        order_type: OrderType,
        shares: int,
        limit_price: float | None = None,
        stop_price: float | None = None,
        validity_cycles: int | None = None,
    ) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        self._world, result = order_settlement.place_order(
            self._world,
            symbol,
            side,
            order_type,
            shares,
            self._config,
            self._rng,
            limit_price=limit_price,
            stop_price=stop_price,
            validity_cycles=validity_cycles,
        )
        return result

    def cancel_order(self, order_id: str) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        self._world, result = order_settlement.cancel_order(self._world, order_id)
        return result

    def edit_order(self, order_id: str, shares: int | None = None, limit_price: float | None = None) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        self._world, result = order_settlement.edit_order(
            self._world, order_id, self._config, shares=shares, limit_price=limit_price
        )
        return result

    def short_sell(self, symbol: str, shares: int, limit_price: float | None = None) -> CommandResult:
        order_type: OrderType = "limit" if limit_price is not None else "market"
        return self.place_order(symbol, "short_sell", order_type, shares, limit_price=limit_price)

    def cover_short(self, symbol: str, shares: int | None = None) -> CommandResult:
        """Queue a market buy-to-cover; without *shares* the whole position is covered."""
        if self._world is None:
            return _rejected("No game in progress")
        position = self._world.player.short_position(symbol)
        if position is None:
            return _rejected(f"No short position in {symbol}")
        return self.place_order(symbol, "buy_to_cover", "market", shares or position.shares)

    def add_margin(self, symbol: str, amount: float) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        reserved = order_settlement.reserved_cash(self._world.player.pending_orders, self._config)
        player, result = shorts.add_margin(self._world.player, symbol, amount, reserved)
        if result.status == "accepted":
            self._world = self._world.model_copy(update={"player": player})
        return result

    # ------------------------------------------------------------------
    # Credit commands
    # ------------------------------------------------------------------

    def request_loan(self, amount: float, duration_cycles: int | None = None) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        cfg = self._config.loans
        world = self._world
        player = world.player
        executed = [t for t in player.trade_history if t.status == "executed"]
        updated, result = loans.take_loan(
            player,
            amount,
            duration_cycles or cfg.default_loan_duration_cycles,
            world.stocks,
            cfg,
            self._rng,
            world.session.current_cycle,
            risk_score=loans.trading_risk_score(executed, player.initial_cash),
            realized_profit_loss=player.total_realized_profit_loss,
        )
        if result.status != "accepted":
            logger.warning("Loan request of %.2f rejected: %s", amount, result.message)
            return result
        info = loans.credit_line_info(updated, world.stocks, cfg)
        if info.max_credit_line > 0:
            utilization = updated.credit.total_debt / info.max_credit_line
            updated.max_loan_utilization = max(updated.max_loan_utilization, utilization)
        self._world = world.model_copy(update={"player": updated})
        return result

    def repay_loan(self, loan_id: str, amount: float | None = None) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        world = self._world
        player, result = loans.repay_loan(
            world.player,
            loan_id,
            self._config.loans,
            world.session.current_cycle,
            amount=amount,
            reserved=order_settlement.reserved_cash(world.player.pending_orders, self._config),
        )
        if result.status != "accepted":
            return result
        notifications = world.notifications
        if player.credit.loan(loan_id) is None:
            notifications = dismiss_for_loan(notifications, loan_id)
        self._world = world.model_copy(update={"player": player, "notifications": notifications})
        return result

    def dismiss_notification(self, notification_id: str) -> CommandResult:
        if self._world is None:
            return _rejected("No game in progress")
        remaining = dismiss(self._world.notifications, notification_id)
        if len(remaining) == len(self._world.notifications):
            return _rejected(f"Unknown notification {notification_id}")
        self._world = self._world.model_copy(update={"notifications": remaining})
        return CommandResult(status="accepted", message="Notification dismissed")
