"""Human order queue: placement with reservations, cancel/edit, and per-tick settlement.

Buy orders reserve cash, sell orders reserve shares (also tracked in the
float), short sells reserve the part of their collateral that the sale
proceeds do not cover. Orders are only filled in ``settle_orders``, which
runs after the price update and the agent pass.
"""

from __future__ import annotations

import logging
import random

from models.accounts import HumanPlayer
from models.config import EngineConfig, ShortSellingConfig
from models.events import Notification, TickEvent
from models.market import Stock
from models.orders import CommandResult, CompletedTrade, OrderAction, OrderType, PendingOrder
from models.portfolio import Holding
from models.world import WorldState
from simulation import floats as float_ops
from simulation import market_maker as mm
from simulation import shorts
from simulation.market_phase import spread_modifier
from simulation.notifications import make_notification, new_id
from simulation.price_generator import apply_trade_impact
from simulation.trading_mechanics import TradeExecution, calculate_trade_execution, market_buy_cash_required

logger = logging.getLogger(__name__)

_EPSILON = 1e-9


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


def short_cash_requirement(price: float, shares: int, config: ShortSellingConfig) -> float:
    """Collateral not covered by the sale proceeds of a short sell."""
    return price * shares * max(0.0, config.initial_margin_percent - 1)


def order_cash_requirement(order: PendingOrder, config: EngineConfig) -> float:
    """Cash an open order holds back from other uses.

    Buys without a limit price reserve the buffered market amount, priced at
    the stop when it is above the placement price.
    """
    if order.side == "buy":
        if order.limit_price is None:
            price = max(order.order_price, order.stop_price or 0.0)
            return market_buy_cash_required(price, order.shares, config.mechanics)
        return order.limit_price * order.shares
    if order.side == "short_sell":
        return short_cash_requirement(order.reservation_price, order.shares, config.shorts)
    return 0.0


def reserved_cash(orders: list[PendingOrder], config: EngineConfig) -> float:
    return sum(order_cash_requirement(o, config) for o in orders)


def reserved_shares(orders: list[PendingOrder], symbol: str) -> int:
    return sum(o.shares for o in orders if o.side == "sell" and o.symbol == symbol)


def pending_cover_shares(orders: list[PendingOrder], symbol: str) -> int:
    return sum(o.shares for o in orders if o.side == "buy_to_cover" and o.symbol == symbol)


def available_cash(player: HumanPlayer, config: EngineConfig) -> float:
    return player.portfolio.cash - reserved_cash(player.pending_orders, config)


def effective_spread_multiplier(world: WorldState, stock: Stock, config: EngineConfig) -> float:
    """Market-maker inventory multiplier widened or narrowed by the current phases."""
    modifier = spread_modifier(stock.sector, world.phase, config.phase)
    return mm.spread_multiplier(world.market_maker, stock.symbol) * max(0.0, 1 + modifier)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate(
    world: WorldState,
    order: PendingOrder,
    config: EngineConfig,
    others: list[PendingOrder],
) -> str | None:
    """Reason *order* cannot be queued next to *others*, or None when it can."""
    player = world.player
    if order.order_type in ("limit", "stop_buy_limit") and order.limit_price is None:
        return "Limit price required"
    if order.order_type in ("stop_buy", "stop_buy_limit") and order.stop_price is None:
        return "Stop price required"
    if order.limit_price is not None and order.limit_price <= 0:
        return "Limit price must be positive"

    cash = player.portfolio.cash - reserved_cash(others, config)
    if order.side == "buy":
        required = order_cash_requirement(order, config)
        if required > cash + _EPSILON:
            return f"Insufficient cash: need {required:,.2f}, available {cash:,.2f}"
    elif order.side == "sell":
        free = player.portfolio.shares_of(order.symbol) - reserved_shares(others, order.symbol)
        if order.shares > free:
            return f"Insufficient shares: {free} available"
    elif order.side == "short_sell":
        if order.order_type not in ("market", "limit"):
            return "Short sells must be market or limit orders"
        total_shorts = shorts.total_shorts_by_symbol([player, *world.agents])
        pending = sum(o.shares for o in others if o.side == "short_sell" and o.symbol == order.symbol)
        total_shorts[order.symbol] = total_shorts.get(order.symbol, 0) + pending
        problem = shorts.can_short(order.symbol, order.shares, world.floats, total_shorts, config.shorts)
        if problem:
            return problem
        required = order_cash_requirement(order, config)
        if required > cash + _EPSILON:
            return f"Insufficient cash for collateral: need {required:,.2f}"
    else:
        position = player.short_position(order.symbol)
        if position is None:
            return f"No short position in {order.symbol}"
        if order.shares > position.shares - pending_cover_shares(others, order.symbol):
            return f"Cover exceeds open short of {position.shares} shares"
    return None


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def place_order(
    world: WorldState,
    symbol: str,
    side: OrderAction,
    order_type: OrderType,
    shares: int,
    config: EngineConfig,
    rng: random.Random,
    limit_price: float | None = None,
    stop_price: float | None = None,
    validity_cycles: int | None = None,
) -> tuple[WorldState, CommandResult]:
    """Queue an order and reserve its resources. Rejections leave *world* untouched."""
    stock = world.stock(symbol)
    if stock is None:
        return world, CommandResult(status="rejected", message=f"Unknown symbol {symbol}")
    if shares <= 0:
        return world, CommandResult(status="rejected", message="Quantity must be positive")
    if symbol in world.player.traded_symbols_this_cycle:
        return world, CommandResult(status="rejected", message=f"{symbol} was already traded this cycle")

    if order_type == "market":
        remaining = 1
    else:
        remaining = validity_cycles or config.trading.default_order_validity_cycles
    order = PendingOrder(
        id=new_id(rng, "ord"),
        symbol=symbol,
        side=side,
        order_type=order_type,
        shares=shares,
        order_price=stock.current_price,
        limit_price=limit_price,
        stop_price=stop_price,
        remaining_cycles=remaining,
        created_cycle=world.session.current_cycle,
    )
    problem = _validate(world, order, config, world.player.pending_orders)
    if problem:
        logger.warning("Order rejected (%s %d %s): %s", side, shares, symbol, problem)
        return world, CommandResult(status="rejected", message=problem)

    player = world.player.model_copy(deep=True)
    player.pending_orders.append(order)
    player.traded_symbols_this_cycle.append(symbol)
    floats = world.floats
    if side == "sell":
        floats = float_ops.reserve_shares(floats, symbol, shares)
    logger.debug("Order %s queued: %s %s %d %s", order.id, order_type, side, shares, symbol)
    return (
        world.model_copy(update={"player": player, "floats": floats}),
        CommandResult(status="accepted", message=f"{side} order for {shares} {symbol} queued", order_id=order.id),
    )


def _find(player: HumanPlayer, order_id: str) -> PendingOrder | None:
    for order in player.pending_orders:
        if order.id == order_id:
            return order
    return None


def _remove_order(world: WorldState, order: PendingOrder, release_mark: bool) -> WorldState:
    player = world.player.model_copy(deep=True)
    player.pending_orders = [o for o in player.pending_orders if o.id != order.id]
    if release_mark and not any(o.symbol == order.symbol for o in player.pending_orders):
        player.traded_symbols_this_cycle = [s for s in player.traded_symbols_this_cycle if s != order.symbol]
    floats = world.floats
    if order.side == "sell":
        floats = float_ops.release_shares(floats, order.symbol, order.shares)
    return world.model_copy(update={"player": player, "floats": floats})


def cancel_order(world: WorldState, order_id: str) -> tuple[WorldState, CommandResult]:
    """Remove an order and release its reservation.

    Cancelling the last order of a symbol frees the symbol for another
    trade in the same cycle.
    """
    order = _find(world.player, order_id)
    if order is None:
        return world, CommandResult(status="rejected", message=f"Unknown order {order_id}")
    return _remove_order(world, order, release_mark=True), CommandResult(
        status="accepted", message="Order cancelled", order_id=order_id
    )


def edit_order(
    world: WorldState,
    order_id: str,
    config: EngineConfig,
    shares: int | None = None,
    limit_price: float | None = None,
) -> tuple[WorldState, CommandResult]:
    """Change quantity and/or limit price, re-validating the reservation atomically."""
    order = _find(world.player, order_id)
    if order is None:
        return world, CommandResult(status="rejected", message=f"Unknown order {order_id}")
    if shares is not None and shares <= 0:
        return world, CommandResult(status="rejected", message="Quantity must be positive")

    changes: dict[str, object] = {}
    if shares is not None:
        changes["shares"] = shares
    if limit_price is not None:
        changes["limit_price"] = limit_price
    edited = order.model_copy(update=changes)
    others = [o for o in world.player.pending_orders if o.id != order_id]
    problem = _validate(world, edited, config, others)
    if problem:
        logger.warning("Edit of %s rejected: %s", order_id, problem)
        return world, CommandResult(status="rejected", message=problem, order_id=order_id)

    player = world.player.model_copy(deep=True)
    player.pending_orders = [edited if o.id == order_id else o for o in player.pending_orders]
    floats = world.floats
    if order.side == "sell" and edited.shares != order.shares:
        floats = float_ops.release_shares(floats, order.symbol, order.shares)
        floats = float_ops.reserve_shares(floats, order.symbol, edited.shares)
    return world.model_copy(update={"player": player, "floats": floats}), CommandResult(
        status="accepted", message="Order updated", order_id=order_id
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


def stop_triggered(order: PendingOrder, price: float) -> bool:
    if order.stop_price is None:
        return False
    if order.side in ("buy", "buy_to_cover"):
        return price >= order.stop_price
    return price <= order.stop_price


def can_execute(order: PendingOrder, price: float) -> bool:
    """Trigger condition of *order* at *price*."""
    if order.order_type == "market":
        return True
    if order.order_type == "stop_buy":
        return stop_triggered(order, price)
    if order.order_type == "stop_buy_limit" and not order.stop_triggered:
        return False
    if order.limit_price is None:
        return False
    if order.side in ("buy", "buy_to_cover"):
        return price <= order.limit_price
    return price >= order.limit_price


def _trade(order: PendingOrder, execution: TradeExecution, cycle: int, **extra) -> CompletedTrade:
    return CompletedTrade(
        id=f"trade-{order.id}",
        symbol=order.symbol,
        side=order.side,
        shares=order.shares,
        price_per_share=execution.total / order.shares,
        total_amount=execution.total,
        cycle=cycle,
        order_id=order.id,
        **extra,
    )


def _failed(world: WorldState, order: PendingOrder, reason: str, rng: random.Random) -> list[TickEvent]:
    """Failed-trade record plus one warning per order, never repeated once sent."""
    cycle = world.session.current_cycle
    events: list[TickEvent] = [
        CompletedTrade(
            id=f"failed-{order.id}",
            symbol=order.symbol,
            side=order.side,
            shares=order.shares,
            price_per_share=order.order_price,
            total_amount=order.order_price * order.shares,
            cycle=cycle,
            status="failed",
            failure_reason=reason,
            order_id=order.id,
        )
    ]
    if not order.failure_notified:
        events.append(
            make_notification(
                rng,
                "warning",
                "order_failed",
                "Order not executed",
                f"{order.side} {order.shares} {order.symbol}: {reason}",
                0,
                cycle,
                order_id=order.id,
                symbol=order.symbol,
            )
        )
    return events


def _execute(
    world: WorldState,
    order: PendingOrder,
    stock: Stock,
    config: EngineConfig,
    rng: random.Random,
) -> tuple[WorldState, list[TickEvent], bool]:
    """Fill one triggered order. Returns the world, events and whether the order is done."""
    cycle = world.session.current_cycle
    price = stock.current_price
    multiplier = effective_spread_multiplier(world, stock, config)
    trade_side = "buy" if order.side in ("buy", "buy_to_cover") else "sell"
    execution = calculate_trade_execution(price, order.shares, trade_side, config.mechanics, multiplier)
    player = world.player.model_copy(deep=True)
    floats = world.floats
    others = [o for o in world.player.pending_orders if o.id != order.id]
    spendable = player.portfolio.cash - reserved_cash(others, config)

    if trade_side == "buy" and not mm.can_fill_buy(world.market_maker, order.symbol, order.shares):
        return world, _failed(world, order, "insufficient market liquidity", rng), False

    if order.side == "buy":
        if execution.total > spendable + _EPSILON:
            return world, _failed(world, order, "insufficient available cash", rng), False
        pps = execution.total / order.shares
        player.portfolio.cash = max(0.0, player.portfolio.cash - execution.total)
        holding = player.portfolio.holding(order.symbol)
        if holding is None:
            player.portfolio.holdings.append(Holding(symbol=order.symbol, shares=order.shares, avg_buy_price=pps))
        else:
            total = holding.shares + order.shares
            holding.avg_buy_price = (holding.shares * holding.avg_buy_price + execution.total) / total
            holding.shares = total
        floats = float_ops.transfer_shares(floats, order.symbol, "mm", "player", order.shares)
        trade = _trade(order, execution, cycle)

    elif order.side == "sell":
        holding = player.portfolio.holding(order.symbol)
        if holding is None or holding.shares < order.shares:
            return world, _failed(world, order, "insufficient shares", rng), True
        pps = execution.total / order.shares
        realized = (pps - holding.avg_buy_price) * order.shares
        avg = holding.avg_buy_price
        player.portfolio.cash += execution.total
        holding.shares -= order.shares
        if holding.shares == 0:
            player.portfolio.holdings = [h for h in player.portfolio.holdings if h.symbol != order.symbol]
        player.total_realized_profit_loss += realized
        floats = float_ops.release_shares(floats, order.symbol, order.shares)
        floats = float_ops.transfer_shares(floats, order.symbol, "player", "mm", order.shares)
        trade = _trade(order, execution, cycle, realized_profit_loss=realized, avg_buy_price=avg)

    elif order.side == "short_sell":
        total_shorts = shorts.total_shorts_by_symbol([world.player, *world.agents])
        problem = shorts.can_short(order.symbol, order.shares, floats, total_shorts, config.shorts)
        if problem:
            return world, _failed(world, order, problem, rng), False
        if shorts.initial_collateral(order.shares, price, config.shorts) - execution.total > spendable + _EPSILON:
            return world, _failed(world, order, "insufficient available cash", rng), False
        player, result = shorts.open_short(
            player, order.symbol, order.shares, price, execution.total, config.shorts, cycle
        )
        if result.status != "accepted":
            return world, _failed(world, order, result.message, rng), False
        trade = _trade(order, execution, cycle)

    else:
        position = player.short_position(order.symbol)
        if position is None:
            return world, _failed(world, order, "no open short position", rng), True
        cover = shorts.close_short(player, order.symbol, order.shares, price, config.shorts, execution.total)
        if cover.account.portfolio.cash < reserved_cash(others, config) - _EPSILON:
            return world, _failed(world, order, "insufficient available cash", rng), False
        player = cover.account
        player.total_realized_profit_loss += cover.realized_profit_loss
        trade = _trade(order, execution, cycle, realized_profit_loss=cover.realized_profit_loss)

    player.pending_orders = [o for o in player.pending_orders if o.id != order.id]
    player.total_trades_executed += 1
    player.trade_history = (player.trade_history + [trade])[-config.max_trade_history:]
    if order.symbol not in player.traded_symbols_this_cycle:
        player.traded_symbols_this_cycle.append(order.symbol)

    inventories = mm.apply_fill(world.market_maker, order.symbol, trade_side, order.shares, config.market_maker)
    stocks = apply_trade_impact(
        world.stocks, order.symbol, trade_side, order.shares, rng, mm.spread_multiplier(inventories, order.symbol)
    )
    logger.debug("Filled %s: %s %d %s at %.2f", order.id, order.side, order.shares, order.symbol, trade.price_per_share)
    world = world.model_copy(
        update={"player": player, "floats": floats, "market_maker": inventories, "stocks": stocks}
    )
    return world, [trade], True


def tick_order_cycles(world: WorldState) -> WorldState:
    """Age non-market orders and expire those past their validity, releasing reservations."""
    player = world.player.model_copy(deep=True)
    floats = world.floats
    kept: list[PendingOrder] = []
    for order in player.pending_orders:
        if order.order_type == "market":
            kept.append(order)
            continue
        order.remaining_cycles -= 1
        if order.remaining_cycles < 0:
            logger.debug("Order %s expired", order.id)
            if order.side == "sell":
                floats = float_ops.release_shares(floats, order.symbol, order.shares)
            continue
        kept.append(order)
    player.pending_orders = kept
    return world.model_copy(update={"player": player, "floats": floats})


def _update_order(world: WorldState, order_id: str, **changes: object) -> WorldState:
    player = world.player.model_copy(deep=True)
    player.pending_orders = [
        o.model_copy(update=changes) if o.id == order_id else o for o in player.pending_orders
    ]
    return world.model_copy(update={"player": player})


def settle_orders(world: WorldState, config: EngineConfig, rng: random.Random) -> tuple[WorldState, list[TickEvent]]:
    """Evaluate every open order at post-update prices, then age the rest.

    A ``stop_buy_limit`` whose stop is hit is only marked triggered; its
    limit is checked from the next settlement on.
    """
    events: list[TickEvent] = []
    for order in list(world.player.pending_orders):
        stock = world.stock(order.symbol)
        if stock is None:
            continue
        if order.order_type == "stop_buy_limit" and not order.stop_triggered:
            if stop_triggered(order, stock.current_price):
                world = _update_order(world, order.id, stop_triggered=True)
            continue
        if not can_execute(order, stock.current_price):
            continue
        world, emitted, done = _execute(world, order, stock, config, rng)
        events.extend(emitted)
        if not done and any(isinstance(e, Notification) for e in emitted):
            world = _update_order(world, order.id, failure_notified=True)
        if done and not any(isinstance(e, CompletedTrade) and e.status == "executed" for e in emitted):
            world = _remove_order(world, order, release_mark=False)

    return tick_order_cycles(world), events
