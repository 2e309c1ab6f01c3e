"""Short selling: opening and closing positions, borrow fees, margin calls and forced covers.

Functions take a ``TraderAccount`` so the human player and agents share
the same margin rules. Only the human produces notifications.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Iterable, Literal

from models.accounts import TraderAccount
from models.config import ShortSellingConfig
from models.events import NotificationDismissal, TickEvent
from models.market import StockFloat
from models.orders import CommandResult
from models.portfolio import MarginCallStatus, ShortPosition
from simulation.notifications import make_notification

logger = logging.getLogger(__name__)

_EPSILON = 1e-9

BorrowStatus = Literal["easy", "hard"]


@dataclass
class CoverResult:
    """Outcome of closing (part of) a short position."""

    account: TraderAccount
    shares: int
    exit_price: float
    realized_profit_loss: float
    collateral_released: float
    cash_delta: float


@dataclass
class MarginUpdate:
    account: TraderAccount
    events: list[TickEvent] = field(default_factory=list)
    forced_covers: list[CoverResult] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Calculations
# ---------------------------------------------------------------------------


def position_value(shares: int, price: float) -> float:
    return shares * price


def required_margin(shares: int, price: float, margin_percent: float) -> float:
    return position_value(shares, price) * margin_percent


def short_profit_loss(entry_price: float, current_price: float, shares: int) -> float:
    return (entry_price - current_price) * shares


def is_in_margin_call(position: ShortPosition, price: float, config: ShortSellingConfig) -> bool:
    """Collateral plus unrealized P/L below the maintenance requirement."""
    effective = position.collateral_locked + short_profit_loss(position.entry_price, price, position.shares)
    return effective < required_margin(position.shares, price, config.maintenance_margin_percent)


def borrow_status(total_short_shares: int, total_float: int, config: ShortSellingConfig) -> BorrowStatus:
    if total_float == 0:
        return "hard"
    return "hard" if total_short_shares / total_float >= config.hard_to_borrow_threshold else "easy"


def borrow_fee(value: float, status: BorrowStatus, config: ShortSellingConfig) -> float:
    fee = value * config.base_borrow_fee_per_cycle
    return fee * config.hard_to_borrow_fee_multiplier if status == "hard" else fee


def total_shorts_by_symbol(accounts: Iterable[TraderAccount]) -> dict[str, int]:
    """Aggregate short interest per symbol across all traders."""
    totals: dict[str, int] = {}
    for account in accounts:
        for position in account.short_positions:
            totals[position.symbol] = totals.get(position.symbol, 0) + position.shares
    return totals


def can_short(
    symbol: str,
    shares: int,
    floats: dict[str, StockFloat],
    total_shorts: dict[str, int],
    config: ShortSellingConfig,
) -> str | None:
    """Reason a short cannot be opened, or None when it can."""
    if not config.enabled:
        return "Short selling is disabled"
    entry = floats.get(symbol)
    if entry is None:
        return f"No float information for {symbol}"
    max_shortable = entry.total_float * config.max_short_percent_of_float
    if total_shorts.get(symbol, 0) + shares > max_shortable:
        return f"Short interest limit reached for {symbol}"
    return None


def initial_collateral(shares: int, price: float, config: ShortSellingConfig) -> float:
    return required_margin(shares, price, config.initial_margin_percent)


# ---------------------------------------------------------------------------
# Position changes
# ---------------------------------------------------------------------------


def open_short(
    account: TraderAccount,
    symbol: str,
    shares: int,
    price: float,
    proceeds: float,
    config: ShortSellingConfig,
    cycle: int,
) -> tuple[TraderAccount, CommandResult]:
    """Open or add to a short position.

    Sale proceeds are credited and the collateral (value at the initial
    margin) is locked from cash. Adding to a position averages the entry.
    """
    collateral = initial_collateral(shares, price, config)
    if account.portfolio.cash + proceeds < collateral:
        return account, CommandResult(
            status="rejected",
            message=f"Insufficient cash for collateral: need {collateral - proceeds:.2f}",
        )

    account = account.model_copy(deep=True)
    account.portfolio.cash = max(0.0, account.portfolio.cash + proceeds - collateral)
    existing = account.short_position(symbol)
    if existing is not None:
        total_shares = existing.shares + shares
        existing.entry_price = (existing.shares * existing.entry_price + shares * price) / total_shares
        existing.shares = total_shares
        existing.collateral_locked += collateral
    else:
        account.short_positions.append(
            ShortPosition(
                symbol=symbol,
                shares=shares,
                entry_price=price,
                collateral_locked=collateral,
                opened_cycle=cycle,
            )
        )
    return account, CommandResult(status="accepted", message=f"Shorted {shares} {symbol} at {price:.2f}")


def close_short(
    account: TraderAccount,
    symbol: str,
    shares: int,
    exit_price: float,
    config: ShortSellingConfig,
    cover_cost: float | None = None,
) -> CoverResult | None:
    """Buy back *shares* of a short position at *exit_price*.

    Collateral is released in proportion to the shares closed. How cash
    moves depends on ``forced_cover_cash_mode``:

    * ``net_of_collateral``: cash receives the released collateral minus the
      cover cost.
    * ``independent``: cash pays the cover cost and the released collateral
      is dropped from the position without a cash credit.

    Realized P/L is ``(entry - exit) * shares`` minus the borrow fees
    attributable to the closed shares. Returns None without a position.
    """
    position = account.short_position(symbol)
    if position is None or shares <= 0:
        return None

    account = account.model_copy(deep=True)
    position = account.short_position(symbol)
    closing = min(shares, position.shares)
    ratio = closing / position.shares
    released = position.collateral_locked * ratio
    fees = position.total_borrow_fees_paid * ratio
    cost = cover_cost if cover_cost is not None else closing * exit_price
    realized = short_profit_loss(position.entry_price, exit_price, closing) - fees

    if config.forced_cover_cash_mode == "net_of_collateral":
        cash_delta = released - cost
    else:
        cash_delta = -cost
    account.portfolio.cash = max(0.0, account.portfolio.cash + cash_delta)

    position.collateral_locked -= released
    position.total_borrow_fees_paid -= fees
    position.shares -= closing
    if position.shares <= 0:
        account.short_positions = [p for p in account.short_positions if p.symbol != symbol]
        account.margin_calls = [m for m in account.margin_calls if m.symbol != symbol]

    return CoverResult(
        account=account,
        shares=closing,
        exit_price=exit_price,
        realized_profit_loss=realized,
        collateral_released=released,
        cash_delta=cash_delta,
    )


def add_margin(
    account: TraderAccount, symbol: str, amount: float, reserved: float = 0.0
) -> tuple[TraderAccount, CommandResult]:
    """Move cash into the collateral of an open short.

    Only cash not *reserved* by open orders can be moved.
    """
    if amount <= 0:
        return account, CommandResult(status="rejected", message="Margin amount must be positive")
    if account.short_position(symbol) is None:
        return account, CommandResult(status="rejected", message=f"No short position in {symbol}")
    if amount > account.portfolio.cash - reserved + _EPSILON:
        return account, CommandResult(status="rejected", message="Insufficient available cash")

    account = account.model_copy(deep=True)
    account.portfolio.cash -= amount
    account.short_position(symbol).collateral_locked += amount
    return account, CommandResult(status="accepted", message=f"Added {amount:.2f} margin to {symbol}")


def apply_split(account: TraderAccount, symbol: str, ratio: int) -> TraderAccount:
    """Multiply shares and divide the entry price; collateral is unchanged."""
    if account.short_position(symbol) is None:
        return account
    account = account.model_copy(deep=True)
    position = account.short_position(symbol)
    position.shares *= ratio
    position.entry_price /= ratio
    return account


# ---------------------------------------------------------------------------
# Tick processing
# ---------------------------------------------------------------------------


def charge_borrow_fees(
    account: TraderAccount,
    prices: dict[str, float],
    floats: dict[str, StockFloat],
    total_shorts: dict[str, int],
    config: ShortSellingConfig,
) -> TraderAccount:
    """Charge this cycle's borrow fee on every open short, with the hard-to-borrow surcharge."""
    if not account.short_positions:
        return account
    account = account.model_copy(deep=True)
    total = 0.0
    for position in account.short_positions:
        price = prices.get(position.symbol)
        if price is None:
            continue
        entry = floats.get(position.symbol)
        status = (
            borrow_status(total_shorts.get(position.symbol, position.shares), entry.total_float, config)
            if entry is not None
            else "easy"
        )
        fee = borrow_fee(position_value(position.shares, price), status, config)
        position.total_borrow_fees_paid += fee
        total += fee
    account.total_borrow_fees_paid += total
    account.portfolio.cash = max(0.0, account.portfolio.cash - total)
    return account


def update_margin_calls(
    account: TraderAccount,
    prices: dict[str, float],
    config: ShortSellingConfig,
    rng: random.Random,
    cycle: int,
    notify: bool = True,
) -> MarginUpdate:
    """Recompute margin-call countdowns and force-cover exhausted positions.

    A newly breaching position starts at ``margin_call_grace_cycles``; each
    further breaching cycle counts down. One cycle before zero a warning is
    emitted; at zero the position is covered at the current price. A
    position that recovers loses its margin-call status and its margin-call
    notifications are dismissed.
    """
    account = account.model_copy(deep=True)
    update = MarginUpdate(account=account)
    statuses = {m.symbol: m for m in account.margin_calls}
    next_statuses: list[MarginCallStatus] = []

    for position in account.short_positions:
        price = prices.get(position.symbol)
        if price is None:
            if position.symbol in statuses:
                next_statuses.append(statuses[position.symbol])
            continue
        existing = statuses.get(position.symbol)
        if is_in_margin_call(position, price, config):
            if existing is None:
                status = MarginCallStatus(symbol=position.symbol, cycles_remaining=config.margin_call_grace_cycles)
                account.margin_calls_received += 1
                logger.debug("%s: margin call on %s", account.id, position.symbol)
                if notify:
                    update.events.append(
                        make_notification(
                            rng,
                            "error",
                            "margin_call",
                            "Margin call",
                            f"Short position in {position.symbol} is below maintenance margin. "
                            f"Add margin or cover within {status.cycles_remaining} cycles",
                            0,
                            cycle,
                            symbol=position.symbol,
                        )
                    )
            else:
                status = MarginCallStatus(symbol=position.symbol, cycles_remaining=existing.cycles_remaining - 1)
                if status.cycles_remaining == 1 and notify:
                    update.events.append(
                        make_notification(
                            rng,
                            "warning",
                            "forced_cover_warning",
                            "Forced cover imminent",
                            f"Short position in {position.symbol} will be covered next cycle",
                            config.warning_ttl_ms,
                            cycle,
                            symbol=position.symbol,
                        )
                    )
            next_statuses.append(status)
        elif existing is not None and notify:
            update.events.append(NotificationDismissal(symbol=position.symbol))
            update.events.append(
                make_notification(
                    rng,
                    "info",
                    "margin_call_resolved",
                    "Margin call resolved",
                    f"Short position in {position.symbol} is back above maintenance margin",
                    config.warning_ttl_ms,
                    cycle,
                    symbol=position.symbol,
                )
            )

    account.margin_calls = next_statuses

    for status in [m for m in next_statuses if m.cycles_remaining <= 0]:
        position = account.short_position(status.symbol)
        price = prices[status.symbol]
        result = close_short(account, status.symbol, position.shares, price, config)
        if result is None:
            continue
        account = result.account
        account.forced_covers_executed += 1
        update.forced_covers.append(result)
        logger.warning(
            "%s: forced cover of %d %s at %.2f (P/L %.2f)",
            account.id,
            result.shares,
            status.symbol,
            price,
            result.realized_profit_loss,
        )
        if notify:
            update.events.append(NotificationDismissal(symbol=status.symbol))
            update.events.append(
                make_notification(
                    rng,
                    "error",
                    "forced_cover",
                    "Forced cover",
                    f"{result.shares} {status.symbol} covered at {price:.2f}; "
                    f"realized P/L {result.realized_profit_loss:,.2f}",
                    0,
                    cycle,
                    symbol=status.symbol,
                    payload={"shares": result.shares, "realized_profit_loss": round(result.realized_profit_loss, 2)},
                )
            )

    update.account = account
    return update
