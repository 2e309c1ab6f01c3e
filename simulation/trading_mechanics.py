"""Execution costs of human fills: spread, progressive slippage and fees."""

from __future__ import annotations

from pydantic import BaseModel

from models.config import TradingMechanicsConfig
from models.orders import OrderSide


class TradeExecution(BaseModel):
    """Full cost breakdown of one fill. ``total`` is paid (buy) or received (sell)."""

    effective_price: float
    subtotal: float
    fee: float
    total: float
    base_price: float
    spread_cost: float
    slippage_cost: float


def _direction(side: OrderSide) -> int:
    return 1 if side == "buy" else -1


def calculate_spread(
    base_price: float,
    side: OrderSide,
    mechanics: TradingMechanicsConfig,
    spread_multiplier: float = 1.0,
) -> float:
    """Half the spread per share: added for buyers, subtracted for sellers."""
    return base_price * mechanics.spread_percent * spread_multiplier / 2 * _direction(side)


def calculate_slippage(
    base_price: float,
    shares: int,
    side: OrderSide,
    mechanics: TradingMechanicsConfig,
) -> float:
    """Total progressive slippage: share *i* slips ``i * slippage_per_share``, capped per share."""
    if shares <= 1:
        return 0.0
    raw = base_price * mechanics.slippage_per_share * shares * (shares - 1) / 2
    cap = base_price * mechanics.max_slippage * shares
    return min(raw, cap) * _direction(side)


def calculate_fee(subtotal: float, mechanics: TradingMechanicsConfig) -> float:
    if mechanics.fee_percent == 0 and mechanics.min_fee == 0:
        return 0.0
    return max(abs(subtotal) * mechanics.fee_percent, mechanics.min_fee)


def calculate_trade_execution(
    base_price: float,
    shares: int,
    side: OrderSide,
    mechanics: TradingMechanicsConfig,
    spread_multiplier: float = 1.0,
) -> TradeExecution:
    """Price a fill of *shares* at *base_price*.

    ``spread_multiplier`` comes from market-maker inventory (and phase) and
    widens or narrows the configured spread.
    """
    spread = calculate_spread(base_price, side, mechanics, spread_multiplier)
    slippage = calculate_slippage(base_price, shares, side, mechanics)
    effective = round(base_price + (spread + slippage) / shares, 2)
    subtotal = round(effective * shares, 2)
    fee = round(calculate_fee(subtotal, mechanics), 2)
    total = round(subtotal + fee, 2) if side == "buy" else round(subtotal - fee, 2)
    return TradeExecution(
        effective_price=effective,
        subtotal=subtotal,
        fee=fee,
        total=total,
        base_price=base_price,
        spread_cost=round(spread, 2),
        slippage_cost=round(slippage, 2),
    )


def market_buy_cash_required(price: float, shares: int, mechanics: TradingMechanicsConfig) -> float:
    """Cash a market buy must have available when it is placed, including the safety buffer."""
    return price * shares * (1 + mechanics.market_order_cash_buffer)
