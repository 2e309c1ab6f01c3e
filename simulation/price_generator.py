"""Candle generation, trade impact and stock splits.

Every function here returns new ``Stock`` objects. OHLC consistency holds
for every candle produced: ``high >= max(open, close)`` and
``low <= min(open, close)``, and ``current_price`` equals the last close.
"""

from __future__ import annotations

import random

from models.market import Candle, Stock
from models.orders import OrderSide

MIN_CLOSE = 1.0
MIN_LOW = 0.5
BASE_CANDLE_VOLATILITY = 0.025
# Slight upward drift: u - 0.48 instead of u - 0.5
RANDOM_WALK_CENTER = 0.48
WICK_FACTOR = 0.3
IMPACT_MIN = 0.001
IMPACT_MAX = 0.005
IMPACT_SHARE_CAP = 50


def _with_last_candle(stock: Stock, candle: Candle) -> Stock:
    history = stock.price_history[:-1] + [candle]
    return _with_history(stock, history, candle.open)


def _with_history(stock: Stock, history: list[Candle], reference: float) -> Stock:
    close = history[-1].close
    change = close - reference
    return stock.model_copy(
        update={
            "price_history": history,
            "current_price": close,
            "change": round(change, 2),
            "change_percent": round(change / reference * 100, 2) if reference else 0.0,
        }
    )


def generate_candle(
    stock: Stock,
    rng: random.Random,
    influence: float = 0.0,
    volatility_multiplier: float = 1.0,
) -> Candle:
    """Synthesize the next candle from the current price.

    The random walk is scaled by the phase volatility multiplier and biased
    by the sector influence.
    """
    open_ = stock.current_price
    vol = open_ * BASE_CANDLE_VOLATILITY * volatility_multiplier
    trend = (rng.random() - RANDOM_WALK_CENTER) * vol + open_ * influence
    close = max(MIN_CLOSE, open_ + trend)
    high = max(open_, close) + rng.random() * vol * WICK_FACTOR
    low = max(MIN_LOW, min(open_, close) - rng.random() * vol * WICK_FACTOR)
    # Guard the invariant against the low floor rising above the body
    low = min(low, open_, close)

    last = stock.last_candle
    return Candle(
        time=(last.time + 1) if last is not None else 0,
        open=round(open_, 2),
        high=round(high, 2),
        low=round(low, 2),
        close=round(close, 2),
    )


def update_prices(
    stocks: list[Stock],
    rng: random.Random,
    influences: dict[str, float] | None = None,
    volatility_multipliers: dict[str, float] | None = None,
    max_history: int = 100,
) -> list[Stock]:
    """Append one candle to every stock, keeping at most *max_history* candles."""
    influences = influences or {}
    volatility_multipliers = volatility_multipliers or {}
    updated: list[Stock] = []
    for stock in stocks:
        candle = generate_candle(
            stock,
            rng,
            influence=influences.get(stock.sector, 0.0),
            volatility_multiplier=volatility_multipliers.get(stock.symbol, 1.0),
        )
        history = (stock.price_history + [candle])[-max_history:]
        updated.append(_with_history(stock, history, candle.open))
    return updated


def apply_trade_impact(
    stocks: list[Stock],
    symbol: str,
    side: OrderSide,
    shares: int,
    rng: random.Random,
    spread_multiplier: float = 1.0,
) -> list[Stock]:
    """Move the latest close in the direction of a fill.

    Impact per share is drawn from ``[0.1%, 0.5%]`` of the price and scaled
    by the market-maker spread multiplier, for at most 50 shares. Unknown
    symbols are a no-op.
    """
    updated: list[Stock] = []
    for stock in stocks:
        if stock.symbol != symbol or not stock.price_history:
            updated.append(stock)
            continue
        last = stock.price_history[-1]
        factor = IMPACT_MIN + rng.random() * (IMPACT_MAX - IMPACT_MIN)
        impact = stock.current_price * factor * min(shares, IMPACT_SHARE_CAP) * spread_multiplier
        direction = 1 if side == "buy" else -1
        close = round(max(MIN_LOW, last.close + impact * direction), 2)
        candle = last.model_copy(
            update={
                "close": close,
                "high": max(last.high, close),
                "low": min(last.low, close),
            }
        )
        updated.append(_with_last_candle(stock, candle))
    return updated


def split_stock(stock: Stock, ratio: int) -> Stock:
    """Divide price, change and every candle of *stock* by *ratio*."""

    def _div(value: float) -> float:
        return round(value / ratio, 2)

    history = [
        c.model_copy(update={"open": _div(c.open), "high": _div(c.high), "low": _div(c.low), "close": _div(c.close)})
        for c in stock.price_history
    ]
    return stock.model_copy(
        update={
            "price_history": history,
            "current_price": history[-1].close if history else _div(stock.current_price),
            "change": _div(stock.change),
            "fair_value": stock.fair_value / ratio if stock.fair_value is not None else None,
        }
    )


def find_split_candidates(stocks: list[Stock], threshold: float) -> list[str]:
    """Symbols whose price exceeds the split ceiling."""
    return [s.symbol for s in stocks if s.current_price > threshold]
