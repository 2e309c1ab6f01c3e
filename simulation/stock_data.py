"""Default stock universe and seeded price history."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

from models.config import EngineConfig
from models.market import Candle, Stock


@dataclass(frozen=True)
class StockProfile:
    """Static description of a listed company."""

    symbol: str
    name: str
    sector: str
    base_price: float
    market_cap_billions: float
    volatility: float  # Typical per-candle fluctuation used for the seeded history


DEFAULT_STOCKS: tuple[StockProfile, ...] = (
    # Technology
    StockProfile("AAPL", "Apple Inc.", "tech", 175, 3000, 0.018),
    StockProfile("GOOGL", "Alphabet Inc.", "tech", 140, 2000, 0.020),
    StockProfile("MSFT", "Microsoft Corp.", "tech", 380, 3000, 0.015),
    StockProfile("AMZN", "Amazon.com Inc.", "tech", 185, 1900, 0.022),
    StockProfile("TSLA", "Tesla Inc.", "tech", 250, 800, 0.040),
    StockProfile("META", "Meta Platforms", "tech", 500, 1400, 0.025),
    StockProfile("NVDA", "NVIDIA Corp.", "tech", 480, 3000, 0.035),
    # Finance
    StockProfile("JPM", "JPMorgan Chase", "finance", 200, 600, 0.018),
    StockProfile("BAC", "Bank of America", "finance", 35, 280, 0.020),
    StockProfile("V", "Visa Inc.", "finance", 280, 580, 0.015),
    StockProfile("GS", "Goldman Sachs", "finance", 400, 130, 0.022),
    # Industrial
    StockProfile("CAT", "Caterpillar Inc.", "industrial", 300, 150, 0.020),
    StockProfile("BA", "Boeing Co.", "industrial", 250, 150, 0.032),
    StockProfile("HON", "Honeywell Intl.", "industrial", 200, 130, 0.016),
    StockProfile("GE", "General Electric", "industrial", 160, 190, 0.021),
    # Commodities
    StockProfile("XOM", "Exxon Mobil", "commodities", 110, 450, 0.019),
    StockProfile("CVX", "Chevron Corp.", "commodities", 155, 290, 0.018),
    StockProfile("FCX", "Freeport-McMoRan", "commodities", 45, 65, 0.030),
    StockProfile("NEM", "Newmont Corp.", "commodities", 40, 45, 0.024),
)


def select_profiles(symbols: list[str] | None) -> list[StockProfile]:
    """Return the default profiles, optionally restricted to *symbols* (unknown ones are ignored)."""
    if symbols is None:
        return list(DEFAULT_STOCKS)
    wanted = set(symbols)
    return [p for p in DEFAULT_STOCKS if p.symbol in wanted]


def generate_initial_history(
    profile: StockProfile,
    rng: random.Random,
    candle_count: int = 50,
) -> list[Candle]:
    """Seed a history with a sinusoidal trend, mean-reverting momentum and noise.

    Candle times run from ``-candle_count`` up to ``-1`` so the first live
    candle gets time 0.
    """
    base = profile.base_price
    vol = profile.volatility
    price = base * (0.92 + rng.random() * 0.16)
    momentum = 0.0
    trend_phase = rng.random() * math.pi * 2

    history: list[Candle] = []
    for i in range(candle_count, 0, -1):
        trend_phase += 0.1 + rng.random() * 0.1
        trend_bias = math.sin(trend_phase) * vol * 0.5
        momentum = momentum * 0.7 + (rng.random() - 0.5) * 0.3

        change = (
            (rng.random() - 0.5) * vol * price
            + trend_bias * price
            + momentum * vol * price
        )
        open_ = price
        close = max(base * 0.5, price + change)
        wick = vol * price * (0.3 + rng.random() * 0.7)
        high = max(open_, close) + rng.random() * wick
        low = max(base * 0.4, min(open_, close) - rng.random() * wick)

        history.append(
            Candle(
                time=-i,
                open=round(open_, 2),
                high=round(high, 2),
                low=round(low, 2),
                close=round(close, 2),
            )
        )
        price = close

    return history


def initialize_stocks(config: EngineConfig, rng: random.Random) -> list[Stock]:
    """Build the starting universe with seeded histories."""
    stocks: list[Stock] = []
    for profile in select_profiles(config.symbols):
        history = generate_initial_history(profile, rng, config.initial_history_candles)
        last, prev = history[-1], history[-2]
        change = last.close - prev.close
        stocks.append(
            Stock(
                symbol=profile.symbol,
                name=profile.name,
                sector=profile.sector,
                current_price=last.close,
                change=round(change, 2),
                change_percent=round(change / prev.close * 100, 2),
                price_history=history,
                market_cap_billions=profile.market_cap_billions,
                fair_value=profile.base_price,
            )
        )
    return stocks
