"""Trader strategy registry: maps archetype names to ``TraderStrategy`` subclasses.

Usage::

    from simulation.strategies import create_strategy

    strategy = create_strategy(agent.trader_type, config.traders)
    decision = strategy.decide(agent, view, rng)
"""

from __future__ import annotations

import math
import random
import statistics
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Type

from models.agents import TradeDecision, VirtualPlayer
from models.config import OrderBookConfig, TraderConfig
from models.market import Candle, Stock
from models.orders import OrderBookEntry
from simulation.notifications import new_id

MODERATE_RISK_FLOOR = -34
DOWNTURN_PHASES = ("consolidation", "panic", "recession")
UPTURN_PHASES = ("prosperity", "boom")
SELL_SCORE_THRESHOLD = 40


@dataclass
class WarmupContext:
    """Trade counts and prioritisation window of an ongoing warm-up."""

    trade_counts: dict[str, int]
    current_cycle: int
    prioritize_after_cycle: int
    min_trades_required: int
    buy_boost: float = 0.05

    def untraded_bonus(self, symbol: str) -> float:
        if self.current_cycle < self.prioritize_after_cycle:
            return 0.0
        count = self.trade_counts.get(symbol, 0)
        if count >= self.min_trades_required:
            return 0.0
        return min(50.0, (self.min_trades_required - count) * 25.0)


@dataclass
class MarketView:
    """What an agent observes when deciding: prices, the global phase and its own resting orders."""

    stocks: list[Stock]
    global_phase: str
    cycle: int = 0
    warmup: WarmupContext | None = None
    resting_orders: dict[str, int] = field(default_factory=dict)

    def stock(self, symbol: str) -> Stock | None:
        for s in self.stocks:
            if s.symbol == symbol:
                return s
        return None


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------


def calculate_volatility(history: list[Candle]) -> float:
    """Population standard deviation of close-to-close returns."""
    changes = [
        (curr.close - prev.close) / prev.close
        for prev, curr in zip(history, history[1:])
        if prev.close > 0
    ]
    if not changes:
        return 0.0
    return statistics.pstdev(changes)


def calculate_trend(history: list[Candle], lookback: int = 5) -> float:
    """Relative change over the last *lookback* candles."""
    if len(history) < 2:
        return 0.0
    recent = history[-lookback:]
    first, last = recent[0].close, recent[-1].close
    if first == 0:
        return 0.0
    return (last - first) / first


def calculate_rsi(history: list[Candle], period: int = 14) -> float:
    """Relative strength index over *period* changes; 50 without enough data."""
    if len(history) < period + 1:
        return 50.0
    closes = [c.close for c in history[-(period + 1):]]
    changes = [b - a for a, b in zip(closes, closes[1:])]
    avg_gain = sum(c for c in changes if c > 0) / period
    avg_loss = sum(-c for c in changes if c < 0) / period
    if avg_loss == 0:
        return 100.0
    return 100 - 100 / (1 + avg_gain / avg_loss)


def phase_trade_modifier(risk_tolerance: int, global_phase: str, config: TraderConfig) -> float:
    """Trade-chance adjustment for the market phase. Aggressive agents ignore phases."""
    if risk_tolerance >= config.aggressive_risk_threshold:
        return 0.0
    if risk_tolerance <= MODERATE_RISK_FLOOR:
        if global_phase == "panic":
            return -0.6
        if global_phase in DOWNTURN_PHASES:
            return -0.4
        if global_phase == "recovery":
            return -0.1
        return 0.05
    if global_phase in DOWNTURN_PHASES:
        return -0.2
    if global_phase in UPTURN_PHASES:
        return 0.1
    return 0.0


def prefers_stable_stocks(risk_tolerance: int, global_phase: str) -> bool:
    return risk_tolerance <= MODERATE_RISK_FLOOR and global_phase in DOWNTURN_PHASES


def risk_position_size(max_affordable: int, risk_tolerance: int, rng: random.Random) -> int:
    """15-55% of the affordable shares depending on risk, plus up to 50% random variation."""
    normalized = (risk_tolerance + 100) / 200
    base = 0.15 + normalized * 0.40
    variation = 1 + rng.random() * 0.25 * (1 + normalized)
    return max(1, math.floor(max_affordable * base * variation))


def _fraction_size(cash: float, price: float, fraction: float) -> int:
    return max(1, math.floor(math.floor(cash / price) * fraction))


def _weighted_pick(candidates: list[tuple[float, object]], rng: random.Random) -> object:
    total = sum(max(0.0, score) for score, _ in candidates)
    if total <= 0:
        return candidates[rng.randrange(len(candidates))][1]
    point = rng.random() * total
    for score, item in candidates:
        point -= max(0.0, score)
        if point <= 0:
            return item
    return candidates[0][1]


# ---------------------------------------------------------------------------
# Base class and registry
# ---------------------------------------------------------------------------


class TraderStrategy(ABC):
    """Common interface for agent archetypes.

    ``decide`` returns at most one direct trade per cycle. Archetypes that
    post resting orders override ``quote`` instead.
    """

    def __init__(self, config: TraderConfig, order_book: OrderBookConfig | None = None) -> None:
        self.config = config
        self.order_book = order_book or OrderBookConfig()

    @abstractmethod
    def decide(self, agent: VirtualPlayer, view: MarketView, rng: random.Random) -> TradeDecision | None:
        """Return this cycle's trade intent, or None to sit out."""

    def quote(self, agent: VirtualPlayer, view: MarketView, rng: random.Random) -> list[OrderBookEntry]:
        return []


_REGISTRY: dict[str, Type[TraderStrategy]] = {}


def register(name: str):
    """Decorator to register a ``TraderStrategy`` subclass under *name*."""

    def _decorator(cls: Type[TraderStrategy]) -> Type[TraderStrategy]:
        if name in _REGISTRY:
            raise ValueError(f"Trader strategy '{name}' is already registered.")
        _REGISTRY[name] = cls
        return cls

    return _decorator


def create_strategy(
    trader_type: str,
    config: TraderConfig,
    order_book: OrderBookConfig | None = None,
) -> TraderStrategy:
    """Instantiate the strategy registered under *trader_type*.

    Raises ``KeyError`` if the archetype is not registered.
    """
    if trader_type not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY)) or "(none)"
        raise KeyError(f"Unknown trader type '{trader_type}'. Available: {available}.")
    return _REGISTRY[trader_type](config, order_book)


def registered_types() -> list[str]:
    return sorted(_REGISTRY)


def assign_trader_type(index: int, total: int, distribution: dict[str, float]) -> str:
    """Archetype for the agent at *index* from the cumulative distribution."""
    position = index / total if total else 0.0
    cumulative = 0.0
    for trader_type, share in distribution.items():
        cumulative += share
        if position < cumulative:
            return trader_type
    return "balanced"


# ---------------------------------------------------------------------------
# Archetypes
# ---------------------------------------------------------------------------


@register("balanced")
class BalancedStrategy(TraderStrategy):
    """Risk-tolerance driven trader: scores stocks on volatility and trend, holdings on P/L."""

    def decide(self, agent, view, rng):
        risk = agent.risk_tolerance or 0
        normalized = risk / 100
        trade_chance = 0.55 + normalized * 0.20 + phase_trade_modifier(risk, view.global_phase, self.config)
        if rng.random() > trade_chance:
            return None

        cash = agent.portfolio.cash
        has_holdings = bool(agent.portfolio.holdings)
        can_afford = any(s.current_price <= cash for s in view.stocks)
        if not has_holdings and not can_afford:
            return None

        if not has_holdings:
            should_buy = True
        elif not can_afford:
            should_buy = False
        else:
            boost = view.warmup.buy_boost if view.warmup is not None else 0.0
            should_buy = rng.random() < 0.575 + normalized * 0.175 + boost

        if should_buy:
            return self._buy(agent, view, rng)
        return self._sell(agent, view, rng)

    def score_stock(self, stock: Stock, risk: int, stable_only: bool, rng: random.Random) -> float:
        volatility = calculate_volatility(stock.price_history)
        trend = calculate_trend(stock.price_history, self.config.momentum_lookback)
        normalized = risk / 100
        score = 50 + volatility * 200 * normalized
        score += trend * (60 - normalized * 40)
        if stable_only:
            score -= volatility * 400
        return score + (rng.random() - 0.5) * 20

    def score_holding(self, stock: Stock, avg_buy_price: float, risk: int, rng: random.Random) -> float:
        profit = (stock.current_price - avg_buy_price) / avg_buy_price if avg_buy_price else 0.0
        trend = calculate_trend(stock.price_history, self.config.momentum_lookback)
        normalized = risk / 100
        score = 50.0
        if profit < 0:
            score += abs(profit) * 100 * (1 - normalized)
        else:
            score += profit * 50 * normalized
        if trend < 0:
            score += abs(trend) * 30
        return score + (rng.random() - 0.5) * 20

    def _buy(self, agent, view, rng):
        risk = agent.risk_tolerance or 0
        cash = agent.portfolio.cash
        stable_only = prefers_stable_stocks(risk, view.global_phase)
        scored = []
        for stock in view.stocks:
            if stock.current_price > cash:
                continue
            score = self.score_stock(stock, risk, stable_only, rng)
            if view.warmup is not None:
                score += view.warmup.untraded_bonus(stock.symbol)
            scored.append((score, stock))
        if not scored:
            return None
        scored.sort(key=lambda item: item[0], reverse=True)
        top = scored[:3]
        stock = _weighted_pick(top, rng)
        score = next(s for s, st in top if st is stock)

        max_shares = math.floor(cash / stock.current_price)
        shares = min(risk_position_size(max_shares, risk, rng), max_shares)
        return TradeDecision(
            player_id=agent.id,
            symbol=stock.symbol,
            side="buy",
            shares=shares,
            factors={
                "volatility": calculate_volatility(stock.price_history),
                "trend": calculate_trend(stock.price_history, self.config.momentum_lookback),
                "score": score,
                "risk_tolerance": risk,
            },
        )

    def _sell(self, agent, view, rng):
        risk = agent.risk_tolerance or 0
        scored = []
        for holding in agent.portfolio.holdings:
            stock = view.stock(holding.symbol)
            if stock is None or holding.shares <= 0:
                continue
            scored.append((self.score_holding(stock, holding.avg_buy_price, risk, rng), holding))
        if not scored:
            return None
        scored.sort(key=lambda item: item[0], reverse=True)
        candidates = [(s, h) for s, h in scored if s >= SELL_SCORE_THRESHOLD][:3]
        if not candidates:
            return None
        holding = _weighted_pick(candidates, rng)
        score = next(s for s, h in candidates if h is holding)

        sell_fraction = 0.7 - (risk / 100) * 0.3
        shares = min(max(1, math.ceil(holding.shares * sell_fraction)), holding.shares)
        return TradeDecision(
            player_id=agent.id,
            symbol=holding.symbol,
            side="sell",
            shares=shares,
            factors={"score": score, "avg_buy_price": holding.avg_buy_price, "risk_tolerance": risk},
        )


@register("momentum")
class MomentumStrategy(TraderStrategy):
    """Follows the strongest trend: buys rallies, sells half of a falling holding."""

    trade_probability = 0.50

    def decide(self, agent, view, rng):
        if rng.random() > self.trade_probability:
            return None
        trending = [
            (calculate_trend(s.price_history, self.config.momentum_lookback), s)
            for s in view.stocks
        ]
        trending = [(t, s) for t, s in trending if abs(t) >= self.config.momentum_trend_threshold]
        if not trending:
            return None
        trend, stock = max(trending, key=lambda item: abs(item[0]))

        if trend > 0:
            if agent.portfolio.cash < stock.current_price:
                return None
            shares = _fraction_size(agent.portfolio.cash * 0.4, stock.current_price, 0.6)
            return TradeDecision(
                player_id=agent.id, symbol=stock.symbol, side="buy", shares=shares,
                factors={"trend": trend, "score": trend * 100},
            )
        holding = agent.portfolio.holding(stock.symbol)
        if holding is None or holding.shares == 0:
            return None
        return TradeDecision(
            player_id=agent.id, symbol=stock.symbol, side="sell", shares=math.ceil(holding.shares * 0.5),
            factors={"trend": trend, "score": abs(trend) * 100},
        )


@register("contrarian")
class ContrarianStrategy(TraderStrategy):
    """Trades against RSI extremes; aggressive contrarians short overbought symbols they do not hold."""

    trade_probability = 0.40

    def decide(self, agent, view, rng):
        if rng.random() > self.trade_probability:
            return None
        readings = [(calculate_rsi(s.price_history, self.config.rsi_period), s) for s in view.stocks]
        oversold = [(r, s) for r, s in readings if r < self.config.oversold_threshold]

        for rsi, stock in oversold:
            position = agent.short_position(stock.symbol)
            if position is not None:
                return TradeDecision(
                    player_id=agent.id, symbol=stock.symbol, side="buy_to_cover", shares=position.shares,
                    factors={"rsi": rsi, "score": 100 - rsi},
                )

        overbought = [(r, s) for r, s in readings if r > self.config.overbought_threshold]
        held_overbought = [(r, s) for r, s in overbought if agent.portfolio.shares_of(s.symbol) > 0]

        if held_overbought and rng.random() > 0.4:
            rsi, stock = held_overbought[rng.randrange(len(held_overbought))]
            holding = agent.portfolio.holding(stock.symbol)
            return TradeDecision(
                player_id=agent.id, symbol=stock.symbol, side="sell", shares=math.ceil(holding.shares * 0.4),
                factors={"rsi": rsi, "score": rsi},
            )

        risk = agent.risk_tolerance or 0
        unheld_overbought = [
            (r, s)
            for r, s in overbought
            if agent.portfolio.shares_of(s.symbol) == 0 and agent.short_position(s.symbol) is None
        ]
        if unheld_overbought and risk >= self.config.aggressive_risk_threshold and rng.random() < 0.5:
            rsi, stock = max(unheld_overbought, key=lambda item: item[0])
            if agent.portfolio.cash >= stock.current_price:
                shares = _fraction_size(agent.portfolio.cash * 0.2, stock.current_price, 0.5)
                return TradeDecision(
                    player_id=agent.id, symbol=stock.symbol, side="short_sell", shares=shares,
                    factors={"rsi": rsi, "score": rsi},
                )

        if oversold:
            rsi, stock = oversold[rng.randrange(len(oversold))]
            if agent.portfolio.cash < stock.current_price:
                return None
            shares = _fraction_size(agent.portfolio.cash * 0.3, stock.current_price, 0.5)
            return TradeDecision(
                player_id=agent.id, symbol=stock.symbol, side="buy", shares=shares,
                factors={"rsi": rsi, "score": 100 - rsi},
            )
        return None


@register("fundamentalist")
class FundamentalistStrategy(TraderStrategy):
    """Buys below fair value and sells held positions above it, outside a tolerance band."""

    trade_probability = 0.35

    def decide(self, agent, view, rng):
        if rng.random() > self.trade_probability:
            return None
        tolerance = self.config.valuation_tolerance
        analyzed = [
            ((s.current_price - s.fair_value) / s.fair_value, s)
            for s in view.stocks
            if s.fair_value
        ]
        undervalued = [(d, s) for d, s in analyzed if d < -tolerance]
        overvalued = [(d, s) for d, s in analyzed if d > tolerance and agent.portfolio.shares_of(s.symbol) > 0]

        if overvalued and rng.random() > 0.5:
            deviation, stock = max(overvalued, key=lambda item: item[0])
            holding = agent.portfolio.holding(stock.symbol)
            return TradeDecision(
                player_id=agent.id, symbol=stock.symbol, side="sell", shares=math.ceil(holding.shares * 0.5),
                factors={"deviation": deviation, "score": deviation * 100},
            )
        if undervalued:
            deviation, stock = min(undervalued, key=lambda item: item[0])
            if agent.portfolio.cash < stock.current_price:
                return None
            shares = _fraction_size(agent.portfolio.cash * 0.35, stock.current_price, 0.6)
            return TradeDecision(
                player_id=agent.id, symbol=stock.symbol, side="buy", shares=shares,
                factors={"deviation": deviation, "score": abs(deviation) * 100},
            )
        return None


@register("noise")
class NoiseStrategy(TraderStrategy):
    """Random buys and sells that add liquidity."""

    def decide(self, agent, view, rng):
        if rng.random() > self.config.noise_trade_frequency:
            return None
        if rng.random() > 0.5:
            affordable = [s for s in view.stocks if s.current_price <= agent.portfolio.cash]
            if not affordable:
                return None
            stock = affordable[rng.randrange(len(affordable))]
            max_shares = math.floor(agent.portfolio.cash / stock.current_price)
            shares = max(1, math.floor(max_shares * (0.1 + rng.random() * 0.2)))
            return TradeDecision(player_id=agent.id, symbol=stock.symbol, side="buy", shares=shares)

        holdings = [h for h in agent.portfolio.holdings if h.shares > 0 and view.stock(h.symbol) is not None]
        if not holdings:
            return None
        holding = holdings[rng.randrange(len(holdings))]
        shares = max(1, math.floor(holding.shares * (0.1 + rng.random() * 0.3)))
        return TradeDecision(
            player_id=agent.id, symbol=holding.symbol, side="sell", shares=min(shares, holding.shares)
        )


@register("market_maker")
class MarketMakerStrategy(TraderStrategy):
    """Posts resting bids and asks around the current price instead of trading directly."""

    def decide(self, agent, view, rng):
        return None

    def quote(self, agent, view, rng):
        book = self.order_book
        half_spread = book.target_spread / 2
        entries: list[OrderBookEntry] = []
        for stock in view.stocks:
            existing = view.resting_orders.get(stock.symbol, 0)
            if existing >= book.max_orders_per_vp:
                continue
            if rng.random() > book.quote_probability:
                continue
            bid = round(stock.current_price * (1 - half_spread), 2)
            ask = round(stock.current_price * (1 + half_spread), 2)
            posted = 0
            if agent.portfolio.cash >= bid:
                entries.append(
                    OrderBookEntry(
                        id=new_id(rng, "ob"),
                        trader_id=agent.id,
                        symbol=stock.symbol,
                        side="buy",
                        shares=_fraction_size(agent.portfolio.cash * 0.2, bid, 0.5),
                        price=bid,
                        remaining_cycles=book.vp_order_lifetime,
                        created_cycle=view.cycle,
                    )
                )
                posted += 1
            held = agent.portfolio.shares_of(stock.symbol)
            if held > 0 and existing + posted < book.max_orders_per_vp:
                entries.append(
                    OrderBookEntry(
                        id=new_id(rng, "ob"),
                        trader_id=agent.id,
                        symbol=stock.symbol,
                        side="sell",
                        shares=min(math.ceil(held * 0.3), held),
                        price=ask,
                        remaining_cycles=book.vp_order_lifetime,
                        created_cycle=view.cycle,
                    )
                )
        return entries
