"""Shared fixtures for the engine tests: small deterministic worlds built by hand."""

import random

import pytest

from models.accounts import HumanPlayer
from models.config import EngineConfig, WarmupConfig
from models.market import Candle, Stock
from models.portfolio import Portfolio
from models.world import GameSession, WorldState
from simulation import market_maker as mm
from simulation.floats import initialize_floats
from simulation.sector_momentum import initial_sector_state


def _history(prices: list[float]) -> list[Candle]:
    candles = []
    previous = prices[0]
    for i, close in enumerate(prices):
        low = min(previous, close)
        high = max(previous, close)
        candles.append(Candle(time=i - len(prices), open=previous, high=high, low=low, close=close))
        previous = close
    return candles


@pytest.fixture
def make_stock():
    """Factory for a stock whose history closes at the given prices."""

    def _make(
        symbol: str = "AAPL",
        sector: str = "tech",
        prices: list[float] | None = None,
        market_cap_billions: float = 3000,
        fair_value: float | None = None,
    ) -> Stock:
        prices = prices or [100.0] * 20
        return Stock(
            symbol=symbol,
            name=f"{symbol} Inc.",
            sector=sector,
            current_price=prices[-1],
            price_history=_history(prices),
            market_cap_billions=market_cap_billions,
            fair_value=fair_value if fair_value is not None else prices[-1],
        )

    return _make


@pytest.fixture
def engine_config() -> EngineConfig:
    """No agents, no warm-up, fixed seed."""
    return EngineConfig(virtual_player_count=0, warmup=WarmupConfig(cycles=0), seed=1)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def make_world(make_stock, engine_config):
    """Factory for a started world with the given stocks, player cash and agents."""

    def _make(
        stocks: list[Stock] | None = None,
        cash: float = 100_000.0,
        agents=None,
        player: HumanPlayer | None = None,
        config: EngineConfig | None = None,
    ) -> WorldState:
        cfg = config or engine_config
        stocks = stocks or [make_stock()]
        agents = agents or []
        player = player or HumanPlayer(portfolio=Portfolio(cash=cash), initial_cash=cash)
        return WorldState(
            session=GameSession(is_started=True, warmup_complete=True, game_duration=cfg.game_duration_cycles),
            stocks=stocks,
            sectors=initial_sector_state(),
            market_maker=mm.initial_inventories([s.symbol for s in stocks], cfg.market_maker),
            floats=initialize_floats(stocks, player, agents, cfg.floats),
            player=player,
            agents=agents,
        )

    return _make
