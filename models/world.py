"""World state: the single value owned by the cycle orchestrator.

Every tick step takes a ``WorldState`` and returns a new one together with
the events it emitted. Readers only ever see a world between ticks.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from models.accounts import HumanPlayer
from models.agents import VirtualPlayer
from models.config import GameMode
from models.events import Notification, TickEvent
from models.market import MarketMakerInventory, SectorMomentum, Stock, StockFloat
from models.orders import OrderBookEntry
from models.phase import MarketPhaseState

RiskLevel = Literal["conservative", "moderate", "aggressive"]

SNAPSHOT_VERSION = 3


class PlayerEndStats(BaseModel):
    """Final standing of one participant."""

    id: str
    name: str
    net_worth: float
    profit: float
    risk_level: RiskLevel
    is_human: bool


class EndGameStats(BaseModel):
    """Ranking of all participants when a timed game ends."""

    player_ranking: int
    player_net_worth: float
    player_profit: float
    player_risk_level: RiskLevel
    all_players_ranked: list[PlayerEndStats]


class GameSession(BaseModel):
    """Cycle counter and lifecycle flags of one game."""

    current_cycle: int = 0
    game_duration: int | None = None
    is_started: bool = False
    is_ended: bool = False
    warmup_complete: bool = False
    end_stats: EndGameStats | None = None


class WorldState(BaseModel):
    """Full, serializable state of the simulation."""

    version: int = SNAPSHOT_VERSION
    game_mode: GameMode = "real_life"
    session: GameSession = Field(default_factory=GameSession)
    stocks: list[Stock] = []
    sectors: dict[str, SectorMomentum] = {}
    phase: MarketPhaseState = Field(default_factory=MarketPhaseState)
    market_maker: dict[str, MarketMakerInventory] = {}
    floats: dict[str, StockFloat] = {}
    player: HumanPlayer
    agents: list[VirtualPlayer] = []
    order_book: list[OrderBookEntry] = []
    notifications: list[Notification] = []
    agent_trade_count: int = 0

    def stock(self, symbol: str) -> Stock | None:
        for s in self.stocks:
            if s.symbol == symbol:
                return s
        return None

    def prices(self) -> dict[str, float]:
        return {s.symbol: s.current_price for s in self.stocks}


class TickResult(BaseModel):
    """Outcome of one orchestrator tick."""

    world: WorldState
    events: list[TickEvent] = []
    cycle: int
