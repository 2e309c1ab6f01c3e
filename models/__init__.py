"""Data models for the market simulation engine.

The orchestrator, every engine component and the CLI import from models.
"""

from models.accounts import HumanPlayer, TraderAccount
from models.agents import AgentTransaction, TradeDecision, TraderType, VirtualPlayer
from models.config import (
    EngineConfig,
    FloatConfig,
    LoanConfig,
    MarketMakerConfig,
    OrderBookConfig,
    PhaseConfig,
    ScheduleConfig,
    SectorConfig,
    ShortSellingConfig,
    TraderConfig,
    TradingMechanicsConfig,
    WarmupConfig,
)
from models.events import Notification, NotificationDismissal, TickEvent
from models.loans import CreditAccount, CreditEvent, CreditLineInfo, DelinquencyRecord, InterestRateBreakdown, Loan
from models.market import SECTORS, Candle, MarketMakerInventory, SectorMomentum, Stock, StockFloat
from models.orders import CommandResult, CompletedTrade, OrderAction, OrderBookEntry, PendingOrder
from models.phase import PHASES, MarketMetrics, MarketPhaseState, PhaseHistory
from models.portfolio import Holding, MarginCallStatus, Portfolio, ShortPosition
from models.world import EndGameStats, GameSession, PlayerEndStats, TickResult, WorldState

__all__ = [
    # accounts
    "HumanPlayer",
    "TraderAccount",
    # agents
    "AgentTransaction",
    "TradeDecision",
    "TraderType",
    "VirtualPlayer",
    # config
    "EngineConfig",
    "FloatConfig",
    "LoanConfig",
    "MarketMakerConfig",
    "OrderBookConfig",
    "PhaseConfig",
    "ScheduleConfig",
    "SectorConfig",
    "ShortSellingConfig",
    "TraderConfig",
    "TradingMechanicsConfig",
    "WarmupConfig",
    # events
    "Notification",
    "NotificationDismissal",
    "TickEvent",
    # loans
    "CreditAccount",
    "CreditEvent",
    "CreditLineInfo",
    "DelinquencyRecord",
    "InterestRateBreakdown",
    "Loan",
    # market
    "SECTORS",
    "Candle",
    "MarketMakerInventory",
    "SectorMomentum",
    "Stock",
    "StockFloat",
    # orders
    "CommandResult",
    "CompletedTrade",
    "OrderAction",
    "OrderBookEntry",
    "PendingOrder",
    # phase
    "PHASES",
    "MarketMetrics",
    "MarketPhaseState",
    "PhaseHistory",
    # portfolio
    "Holding",
    "MarginCallStatus",
    "Portfolio",
    "ShortPosition",
    # world
    "EndGameStats",
    "GameSession",
    "PlayerEndStats",
    "TickResult",
    "WorldState",
]
