"""Virtual trader (agent) models."""

from typing import Literal

from pydantic import BaseModel, Field

from models.accounts import TraderAccount

TraderType = Literal["market_maker", "momentum", "contrarian", "fundamentalist", "noise", "balanced"]
TradeAction = Literal["buy", "sell", "short_sell", "buy_to_cover"]


class AgentTransaction(BaseModel):
    """One trade in an agent's bounded transaction log."""

    id: str
    symbol: str
    side: TradeAction
    shares: int
    price: float
    cycle: int
    factors: dict[str, float] = {}


class TradeDecision(BaseModel):
    """A strategy's intent to trade; execution may still be rejected."""

    player_id: str
    symbol: str
    side: TradeAction
    shares: int = Field(gt=0)
    factors: dict[str, float] = {}


class VirtualPlayer(TraderAccount):
    """An autonomous agent. ``transactions`` is newest-first and bounded."""

    trader_type: TraderType = "balanced"
    transactions: list[AgentTransaction] = []
