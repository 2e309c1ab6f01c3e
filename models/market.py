"""Market data models: candles, stocks, float, market-maker inventory, sector momentum."""

from typing import Literal

from pydantic import BaseModel, Field

Sector = Literal["tech", "finance", "industrial", "commodities"]
SECTORS: tuple[str, ...] = ("tech", "finance", "industrial", "commodities")


class Candle(BaseModel):
    """One OHLC candle.

    Invariant: ``high >= max(open, close)`` and ``low <= min(open, close)``.
    """

    time: int  # Cycle index the candle belongs to (negative during seeded history)
    open: float
    high: float
    low: float
    close: float


class Stock(BaseModel):
    """A tradable symbol. ``current_price`` always equals the last candle's close."""

    symbol: str
    name: str
    sector: Sector
    current_price: float
    change: float = 0.0
    change_percent: float = 0.0
    price_history: list[Candle] = []
    market_cap_billions: float
    fair_value: float | None = None  # Split-adjusted reference price for fundamentalists

    @property
    def last_candle(self) -> Candle | None:
        return self.price_history[-1] if self.price_history else None


class StockFloat(BaseModel):
    """Shares of a symbol available to the market, by holder class."""

    symbol: str
    total_float: int
    mm_held_shares: int
    player_held_shares: int = 0
    vp_held_shares: int = 0
    reserved_shares: int = 0

    @property
    def available_shares(self) -> int:
        return max(0, self.mm_held_shares - self.reserved_shares)


class MarketMakerInventory(BaseModel):
    """Per-symbol liquidity inventory of the market maker. Invariant: inventory >= 0."""

    symbol: str
    inventory: int = Field(ge=0)
    base_inventory: int = Field(gt=0)
    spread_multiplier: float = 1.0


class SectorMomentum(BaseModel):
    """Momentum scalar of one sector and the bounded influence derived from it."""

    sector: Sector
    momentum: float = 0.0
    influence: float = 0.0
    last_performance: float = 0.0
