"""Portfolio state models: holdings, cash, and short positions."""

from pydantic import BaseModel, Field


class Holding(BaseModel):
    """A long position in one symbol."""

    symbol: str
    shares: int = Field(ge=0)
    avg_buy_price: float


class Portfolio(BaseModel):
    """Cash and long holdings of one trader. Cash never goes negative."""

    cash: float = Field(ge=0)
    holdings: list[Holding] = []

    def holding(self, symbol: str) -> Holding | None:
        for h in self.holdings:
            if h.symbol == symbol:
                return h
        return None

    def shares_of(self, symbol: str) -> int:
        h = self.holding(symbol)
        return h.shares if h is not None else 0


class ShortPosition(BaseModel):
    """An open short position with its locked collateral."""

    symbol: str
    shares: int = Field(gt=0)
    entry_price: float
    collateral_locked: float = Field(ge=0)
    total_borrow_fees_paid: float = 0.0
    opened_cycle: int = 0


class MarginCallStatus(BaseModel):
    """Grace-period countdown of a short position in margin call."""

    symbol: str
    cycles_remaining: int
