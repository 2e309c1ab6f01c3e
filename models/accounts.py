"""Trader accounts: the state shared by the human player and agents, plus human-only state."""

from pydantic import BaseModel, Field

from models.loans import CreditAccount
from models.orders import CompletedTrade, PendingOrder
from models.portfolio import MarginCallStatus, Portfolio, ShortPosition


class TraderAccount(BaseModel):
    """Portfolio, credit and short book of one trader.

    Credit and margin processing operate on this type so that the human
    player and agents follow identical rules.
    """

    id: str
    name: str
    portfolio: Portfolio
    initial_cash: float
    risk_tolerance: int | None = Field(default=None, ge=-100, le=100)
    credit: CreditAccount = Field(default_factory=CreditAccount)
    short_positions: list[ShortPosition] = []
    margin_calls: list[MarginCallStatus] = []
    total_trades_executed: int = 0
    total_borrow_fees_paid: float = 0.0
    margin_calls_received: int = 0
    forced_covers_executed: int = 0

    def short_position(self, symbol: str) -> ShortPosition | None:
        for position in self.short_positions:
            if position.symbol == symbol:
                return position
        return None

    def margin_call(self, symbol: str) -> MarginCallStatus | None:
        for status in self.margin_calls:
            if status.symbol == symbol:
                return status
        return None


class HumanPlayer(TraderAccount):
    """The human player: adds the pending-order queue and trade history."""

    id: str = "player"
    name: str = "You"
    pending_orders: list[PendingOrder] = []
    traded_symbols_this_cycle: list[str] = []
    trade_history: list[CompletedTrade] = []
    total_realized_profit_loss: float = 0.0
    max_loan_utilization: float = 0.0
