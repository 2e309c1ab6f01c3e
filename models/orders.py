"""Order models: pending human orders, resting agent orders, completed trades, command results."""

from typing import Literal

from pydantic import BaseModel, Field

OrderSide = Literal["buy", "sell"]
OrderAction = Literal["buy", "sell", "short_sell", "buy_to_cover"]
OrderType = Literal["market", "limit", "stop_buy", "stop_buy_limit"]


class PendingOrder(BaseModel):
    """A queued human order.

    Buy orders reserve cash, sell orders reserve shares and short sells reserve
    the part of their collateral not covered by the sale proceeds.

    ``order_price`` is the price when the order was placed; it is used for
    the cash reservation of orders without a limit price.
    """

    id: str
    symbol: str
    side: OrderAction
    order_type: OrderType
    shares: int = Field(gt=0)
    order_price: float
    limit_price: float | None = None
    stop_price: float | None = None
    remaining_cycles: int = 0
    stop_triggered: bool = False
    failure_notified: bool = False
    created_cycle: int = 0

    @property
    def reservation_price(self) -> float:
        return self.limit_price if self.limit_price is not None else self.order_price


class OrderBookEntry(BaseModel):
    """A resting limit order posted by a market-making agent."""

    id: str
    trader_id: str
    symbol: str
    side: OrderSide
    shares: int = Field(gt=0)
    price: float
    remaining_cycles: int
    created_cycle: int = 0


class CompletedTrade(BaseModel):
    """An executed (or failed) human trade, kept for history and statistics."""

    id: str
    symbol: str
    side: Literal["buy", "sell", "short_sell", "buy_to_cover"]
    shares: int
    price_per_share: float
    total_amount: float
    cycle: int
    status: Literal["executed", "failed"] = "executed"
    failure_reason: str | None = None
    realized_profit_loss: float | None = None
    avg_buy_price: float | None = None
    order_id: str | None = None


class CommandResult(BaseModel):
    """Response to an external command.

    Commands never raise for business failures: a rejected command leaves the
    world untouched and ``message`` explains why.
    """

    status: Literal["accepted", "rejected"]
    message: str = ""
    order_id: str | None = None
    loan_id: str | None = None
