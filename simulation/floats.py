"""Share float bookkeeping per symbol.

The float is split across holder classes (market maker, human player,
agents) plus shares reserved by pending sell orders. It feeds the
hard-to-borrow surcharge and the short-interest cap.
"""

from __future__ import annotations

import math
from typing import Literal

from models.accounts import HumanPlayer
from models.agents import VirtualPlayer
from models.config import FloatConfig
from models.market import Stock, StockFloat

ShareHolder = Literal["mm", "player", "vp"]

_HOLDER_FIELDS: dict[str, str] = {
    "mm": "mm_held_shares",
    "player": "player_held_shares",
    "vp": "vp_held_shares",
}


def calculate_float_shares(market_cap_billions: float, price: float, config: FloatConfig) -> int:
    """Scaled-down tradable float derived from market capitalisation."""
    total_shares = market_cap_billions * 1e9 / price
    return math.floor(total_shares * config.float_percentage / config.scale_factor)


def initialize_floats(
    stocks: list[Stock],
    player: HumanPlayer,
    agents: list[VirtualPlayer],
    config: FloatConfig,
) -> dict[str, StockFloat]:
    vp_held: dict[str, int] = {}
    for agent in agents:
        for holding in agent.portfolio.holdings:
            vp_held[holding.symbol] = vp_held.get(holding.symbol, 0) + holding.shares

    floats: dict[str, StockFloat] = {}
    for stock in stocks:
        price = stock.fair_value or stock.current_price
        total = calculate_float_shares(stock.market_cap_billions, price, config)
        floats[stock.symbol] = StockFloat(
            symbol=stock.symbol,
            total_float=total,
            mm_held_shares=math.floor(total * config.mm_initial_percent),
            player_held_shares=player.portfolio.shares_of(stock.symbol),
            vp_held_shares=vp_held.get(stock.symbol, 0),
        )
    return floats


def transfer_shares(
    floats: dict[str, StockFloat],
    symbol: str,
    source: ShareHolder,
    target: ShareHolder,
    shares: int,
) -> dict[str, StockFloat]:
    """Move *shares* between holder classes. The source never drops below zero."""
    entry = floats.get(symbol)
    if entry is None or shares <= 0 or source == target:
        return floats
    src_field, dst_field = _HOLDER_FIELDS[source], _HOLDER_FIELDS[target]
    updated = dict(floats)
    updated[symbol] = entry.model_copy(
        update={
            src_field: max(0, getattr(entry, src_field) - shares),
            dst_field: getattr(entry, dst_field) + shares,
        }
    )
    return updated


def reserve_shares(floats: dict[str, StockFloat], symbol: str, shares: int) -> dict[str, StockFloat]:
    entry = floats.get(symbol)
    if entry is None or shares <= 0:
        return floats
    updated = dict(floats)
    updated[symbol] = entry.model_copy(update={"reserved_shares": entry.reserved_shares + shares})
    return updated


def release_shares(floats: dict[str, StockFloat], symbol: str, shares: int) -> dict[str, StockFloat]:
    entry = floats.get(symbol)
    if entry is None or shares <= 0:
        return floats
    updated = dict(floats)
    updated[symbol] = entry.model_copy(update={"reserved_shares": max(0, entry.reserved_shares - shares)})
    return updated


def apply_split(floats: dict[str, StockFloat], symbol: str, ratio: int) -> dict[str, StockFloat]:
    """Multiply every share count of *symbol* by *ratio*."""
    entry = floats.get(symbol)
    if entry is None:
        return floats
    updated = dict(floats)
    updated[symbol] = entry.model_copy(
        update={
            "total_float": entry.total_float * ratio,
            "mm_held_shares": entry.mm_held_shares * ratio,
            "player_held_shares": entry.player_held_shares * ratio,
            "vp_held_shares": entry.vp_held_shares * ratio,
            "reserved_shares": entry.reserved_shares * ratio,
        }
    )
    return updated
