"""Market-maker inventory model.

The market maker is the counterparty of last resort. Its inventory per
symbol drives a spread multiplier: scarce inventory widens spreads, excess
inventory narrows them. All functions return new values and leave their
inputs untouched.
"""

from __future__ import annotations

from models.config import MarketMakerConfig
from models.market import MarketMakerInventory
from models.orders import OrderSide


def calculate_spread_multiplier(inventory: int, base_inventory: int, config: MarketMakerConfig) -> float:
    """Piecewise-linear spread multiplier of the inventory-to-base ratio.

    Equals ``max_spread_multiplier`` at or below the low threshold,
    ``min_spread_multiplier`` at or above the high threshold, and exactly 1.0
    at ratio 1.0, interpolating linearly in between.
    """
    ratio = inventory / base_inventory
    low = config.min_inventory_threshold
    high = config.max_inventory_threshold

    if ratio <= low:
        return config.max_spread_multiplier
    if ratio >= high:
        return config.min_spread_multiplier
    if ratio < 1.0:
        t = (ratio - low) / (1.0 - low)
        return config.max_spread_multiplier - t * (config.max_spread_multiplier - 1.0)
    t = (ratio - 1.0) / (high - 1.0)
    return 1.0 - t * (1.0 - config.min_spread_multiplier)


def initial_inventories(symbols: list[str], config: MarketMakerConfig) -> dict[str, MarketMakerInventory]:
    base = config.base_inventory_per_stock
    return {
        symbol: MarketMakerInventory(symbol=symbol, inventory=base, base_inventory=base, spread_multiplier=1.0)
        for symbol in symbols
    }


def _with_inventory(entry: MarketMakerInventory, inventory: int, config: MarketMakerConfig) -> MarketMakerInventory:
    inventory = max(0, inventory)
    return entry.model_copy(
        update={
            "inventory": inventory,
            "spread_multiplier": calculate_spread_multiplier(inventory, entry.base_inventory, config),
        }
    )


def apply_fill(
    inventories: dict[str, MarketMakerInventory],
    symbol: str,
    side: OrderSide,
    shares: int,
    config: MarketMakerConfig,
    is_agent: bool = False,
) -> dict[str, MarketMakerInventory]:
    """Apply a trader's fill against the market maker.

    A trader buy removes inventory (never below zero), a trader sell adds
    to it. Agent fills have ``agent_inventory_factor`` of the effect,
    rounded down. Unknown symbols are a no-op.
    """
    entry = inventories.get(symbol)
    if entry is None:
        return inventories
    effective = int(shares * config.agent_inventory_factor) if is_agent else shares
    if effective <= 0:
        return inventories
    delta = -effective if side == "buy" else effective
    updated = dict(inventories)
    updated[symbol] = _with_inventory(entry, entry.inventory + delta, config)
    return updated


def rebalance(
    inventories: dict[str, MarketMakerInventory],
    config: MarketMakerConfig,
) -> dict[str, MarketMakerInventory]:
    """Nudge every inventory a fraction of the way back toward its base."""
    updated: dict[str, MarketMakerInventory] = {}
    for symbol, entry in inventories.items():
        adjustment = round((entry.base_inventory - entry.inventory) * config.rebalance_rate)
        if adjustment == 0:
            updated[symbol] = entry
        else:
            updated[symbol] = _with_inventory(entry, entry.inventory + adjustment, config)
    return updated


def can_fill_buy(inventories: dict[str, MarketMakerInventory], symbol: str, shares: int) -> bool:
    """A buy is fillable only while inventory covers the requested quantity."""
    entry = inventories.get(symbol)
    return entry is not None and entry.inventory >= shares


def can_accept_sell(inventories: dict[str, MarketMakerInventory], symbol: str) -> bool:
    """Sells are always accepted for known symbols; oversupply only narrows spreads."""
    return symbol in inventories


def spread_multiplier(inventories: dict[str, MarketMakerInventory], symbol: str) -> float:
    entry = inventories.get(symbol)
    return entry.spread_multiplier if entry is not None else 1.0
