"""Serializable world snapshots: export, forward-compatible restore, JSON file helpers.

Older save formats may miss whole sections (floats, market-maker
inventory, order book, phase history). Restoring fills them with the
defaults a fresh game would derive from the stocks present and rebuilds
derived values, so a restored world satisfies the same invariants as a
live one.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from models.config import EngineConfig
from models.world import SNAPSHOT_VERSION, WorldState
from simulation import market_maker as mm
from simulation.floats import initialize_floats
from simulation.sector_momentum import initial_sector_state

logger = logging.getLogger(__name__)


class SnapshotError(ValueError):
    """Raised when a snapshot payload cannot be restored."""


def to_snapshot(world: WorldState) -> dict[str, Any]:
    """JSON-safe dict of the full world."""
    data = world.model_dump(mode="json")
    data["version"] = SNAPSHOT_VERSION
    return data


def _sync_prices(world: WorldState) -> WorldState:
    stocks = []
    for stock in world.stocks:
        last = stock.last_candle
        if last is not None and stock.current_price != last.close:
            stock = stock.model_copy(update={"current_price": last.close})
        stocks.append(stock)
    return world.model_copy(update={"stocks": stocks})


def _fill_market_maker(world: WorldState, config: EngineConfig) -> WorldState:
    cfg = config.market_maker
    missing = [s.symbol for s in world.stocks if s.symbol not in world.market_maker]
    inventories = dict(world.market_maker)
    inventories.update(mm.initial_inventories(missing, cfg))
    inventories = {
        symbol: entry.model_copy(
            update={"spread_multiplier": mm.calculate_spread_multiplier(entry.inventory, entry.base_inventory, cfg)}
        )
        for symbol, entry in inventories.items()
    }
    return world.model_copy(update={"market_maker": inventories})


def _fill_floats(world: WorldState, config: EngineConfig) -> WorldState:
    missing = [s for s in world.stocks if s.symbol not in world.floats]
    if not missing:
        return world
    floats = dict(world.floats)
    floats.update(initialize_floats(missing, world.player, world.agents, config.floats))
    return world.model_copy(update={"floats": floats})


def _drop_orphan_margin_calls(world: WorldState) -> WorldState:
    def clean(account):
        open_symbols = {p.symbol for p in account.short_positions}
        if all(m.symbol in open_symbols for m in account.margin_calls):
            return account
        return account.model_copy(
            update={"margin_calls": [m for m in account.margin_calls if m.symbol in open_symbols]}
        )

    return world.model_copy(update={"player": clean(world.player), "agents": [clean(a) for a in world.agents]})


def from_snapshot(data: Any, config: EngineConfig | None = None) -> WorldState:
    """Validate *data* and rebuild a consistent ``WorldState``.

    Raises ``SnapshotError`` for a non-mapping payload, a version newer than
    this engine understands, or content that fails validation.
    """
    if not isinstance(data, dict):
        raise SnapshotError(f"Expected a snapshot mapping, got {type(data).__name__}")
    version = data.get("version", SNAPSHOT_VERSION)
    if not isinstance(version, int) or version > SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version {version!r} (this engine reads up to {SNAPSHOT_VERSION})")

    config = config or EngineConfig()
    try:
        world = WorldState.model_validate(data)
    except ValidationError as exc:
        raise SnapshotError(f"Invalid snapshot: {exc}") from exc

    if not world.sectors:
        world = world.model_copy(update={"sectors": initial_sector_state()})
    world = _sync_prices(world)
    world = _fill_market_maker(world, config)
    world = _fill_floats(world, config)
    world = _drop_orphan_margin_calls(world)
    if world.version != SNAPSHOT_VERSION:
        logger.info("Upgraded snapshot from version %d to %d", world.version, SNAPSHOT_VERSION)
        world = world.model_copy(update={"version": SNAPSHOT_VERSION})
    return world


def save_snapshot(path: str | Path, world: WorldState) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_snapshot(world), indent=2), encoding="utf-8")
    logger.info("Saved snapshot at cycle %d to %s", world.session.current_cycle, path)
    return path


def load_snapshot(path: str | Path, config: EngineConfig | None = None) -> WorldState:
    """Read a snapshot file; missing files raise ``FileNotFoundError``, bad JSON ``SnapshotError``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SnapshotError(f"Snapshot {path} is not valid JSON: {exc}") from exc
    return from_snapshot(data, config)
