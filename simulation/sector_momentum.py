"""Sector momentum model.

Momentum per sector is an exponentially decayed sum of recent sector
performance. Strong moves in one sector spill over into correlated sectors.
The bounded *influence* derived from momentum biases price generation.
"""

from __future__ import annotations

from models.config import SectorConfig
from models.market import SECTORS, SectorMomentum, Stock


def initial_sector_state() -> dict[str, SectorMomentum]:
    """Neutral momentum for every sector."""
    return {sector: SectorMomentum(sector=sector) for sector in SECTORS}


def calculate_sector_performance(stocks: list[Stock], sector: str) -> float:
    """Average last-candle change of a sector's stocks, as a decimal (0.02 = +2%)."""
    members = [s for s in stocks if s.sector == sector]
    if not members:
        return 0.0
    return sum(s.change_percent / 100 for s in members) / len(members)


def calculate_influence(momentum: float, config: SectorConfig) -> float:
    """Map momentum into ``[-max_sector_influence, +max_sector_influence]``."""
    influence = momentum * config.influence_strength
    return max(-config.max_sector_influence, min(config.max_sector_influence, influence))


def update_sector_state(
    sectors: dict[str, SectorMomentum],
    stocks: list[Stock],
    config: SectorConfig,
    interaction_multiplier: float = 1.0,
) -> dict[str, SectorMomentum]:
    """Return the next momentum state from the stocks' latest performance.

    With all performances at zero, every momentum decays by
    ``momentum_decay`` toward neutral.
    """
    performances = {sector: calculate_sector_performance(stocks, sector) for sector in SECTORS}
    adjusted = dict(performances)

    for source, perf in performances.items():
        if abs(perf) <= config.strong_performance_threshold:
            continue
        for target, correlation in config.correlations.get(source, {}).items():
            if target == source or target not in adjusted or not correlation:
                continue
            adjusted[target] += perf * correlation * config.correlation_damping * interaction_multiplier

    updated: dict[str, SectorMomentum] = {}
    for sector in SECTORS:
        current = sectors.get(sector) or SectorMomentum(sector=sector)
        momentum = current.momentum * config.momentum_decay + adjusted[sector] * config.momentum_update_rate
        momentum = max(-1.0, min(1.0, momentum))
        updated[sector] = SectorMomentum(
            sector=sector,
            momentum=momentum,
            influence=calculate_influence(momentum, config),
            last_performance=adjusted[sector],
        )
    return updated


def sector_influences(sectors: dict[str, SectorMomentum]) -> dict[str, float]:
    """Influence per sector, ready for the price generator."""
    return {name: state.influence for name, state in sectors.items()}
