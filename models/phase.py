"""Market phase models: global and per-sector phase state, metrics, and history."""

from typing import Literal

from pydantic import BaseModel, Field

MarketPhase = Literal["prosperity", "boom", "consolidation", "panic", "recession", "recovery"]
PHASES: tuple[str, ...] = ("prosperity", "boom", "consolidation", "panic", "recession", "recovery")


def _zero_per_sector() -> dict[str, int]:
    return {"tech": 0, "finance": 0, "industrial": 0, "commodities": 0}


def _prosperity_per_sector() -> dict[str, str]:
    return {"tech": "prosperity", "finance": "prosperity", "industrial": "prosperity", "commodities": "prosperity"}


class ClimateRecord(BaseModel):
    """Global phase and Fear/Greed reading recorded once per cycle."""

    cycle: int
    phase: MarketPhase
    fear_greed_index: int


class PhaseHistory(BaseModel):
    """Time spent per phase, used for the end-of-game summary."""

    cycles_per_phase: dict[str, int] = Field(default_factory=lambda: {phase: 0 for phase in PHASES})
    climate_history: list[ClimateRecord] = []
    total_crashes: int = 0


class MarketPhaseState(BaseModel):
    """Global phase (always derived from sectors) plus per-sector state machines."""

    global_phase: MarketPhase = "prosperity"
    sector_phases: dict[str, MarketPhase] = Field(default_factory=_prosperity_per_sector)
    cycles_in_global_phase: int = 0
    cycles_in_sector_phase: dict[str, int] = Field(default_factory=_zero_per_sector)
    overheat_cycles: dict[str, int] = Field(default_factory=_zero_per_sector)
    fear_greed_index: int = Field(default=50, ge=0, le=100)
    last_crash_cycle: int | None = None
    history: PhaseHistory = Field(default_factory=PhaseHistory)


class MarketMetrics(BaseModel):
    """Aggregate price metrics computed before each price update."""

    global_momentum: float = 0.0
    sector_momentum: dict[str, float] = Field(default_factory=dict)
    sector_overheated: dict[str, bool] = Field(default_factory=dict)
    avg_price_change: float = 0.0
