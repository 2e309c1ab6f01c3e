"""Market phase state machine, crash trigger and Fear/Greed index.

Each sector runs its own phase state machine. The global phase is never
transitioned on its own: it is recomputed every cycle as the rounded
average score of the sector phases.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from models.config import PhaseConfig
from models.market import SECTORS, Stock
from models.phase import PHASES, ClimateRecord, MarketMetrics, MarketPhaseState

logger = logging.getLogger(__name__)

PHASE_SCORES: dict[str, int] = {
    "panic": 0,
    "recession": 1,
    "consolidation": 2,
    "recovery": 3,
    "prosperity": 4,
    "boom": 5,
}
SCORE_TO_PHASE: tuple[str, ...] = ("panic", "recession", "consolidation", "recovery", "prosperity", "boom")

VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "prosperity": ("boom", "consolidation"),
    "boom": ("consolidation",),
    # Panic is reachable only through a crash.
    "consolidation": ("prosperity",),
    "panic": ("recession",),
    "recession": ("recovery",),
    "recovery": ("prosperity",),
}

FEAR_GREED_BASE: dict[str, float] = {
    "prosperity": 55,
    "boom": 75,
    "consolidation": 38,
    "panic": 15,
    "recession": 28,
    "recovery": 45,
}

FEAR_GREED_RANGES: dict[str, tuple[int, int]] = {
    "prosperity": (45, 60),
    "boom": (65, 85),
    "consolidation": (30, 45),
    "panic": (5, 20),
    "recession": (20, 35),
    "recovery": (35, 50),
}

MAX_CLIMATE_HISTORY = 100
DEFAULT_VOLATILITY = 0.02


@dataclass
class CrashEvent:
    sector: str
    impact: float


@dataclass
class PhaseUpdate:
    """Result of one phase step."""

    state: MarketPhaseState
    crashes: list[CrashEvent] = field(default_factory=list)
    sector_transitions: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def _recent_change(stock: Stock, lookback: int) -> float | None:
    if len(stock.price_history) < lookback:
        return None
    recent = stock.price_history[-lookback:]
    return (recent[-1].close - recent[0].close) / recent[0].close


def _momentum_of(stocks: list[Stock], lookback: int) -> float:
    changes = [c for c in (_recent_change(s, lookback) for s in stocks) if c is not None]
    if not changes:
        return 0.0
    # +-10% over the lookback window maps to +-1
    return max(-1.0, min(1.0, sum(changes) / len(changes) * 10))


def sector_index_premium(stocks: list[Stock], sector: str, lookback: int = 50) -> float:
    """How far a sector's cap-weighted index sits above its moving average, as a fraction."""
    members = [s for s in stocks if s.sector == sector and s.price_history]
    if not members:
        return 0.0
    total_cap = sum(s.market_cap_billions for s in members)

    def _index_at(offset: int) -> float:
        value = 0.0
        for s in members:
            base = s.price_history[0].close
            price = s.price_history[len(s.price_history) - offset].close if offset else s.current_price
            value += price / base * 100 * s.market_cap_billions / total_cap
        return value

    window = min(lookback, min(len(s.price_history) for s in members))
    current = _index_at(0)
    if window < 2:
        return 0.0
    average = sum(_index_at(offset) for offset in range(1, window + 1)) / window
    return (current - average) / average if average > 0 else 0.0


def calculate_market_metrics(stocks: list[Stock], config: PhaseConfig) -> MarketMetrics:
    """Aggregate momentum, overheating and average price change."""
    lookback = config.momentum_lookback_candles
    sector_momentum = {
        sector: _momentum_of([s for s in stocks if s.sector == sector], lookback) for sector in SECTORS
    }
    sector_overheated = {
        sector: sector_index_premium(stocks, sector, config.overheat_lookback_candles) >= config.overheat_threshold
        for sector in SECTORS
    }

    changes = []
    for stock in stocks:
        if len(stock.price_history) >= 2:
            prev = stock.price_history[-2].close
            changes.append((stock.current_price - prev) / prev)

    return MarketMetrics(
        global_momentum=_momentum_of(stocks, lookback),
        sector_momentum=sector_momentum,
        sector_overheated=sector_overheated,
        avg_price_change=sum(changes) / len(changes) if changes else 0.0,
    )


def volatility_multipliers(stocks: list[Stock], state: MarketPhaseState, config: PhaseConfig) -> dict[str, float]:
    """Per-symbol volatility multiplier blending global and sector phases."""
    weight = config.global_volatility_weight
    global_mult = config.phases[state.global_phase].volatility_multiplier
    result: dict[str, float] = {}
    for stock in stocks:
        sector_phase = state.sector_phases.get(stock.sector, state.global_phase)
        sector_mult = config.phases[sector_phase].volatility_multiplier
        result[stock.symbol] = global_mult * weight + sector_mult * (1 - weight)
    return result


def spread_modifier(sector: str, state: MarketPhaseState, config: PhaseConfig) -> float:
    """Average of global and sector market-maker spread modifiers."""
    sector_phase = state.sector_phases.get(sector, state.global_phase)
    return (config.phases[state.global_phase].mm_spread_modifier + config.phases[sector_phase].mm_spread_modifier) / 2


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _transition_condition(
    current: str,
    target: str,
    momentum: float,
    cycles_in_phase: int,
    config: PhaseConfig,
) -> bool:
    key = f"{current}_to_{target}"
    if key == "prosperity_to_boom":
        return momentum > 0.35
    if key == "prosperity_to_consolidation":
        return momentum < -0.15
    if key == "boom_to_consolidation":
        return momentum < -0.05 or cycles_in_phase > config.phases["boom"].max_duration
    if key == "consolidation_to_prosperity":
        return momentum > 0.1
    if key == "panic_to_recession":
        return True
    if key == "recession_to_recovery":
        return momentum > 0.05
    if key == "recovery_to_prosperity":
        return momentum > 0.2
    return False


def check_sector_transition(
    current: str,
    cycles_in_phase: int,
    momentum: float,
    config: PhaseConfig,
    rng: random.Random,
) -> str | None:
    """Return the next phase of a sector, or None when it stays.

    Nothing happens before the phase's minimum duration has elapsed; after
    that every satisfied transition is gated by a random roll.
    """
    if cycles_in_phase < config.phases[current].min_duration:
        return None
    for target in VALID_TRANSITIONS[current]:
        if not _transition_condition(current, target, momentum, cycles_in_phase, config):
            continue
        probability = config.transition_probabilities.get(f"{current}_to_{target}", 0.01)
        if rng.random() < probability * config.transition_probability_scale:
            return target
    return None


def check_crash(overheat_cycles: int, config: PhaseConfig, rng: random.Random) -> float | None:
    """Roll the crash trigger for an overheated sector; returns the impact or None."""
    probability = config.base_crash_probability + overheat_cycles * config.crash_probability_per_overheat_cycle
    if rng.random() < probability:
        return config.min_crash_impact + rng.random() * (config.max_crash_impact - config.min_crash_impact)
    return None


def global_phase_from_sectors(sector_phases: dict[str, str]) -> str:
    """Round the mean sector phase score to the nearest phase."""
    if not sector_phases:
        return "prosperity"
    average = sum(PHASE_SCORES[p] for p in sector_phases.values()) / len(sector_phases)
    # round half up, matching score semantics for ties like 2.5
    score = int(average + 0.5)
    return SCORE_TO_PHASE[max(0, min(5, score))]


def advance_phases(
    state: MarketPhaseState,
    metrics: MarketMetrics,
    config: PhaseConfig,
    rng: random.Random,
) -> PhaseUpdate:
    """Advance overheat counters, crash triggers and sector transitions.

    The global phase is recomputed from the updated sector phases; its
    cycle counter resets only when the aggregate changes.
    """
    sector_phases = dict(state.sector_phases)
    cycles_in_sector = {s: state.cycles_in_sector_phase.get(s, 0) + 1 for s in SECTORS}
    overheat = dict(state.overheat_cycles)
    update = PhaseUpdate(state=state)
    total_crashes = state.history.total_crashes

    for sector in SECTORS:
        crashed = False
        if metrics.sector_overheated.get(sector, False):
            overheat[sector] = overheat.get(sector, 0) + 1
            impact = check_crash(overheat[sector], config, rng)
            if impact is not None:
                crashed = True
                sector_phases[sector] = "panic"
                cycles_in_sector[sector] = 0
                overheat[sector] = 0
                total_crashes += 1
                update.crashes.append(CrashEvent(sector=sector, impact=impact))
                logger.info("Sector crash in %s (impact %.1f%%)", sector, impact * 100)
        else:
            overheat[sector] = 0

        if crashed:
            continue
        target = check_sector_transition(
            sector_phases[sector],
            cycles_in_sector[sector],
            metrics.sector_momentum.get(sector, 0.0),
            config,
            rng,
        )
        if target is not None:
            logger.debug("Sector %s: %s -> %s", sector, sector_phases[sector], target)
            sector_phases[sector] = target
            cycles_in_sector[sector] = 0
            update.sector_transitions[sector] = target

    global_phase = global_phase_from_sectors(sector_phases)
    cycles_in_global = 0 if global_phase != state.global_phase else state.cycles_in_global_phase + 1

    update.state = state.model_copy(
        update={
            "global_phase": global_phase,
            "sector_phases": sector_phases,
            "cycles_in_global_phase": cycles_in_global,
            "cycles_in_sector_phase": cycles_in_sector,
            "overheat_cycles": overheat,
            "history": state.history.model_copy(update={"total_crashes": total_crashes}),
        }
    )
    return update


# ---------------------------------------------------------------------------
# Fear / Greed
# ---------------------------------------------------------------------------


def average_volatility(stocks: list[Stock], lookback: int = 10) -> float:
    """Mean absolute close-to-close change over the last *lookback* candles."""
    values = []
    for stock in stocks:
        if len(stock.price_history) < lookback:
            continue
        recent = stock.price_history[-lookback:]
        changes = [abs((b.close - a.close) / a.close) for a, b in zip(recent, recent[1:])]
        values.append(sum(changes) / len(changes))
    return sum(values) / len(values) if values else DEFAULT_VOLATILITY


def calculate_fear_greed(phase: str, metrics: MarketMetrics, stocks: list[Stock], config: PhaseConfig) -> int:
    score = (
        FEAR_GREED_BASE[phase]
        + metrics.global_momentum * 25
        + (10 - average_volatility(stocks, config.volatility_lookback_candles) * 400)
        + metrics.avg_price_change * 100
    )
    return max(0, min(100, round(score)))


def record_cycle(state: MarketPhaseState, cycle: int) -> MarketPhaseState:
    """Append the current climate to history for the end-of-game summary."""
    per_phase = dict(state.history.cycles_per_phase)
    per_phase[state.global_phase] = per_phase.get(state.global_phase, 0) + 1
    climate = state.history.climate_history + [
        ClimateRecord(cycle=cycle, phase=state.global_phase, fear_greed_index=state.fear_greed_index)
    ]
    history = state.history.model_copy(
        update={"cycles_per_phase": per_phase, "climate_history": climate[-MAX_CLIMATE_HISTORY:]}
    )
    return state.model_copy(update={"history": history})


# ---------------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------------


def _weighted_phase(weights: dict[str, float], rng: random.Random) -> str:
    total = sum(weights.get(p, 0) for p in PHASES)
    roll = rng.random() * total
    for phase in PHASES:
        roll -= weights.get(phase, 0)
        if roll <= 0:
            return phase
    return "prosperity"


def initialize_phases(config: PhaseConfig, rng: random.Random) -> MarketPhaseState:
    """Draw independent sector phases; the global phase follows from them."""
    sector_phases = {sector: _weighted_phase(config.initial_phase_weights, rng) for sector in SECTORS}
    global_phase = global_phase_from_sectors(sector_phases)
    low, high = FEAR_GREED_RANGES[global_phase]
    return MarketPhaseState(
        global_phase=global_phase,
        sector_phases=sector_phases,
        fear_greed_index=rng.randint(low, high),
    )
