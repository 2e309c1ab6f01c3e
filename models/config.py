"""Engine configuration models, loaded from YAML.

These live in ``models/`` because they are shared data contracts used by the
cycle orchestrator, every engine component, and the CLI. Every knob has a
default so an empty YAML mapping yields the standard game.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

GameMode = Literal["real_life", "hard_life"]


class TradingMechanicsConfig(BaseModel):
    """Execution costs applied to human order fills."""

    spread_percent: float = Field(default=0.02, ge=0, description="Full bid/ask spread as a fraction of price.")
    slippage_per_share: float = Field(default=0.001, ge=0, description="Progressive slippage per additional share.")
    max_slippage: float = Field(default=0.10, ge=0, description="Slippage cap as a fraction of price.")
    fee_percent: float = Field(default=0.005, ge=0, description="Transaction fee as a fraction of the subtotal.")
    min_fee: float = Field(default=1.0, ge=0, description="Minimum absolute fee per trade.")
    market_order_cash_buffer: float = Field(
        default=0.05,
        ge=0,
        description="Extra cash fraction required when placing market buy orders.",
    )


def _hard_life_mechanics() -> TradingMechanicsConfig:
    return TradingMechanicsConfig(
        spread_percent=0.03,
        slippage_per_share=0.0015,
        max_slippage=0.15,
        fee_percent=0.01,
        min_fee=2.0,
    )


class TradingConfig(BaseModel):
    """Trading mechanics per game mode plus order defaults."""

    real_life: TradingMechanicsConfig = Field(default_factory=TradingMechanicsConfig)
    hard_life: TradingMechanicsConfig = Field(default_factory=_hard_life_mechanics)
    default_order_validity_cycles: int = Field(
        default=10,
        ge=1,
        description="Validity of non-market orders when none is given.",
    )

    def for_mode(self, mode: GameMode) -> TradingMechanicsConfig:
        return self.hard_life if mode == "hard_life" else self.real_life


class MarketMakerConfig(BaseModel):
    """Inventory and spread behaviour of the market maker."""

    base_inventory_per_stock: int = Field(default=100_000, gt=0)
    min_inventory_threshold: float = Field(
        default=0.1,
        ge=0,
        description="Inventory ratio at or below which the spread multiplier is maximal.",
    )
    max_inventory_threshold: float = Field(
        default=1.9,
        ge=0,
        description="Inventory ratio at or above which the spread multiplier is minimal.",
    )
    min_spread_multiplier: float = Field(default=0.5, gt=0)
    max_spread_multiplier: float = Field(default=3.0, gt=0)
    rebalance_rate: float = Field(
        default=0.01,
        ge=0,
        le=1,
        description="Fraction of the gap to base inventory closed per cycle.",
    )
    agent_inventory_factor: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Inventory effect of agent fills relative to human fills (rounded down).",
    )


def _default_correlations() -> dict[str, dict[str, float]]:
    return {
        "tech": {"finance": 0.3, "industrial": 0.1, "commodities": 0.0},
        "finance": {"tech": 0.4, "industrial": 0.4, "commodities": 0.2},
        "industrial": {"tech": 0.1, "finance": 0.2, "commodities": 0.5},
        "commodities": {"tech": -0.1, "finance": 0.1, "industrial": -0.4},
    }


class SectorConfig(BaseModel):
    """Sector momentum dynamics."""

    influence_strength: float = Field(default=0.6, ge=0)
    momentum_decay: float = Field(default=0.85, ge=0, le=1)
    momentum_update_rate: float = Field(default=0.15, ge=0, le=1)
    strong_performance_threshold: float = Field(
        default=0.02,
        ge=0,
        description="Minimum |performance| before a sector drags correlated sectors.",
    )
    max_sector_influence: float = Field(default=0.03, ge=0)
    correlation_damping: float = Field(default=0.5, ge=0)
    correlations: dict[str, dict[str, float]] = Field(default_factory=_default_correlations)


class PhaseParams(BaseModel):
    """Behaviour attached to one market phase."""

    volatility_multiplier: float = Field(gt=0)
    mm_spread_modifier: float
    min_duration: int = Field(ge=0)
    max_duration: int = Field(ge=0)


def _default_phase_params() -> dict[str, PhaseParams]:
    return {
        "prosperity": PhaseParams(volatility_multiplier=1.0, mm_spread_modifier=0.0, min_duration=30, max_duration=60),
        "boom": PhaseParams(volatility_multiplier=1.5, mm_spread_modifier=-0.2, min_duration=20, max_duration=50),
        "consolidation": PhaseParams(volatility_multiplier=2.0, mm_spread_modifier=0.3, min_duration=10, max_duration=30),
        "panic": PhaseParams(volatility_multiplier=3.0, mm_spread_modifier=1.0, min_duration=15, max_duration=25),
        "recession": PhaseParams(volatility_multiplier=1.3, mm_spread_modifier=0.5, min_duration=40, max_duration=80),
        "recovery": PhaseParams(volatility_multiplier=1.2, mm_spread_modifier=0.2, min_duration=15, max_duration=40),
    }


def _default_transition_probabilities() -> dict[str, float]:
    return {
        "prosperity_to_boom": 0.02,
        "prosperity_to_consolidation": 0.01,
        "boom_to_consolidation": 0.03,
        "consolidation_to_prosperity": 0.03,
        "panic_to_recession": 0.05,
        "recession_to_recovery": 0.025,
        "recovery_to_prosperity": 0.04,
    }


def _default_initial_phase_weights() -> dict[str, float]:
    return {
        "prosperity": 40,
        "recovery": 20,
        "consolidation": 15,
        "recession": 10,
        "boom": 10,
        "panic": 5,
    }


class PhaseConfig(BaseModel):
    """Market phase state machine parameters."""

    phases: dict[str, PhaseParams] = Field(default_factory=_default_phase_params)
    transition_probabilities: dict[str, float] = Field(default_factory=_default_transition_probabilities)
    transition_probability_scale: float = Field(
        default=1.5,
        ge=0,
        description="Scale applied to sector transition probabilities.",
    )
    initial_phase_weights: dict[str, float] = Field(default_factory=_default_initial_phase_weights)
    overheat_threshold: float = Field(
        default=0.20,
        ge=0,
        description="Sector index premium over its moving average that counts as overheated.",
    )
    overheat_lookback_candles: int = Field(default=50, ge=1)
    base_crash_probability: float = Field(default=0.005, ge=0, le=1)
    crash_probability_per_overheat_cycle: float = Field(default=0.002, ge=0)
    min_crash_impact: float = Field(default=0.08, ge=0)
    max_crash_impact: float = Field(default=0.15, ge=0)
    momentum_lookback_candles: int = Field(default=5, ge=1)
    volatility_lookback_candles: int = Field(default=10, ge=2)
    global_volatility_weight: float = Field(default=0.4, ge=0, le=1)


class FloatConfig(BaseModel):
    """Share float derived from market capitalisation."""

    float_percentage: float = Field(default=0.20, gt=0, le=1)
    scale_factor: int = Field(default=1000, gt=0)
    mm_initial_percent: float = Field(default=0.5, ge=0, le=1)


class OrderBookConfig(BaseModel):
    """Resting orders posted by market-making agents."""

    vp_order_lifetime: int = Field(default=5, ge=1, description="Cycles a resting agent order stays live.")
    max_orders_per_vp: int = Field(default=3, ge=1)
    target_spread: float = Field(default=0.02, ge=0)
    quote_probability: float = Field(default=0.30, ge=0, le=1)


def _default_distribution() -> dict[str, float]:
    return {
        "market_maker": 0.10,
        "momentum": 0.20,
        "contrarian": 0.20,
        "fundamentalist": 0.15,
        "noise": 0.15,
        "balanced": 0.20,
    }


class TraderConfig(BaseModel):
    """Virtual trader population and archetype parameters."""

    distribution: dict[str, float] = Field(default_factory=_default_distribution)
    momentum_lookback: int = Field(default=5, ge=1)
    momentum_trend_threshold: float = Field(default=0.02, ge=0)
    rsi_period: int = Field(default=14, ge=2)
    oversold_threshold: float = Field(default=30, ge=0, le=100)
    overbought_threshold: float = Field(default=70, ge=0, le=100)
    valuation_tolerance: float = Field(default=0.10, ge=0)
    noise_trade_frequency: float = Field(default=0.30, ge=0, le=1)
    aggressive_risk_threshold: int = Field(default=34, ge=0, le=100)
    agent_loan_cash_ratio: float = Field(
        default=0.10,
        ge=0,
        description="Agents consider borrowing when cash falls below this fraction of net worth.",
    )


class WarmupConfig(BaseModel):
    """Accelerated pre-game cycles seeding history and liquidity."""

    cycles: int = Field(default=128, ge=0)
    prioritize_after_fraction: float = Field(
        default=2 / 3,
        ge=0,
        le=1,
        description="Fraction of warm-up after which untraded symbols are favoured.",
    )
    min_trades_required: int = Field(default=2, ge=0)
    buy_boost: float = Field(default=0.05, ge=0)
    forced_trade_fraction: float = Field(default=0.1, gt=0, le=1)


class LoanConfig(BaseModel):
    """Credit rules shared by the human player and agents."""

    base_interest_rate: float = Field(default=0.06, ge=0)
    interest_charge_cycles: int = Field(default=20, ge=1)
    large_cap_collateral_ratio: float = Field(default=0.7, ge=0, le=1)
    small_cap_collateral_ratio: float = Field(default=0.5, ge=0, le=1)
    large_cap_threshold_billions: float = Field(default=200, ge=0)
    min_collateral_for_loan: float = Field(default=1000, ge=0)
    max_credit_line_multiplier: float = Field(default=2.5, ge=1)
    base_collateral_percent: float = Field(default=0.25, ge=0)
    max_loans: int = Field(default=3, ge=1)
    additional_loan_interest_penalty: float = Field(default=0.01, ge=0)
    origination_fee_percent: float = Field(default=0.015, ge=0)
    repayment_fee_percent: float = Field(default=0.005, ge=0)
    utilization_tier_50_surcharge: float = Field(default=0.01, ge=0)
    utilization_tier_75_surcharge: float = Field(default=0.03, ge=0)
    utilization_tier_100_surcharge: float = Field(default=0.06, ge=0)
    conservative_interest_bonus: float = Field(default=-0.01)
    aggressive_interest_penalty: float = Field(default=0.02)
    min_trades_for_full_risk_impact: int = Field(default=10, ge=1)
    profit_history_modifier_rate: float = Field(default=0.00005, ge=0)
    max_profit_history_modifier: float = Field(default=0.02, ge=0)
    loss_threshold_for_history_impact: float = Field(default=5000, ge=0)
    min_loan_duration_cycles: int = Field(default=20, ge=1)
    max_loan_duration_cycles: int = Field(default=100, ge=1)
    default_loan_duration_cycles: int = Field(default=40, ge=1)
    loan_duration_step_cycles: int = Field(default=20, ge=1)
    loan_due_warning_cycles: int = Field(default=4, ge=0)
    duration_discount_per_step: float = Field(default=0.005, ge=0)
    max_duration_discount: float = Field(default=0.02, ge=0)
    min_interest_rate: float = Field(default=0.01, ge=0)
    initial_credit_score: int = Field(default=50, ge=0, le=100)
    min_credit_score: int = Field(default=0)
    max_credit_score: int = Field(default=100)
    credit_score_on_time_bonus: int = Field(default=3)
    credit_score_early_bonus: int = Field(default=5)
    credit_score_overdue_penalty_per_cycle: int = Field(default=1)
    credit_score_progressive_threshold: int = Field(default=5, ge=1)
    credit_score_max_penalty_per_cycle: int = Field(default=10)
    credit_score_penalty_rate: float = Field(default=0.001, ge=0)
    credit_score_bonus_rate: float = Field(default=0.0005, ge=0)
    warning_ttl_ms: int = Field(default=8000, ge=0)
    repaid_ttl_ms: int = Field(default=6000, ge=0)


class ShortSellingConfig(BaseModel):
    """Short selling and margin rules."""

    enabled: bool = True
    initial_margin_percent: float = Field(default=1.5, gt=0)
    maintenance_margin_percent: float = Field(default=1.25, gt=0)
    base_borrow_fee_per_cycle: float = Field(default=0.001, ge=0)
    hard_to_borrow_threshold: float = Field(default=0.5, gt=0)
    hard_to_borrow_fee_multiplier: float = Field(default=3.0, ge=1)
    margin_call_grace_cycles: int = Field(default=5, ge=1)
    max_short_percent_of_float: float = Field(default=0.5, gt=0, le=1)
    forced_cover_cash_mode: Literal["net_of_collateral", "independent"] = Field(
        default="net_of_collateral",
        description=(
            "net_of_collateral: released collateral returns to cash and pays the cover cost. "
            "independent: the cover cost is deducted from cash and the collateral is released "
            "from the position without a cash credit."
        ),
    )
    warning_ttl_ms: int = Field(default=8000, ge=0)


class ScheduleConfig(BaseModel):
    """Real-time cadence of the cycle scheduler."""

    update_interval_ms: int = Field(default=5000, gt=0)
    poll_interval_ms: int = Field(default=200, gt=0)
    speed_multiplier: Literal[1, 2, 3] = 1


class EngineConfig(BaseModel):
    """Top-level configuration for a market simulation game, loaded from YAML."""

    initial_cash: float = Field(default=1_000_000.0, gt=0, description="Starting cash of the human player.")
    virtual_player_count: int = Field(default=49, ge=0, description="Number of autonomous agents.")
    game_mode: GameMode = "real_life"
    game_duration_cycles: int | None = Field(
        default=None,
        ge=1,
        description="Cycles until the game ends; None means unlimited.",
    )
    seed: int | None = Field(default=None, description="Seed for the injected random generator.")
    stock_split_threshold: float = Field(default=750.0, gt=0)
    stock_split_ratio: int = Field(default=3, ge=2)
    max_history_candles: int = Field(default=100, ge=2)
    initial_history_candles: int = Field(default=50, ge=2)
    max_transactions_per_player: int = Field(default=10, ge=1)
    sectors_enabled: bool = Field(default=True, description="Apply sector momentum influence to prices.")
    event_notification_ttl_ms: int = Field(
        default=10_000,
        ge=0,
        description="Display time of sector crash and stock split notifications.",
    )
    max_trade_history: int = Field(default=500, ge=1, description="Completed human trades kept in the world.")
    symbols: list[str] | None = Field(
        default=None,
        description="Restrict the default universe to these symbols; None keeps all of them.",
    )

    trading: TradingConfig = Field(default_factory=TradingConfig)
    market_maker: MarketMakerConfig = Field(default_factory=MarketMakerConfig)
    sector: SectorConfig = Field(default_factory=SectorConfig)
    phase: PhaseConfig = Field(default_factory=PhaseConfig)
    floats: FloatConfig = Field(default_factory=FloatConfig)
    order_book: OrderBookConfig = Field(default_factory=OrderBookConfig)
    traders: TraderConfig = Field(default_factory=TraderConfig)
    warmup: WarmupConfig = Field(default_factory=WarmupConfig)
    loans: LoanConfig = Field(default_factory=LoanConfig)
    shorts: ShortSellingConfig = Field(default_factory=ShortSellingConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @property
    def mechanics(self) -> TradingMechanicsConfig:
        return self.trading.for_mode(self.game_mode)

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load and validate an ``EngineConfig`` from a YAML file.

        Raises ``FileNotFoundError`` if the file does not exist and
        ``ValueError`` if the content is not a valid YAML mapping. An empty
        file yields the default configuration.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(
                f"Expected a YAML mapping in {path}, got {type(raw).__name__}."
            )

        return cls(**raw)
