"""Headless simulation runner: drives the orchestrator for a fixed number of cycles.

Lifecycle:
    1. Start a game (world build + warm-up).
    2. For each cycle:
        a. Tick immediately, or in real-time mode wait for the scheduler.
        b. Record the notifications the tick produced.
    3. Finalise and write snapshot, trades and summary.

A failing tick is recorded and stops the run; the output written so far
is still finalised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from models.config import EngineConfig
from models.events import Notification
from models.world import WorldState
from simulation.end_game import calculate_end_game_stats, net_worth
from simulation.orchestrator import CycleOrchestrator
from simulation.scheduler import Clock
from simulation.sim_logging import RunLogger, run_name_from_config_path

logger = logging.getLogger(__name__)


class AsyncSimulationRunner:
    """Runs one game and writes its output."""

    def __init__(
        self,
        config: EngineConfig,
        config_yaml_path: str | None = None,
        output_dir: str = "results",
        cycles: int | None = None,
        realtime: bool = False,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._config_yaml_path = config_yaml_path
        self._run_name = run_name_from_config_path(config_yaml_path)
        self._run_logger = RunLogger(output_dir, self._run_name)
        self._orchestrator = CycleOrchestrator(config, clock=clock)
        self._cycles = cycles if cycles is not None else (config.game_duration_cycles or 100)
        self._realtime = realtime

    @property
    def orchestrator(self) -> CycleOrchestrator:
        return self._orchestrator

    @property
    def run_logger(self) -> RunLogger:
        return self._run_logger

    async def run(self) -> WorldState | None:
        """Execute the full simulation and return the final world."""
        self._run_logger.init_run(self._config_yaml_path)
        self._orchestrator.start_game(self._config.seed)
        logger.info("Starting run '%s': %d cycle(s), realtime=%s", self._run_name, self._cycles, self._realtime)

        poll_seconds = self._config.schedule.poll_interval_ms / 1000
        completed = 0
        while completed < self._cycles:
            world = self._orchestrator.world
            if world is None or world.session.is_ended:
                break
            try:
                if self._realtime:
                    result = self._orchestrator.poll()
                    if result is None:
                        await asyncio.sleep(poll_seconds)
                        continue
                else:
                    result = self._orchestrator.tick()
            except Exception as exc:
                cycle = world.session.current_cycle
                msg = f"Tick at cycle {cycle} failed: {exc}"
                logger.exception(msg)
                self._run_logger.record_error(msg)
                break
            self._run_logger.record_notifications([e for e in result.events if isinstance(e, Notification)])
            completed += 1

        world = self._orchestrator.world
        self._run_logger.finalize(world, self._build_summary(world))
        logger.info("Run '%s' complete. Output: %s", self._run_name, self._run_logger.run_dir)
        return world

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _build_summary(self, world: WorldState | None) -> dict[str, Any]:
        if world is None:
            return {"run_name": self._run_name}
        loan_cfg = self._config.loans
        stats = world.session.end_stats or calculate_end_game_stats(world, loan_cfg)
        player = world.player
        worth = net_worth(player, world.prices(), loan_cfg)
        return {
            "run_name": self._run_name,
            "cycles": world.session.current_cycle,
            "game_ended": world.session.is_ended,
            "global_phase": world.phase.global_phase,
            "fear_greed_index": world.phase.fear_greed_index,
            "total_crashes": world.phase.history.total_crashes,
            "agent_trades": world.agent_trade_count,
            "player": {
                "cash": player.portfolio.cash,
                "net_worth": worth,
                "return_pct": (worth - player.initial_cash) / player.initial_cash * 100,
                "trades": player.total_trades_executed,
                "open_loans": len(player.credit.loans),
                "open_shorts": len(player.short_positions),
            },
            "end_stats": stats.model_dump(mode="json"),
        }
