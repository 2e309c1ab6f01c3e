#!/usr/bin/env python3
"""CLI entrypoint for the market simulation engine.

Usage::

    python run_simulation.py --config config/default.yaml
    python run_simulation.py --config config/default.yaml --cycles 500 --seed 7
    python run_simulation.py --cycles 50 --realtime --output-dir results/

The run loads a YAML configuration file (or the defaults), starts a game
with warm-up, ticks it for the requested number of cycles and writes the
final snapshot and summary.  The run name is derived from the config file
name (e.g. ``default.yaml`` -> ``default``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from models.config import EngineConfig
from simulation.runner import AsyncSimulationRunner


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a headless market simulation.",
    )
    parser.add_argument(
        "--config",
        default=None,
        type=str,
        help="Path to the YAML configuration file (default: built-in defaults).",
    )
    parser.add_argument(
        "--cycles",
        default=None,
        type=int,
        help="Number of cycles to run (default: game duration from config, else 100).",
    )
    parser.add_argument(
        "--seed",
        default=None,
        type=int,
        help="Seed for the random generator; overrides the config value.",
    )
    parser.add_argument(
        "--output-dir",
        default="results",
        type=str,
        help="Directory where run output will be written (default: results/).",
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Tick on the configured update interval instead of as fast as possible.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    return parser.parse_args()


def _setup_logging(level: str) -> None:
    """Configure root logger with a clean format."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


async def _main() -> None:
    args = _parse_args()
    _setup_logging(args.log_level)

    logger = logging.getLogger(__name__)
    if args.config:
        logger.info("Loading config from '%s'...", args.config)
        config = EngineConfig.from_yaml(args.config)
    else:
        config = EngineConfig()
    if args.seed is not None:
        config = config.model_copy(update={"seed": args.seed})
    logger.info(
        "Config loaded: mode='%s', agents=%d, seed=%s",
        config.game_mode,
        config.virtual_player_count,
        config.seed,
    )

    runner = AsyncSimulationRunner(
        config,
        config_yaml_path=args.config,
        output_dir=args.output_dir,
        cycles=args.cycles,
        realtime=args.realtime,
    )
    await runner.run()


if __name__ == "__main__":
    asyncio.run(_main())
