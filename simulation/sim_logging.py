"""Run output logging: persists the final world, notifications, trades and summary.

The output directory structure is::

    {output_dir}/{run_name}/
    ├── config.yaml
    ├── snapshot.json
    ├── notifications.json
    ├── trades.json
    └── summary.json
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

from models.events import Notification
from models.world import WorldState
from simulation.snapshot import to_snapshot

logger = logging.getLogger(__name__)


def run_name_from_config_path(config_path: str | Path | None) -> str:
    """Derive a run name from the configuration file path (stem without extension)."""
    if config_path is None:
        return "default"
    return Path(config_path).stem


class RunLogger:
    """Manages on-disk output for a simulation run.

    Call ``init_run`` once at the start, ``record_notifications`` after each
    tick, and ``finalize`` at the very end.
    """

    def __init__(self, output_dir: str | Path, run_name: str) -> None:
        self._run_dir = _unique_run_dir(Path(output_dir), run_name)
        self._notifications: list[Notification] = []
        self._seen_ids: set[str] = set()
        self._errors: list[str] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init_run(self, config_yaml_path: str | Path | None = None) -> None:
        """Create the output directory and optionally copy the config."""
        self._run_dir.mkdir(parents=True, exist_ok=True)
        if config_yaml_path is not None:
            dest = self._run_dir / "config.yaml"
            shutil.copy2(config_yaml_path, dest)
            logger.info("Copied config to %s", dest)

    def record_notifications(self, notifications: list[Notification]) -> None:
        """Keep every notification seen during the run, once each."""
        for notification in notifications:
            if notification.id not in self._seen_ids:
                self._seen_ids.add(notification.id)
                self._notifications.append(notification)

    def record_error(self, message: str) -> None:
        self._errors.append(message)
        logger.error("Simulation error: %s", message)

    def finalize(self, world: WorldState | None, summary: dict[str, Any] | None = None) -> None:
        """Write the final snapshot, notifications, trades and summary."""
        if world is not None:
            _write_json(self._run_dir / "snapshot.json", to_snapshot(world))
            _write_json(
                self._run_dir / "trades.json",
                [t.model_dump(mode="json") for t in world.player.trade_history],
            )
        _write_json(
            self._run_dir / "notifications.json",
            [n.model_dump(mode="json") for n in self._notifications],
        )
        summary = dict(summary or {})
        if self._errors:
            summary["errors"] = list(self._errors)
        _write_json(self._run_dir / "summary.json", summary)
        logger.info("Run output finalized at %s", self._run_dir)

    @property
    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    @property
    def run_dir(self) -> Path:
        return self._run_dir


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _unique_run_dir(output_dir: Path, run_name: str) -> Path:
    """Return a run directory that does not already exist.

    If ``output_dir/run_name`` is free, use it directly (first run keeps
    a clean name).  Otherwise append an incrementing suffix:
    ``run_name_001``, ``run_name_002``, etc.
    """
    candidate = output_dir / run_name
    if not candidate.exists():
        return candidate

    idx = 1
    while True:
        candidate = output_dir / f"{run_name}_{idx:03d}"
        if not candidate.exists():
            return candidate
        idx += 1


def _write_json(path: Path, data: Any) -> None:
    """Write *data* as pretty-printed JSON to *path*."""
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
