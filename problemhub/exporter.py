"""Periodic snapshot export for polling consumers."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .json_utils import safe_json_loads

if TYPE_CHECKING:
    from .aggregator import DiagnosticsAggregator

LOGGER = logging.getLogger(__name__)

_MAX_CONSECUTIVE_FAILURES = 10


class PeriodicExporter:
    """Rewrite the export file every ``interval_s`` seconds until stopped."""

    def __init__(self, aggregator: DiagnosticsAggregator, path: Path, interval_s: float = 2.0):
        self._aggregator = aggregator
        self.path = Path(path)
        self.interval_s = max(0.01, float(interval_s))
        self._task: asyncio.Task[None] | None = None
        self.export_count = 0
        self.failure_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run(), name="problems-export")
        LOGGER.info("Continuous export started, exporting every %.1fs to %s", self.interval_s, self.path)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        LOGGER.info("Continuous export stopped")

    async def run_once(self) -> bool:
        try:
            await self._aggregator.export_problems_to_file(self.path)
        except Exception:
            self.failure_count += 1
            LOGGER.warning("Export to %s failed", self.path, exc_info=True)
            return False
        self.export_count += 1
        return True

    async def run(self) -> None:
        consecutive_failures = 0
        while not self._aggregator.is_disposed:
            if await self.run_once():
                consecutive_failures = 0
            else:
                consecutive_failures += 1
            delay = self.interval_s
            if consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
                LOGGER.error(
                    "Export failed %d consecutive times; backing off.", consecutive_failures
                )
                delay = self.interval_s * 5
            await asyncio.sleep(delay)


def read_export_file(path: Path) -> dict[str, Any] | None:
    """Read an export document, ``None`` when missing or unreadable."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError:
        LOGGER.warning("Could not read export file %s", path, exc_info=True)
        return None
    data = safe_json_loads(text, context=f"export file {path}")
    return data if isinstance(data, dict) else None
