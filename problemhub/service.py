"""Runtime orchestration: host -> aggregator -> notifier / exporter.

Boundary note for maintainers:
- Keep this module focused on wiring and lifecycle, not store semantics.
- Normalisation rules belong in ``normalizer.py``; store rules in ``aggregator.py``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .aggregator import DiagnosticsAggregator
from .config import AppConfig
from .constants import TOPIC_PROBLEMS_CHANGED
from .exporter import PeriodicExporter
from .host import HostEditor
from .models import ChangeEvent
from .notifier import Sender, SubscriberNotifier
from .perf_monitor import OperationMonitor

LOGGER = logging.getLogger(__name__)


class DiagnosticsService:
    """Owns one aggregator and forwards its change events to subscribers."""

    def __init__(self, host: HostEditor, sender: Sender, config: AppConfig | None = None):
        self.config = config or AppConfig()
        self._host = host
        self._sender = sender
        self.monitor: OperationMonitor | None = None
        self.notifier = SubscriberNotifier(sender)
        self.aggregator: DiagnosticsAggregator | None = None
        self.exporter: PeriodicExporter | None = None
        self._publish_tasks: set[asyncio.Task[Any]] = set()

    @property
    def started(self) -> bool:
        return self.aggregator is not None and not self.aggregator.is_disposed

    async def start(self) -> None:
        if self.started:
            raise RuntimeError("Diagnostics service is already started")
        monitor_cfg = self.config.monitor
        export_cfg = self.config.export
        self.monitor = OperationMonitor(
            enable_logging=monitor_cfg.enable_logging,
            max_metrics_history=monitor_cfg.max_metrics_history,
            custom_thresholds=monitor_cfg.custom_thresholds,
        )
        self.aggregator = DiagnosticsAggregator(
            self._host,
            config=self.config.aggregator,
            monitor=self.monitor,
            export_path=export_cfg.path if export_cfg.auto_export_on_change else None,
        )
        self.aggregator.add_listener(self._on_change)
        if export_cfg.enabled:
            self.exporter = PeriodicExporter(self.aggregator, export_cfg.path, export_cfg.interval_s)
            self.exporter.start()
        LOGGER.info("Diagnostics service started")

    async def stop(self) -> None:
        if self.exporter is not None:
            await self.exporter.stop()
            self.exporter = None
        if self.aggregator is not None:
            await self.aggregator.aclose()
        pending = list(self._publish_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.notifier.clear()
        if self.monitor is not None:
            self.monitor.dispose()
        LOGGER.info("Diagnostics service stopped")

    def subscribe(self, subscriber_id: str, topic: str = TOPIC_PROBLEMS_CHANGED) -> bool:
        return self.notifier.subscribe(topic, subscriber_id)

    def unsubscribe(self, subscriber_id: str, topic: str = TOPIC_PROBLEMS_CHANGED) -> None:
        self.notifier.unsubscribe(topic, subscriber_id)

    def _on_change(self, event: ChangeEvent) -> None:
        if self.notifier.subscriber_count(TOPIC_PROBLEMS_CHANGED) == 0:
            return
        task = asyncio.get_running_loop().create_task(
            self.notifier.publish(
                TOPIC_PROBLEMS_CHANGED,
                event.locator,
                event.problems,
                change_type=event.type,
            ),
            name="problems-changed-publish",
        )
        self._publish_tasks.add(task)
        task.add_done_callback(self._publish_tasks.discard)
