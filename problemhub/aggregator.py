"""Live diagnostics aggregation engine.

``DiagnosticsAggregator`` owns the canonical per-file problem store.  It is
fed by host "diagnostics changed" pushes, re-reads authoritative diagnostics
for every pushed locator, and periodically reconciles the whole store against
a full workspace read plus a best-effort background file scan.

Lifecycle is Constructed -> Active -> Disposed.  Everything runs on a single
event loop; the store is replaced per locator (never merged) so interleaved
completions cannot lose updates.  After disposal no host result is applied.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import tempfile
from collections.abc import Callable, Coroutine, Iterable
from pathlib import Path
from typing import Any

from .config import AggregatorConfig
from .constants import OP_DIAGNOSTIC_PROCESSING, OP_WORKSPACE_ANALYSIS, SEVERITY_ORDER
from .host import HostEditor, locator_path, raw_change_locators
from .json_utils import safe_json_dumps
from .models import ChangeEvent, Problem, ProblemSummary, Severity, utc_now_iso
from .normalizer import normalize_problem
from .perf_monitor import OperationMonitor
from .ws_models import ExportDocument, ExportSummary

LOGGER = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeEvent], None]

SUMMARY_GROUPS = ("severity", "source", "workspaceFolder")


def _atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to *path* via temp file + ``os.replace``.

    Readers polling *path* only ever see the previous or the new document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class DiagnosticsAggregator:
    def __init__(
        self,
        host: HostEditor,
        *,
        config: AggregatorConfig | None = None,
        monitor: OperationMonitor | None = None,
        export_path: Path | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._host = host
        self._config = config or AggregatorConfig()
        self._monitor = monitor or OperationMonitor(enable_logging=False)
        self._export_path = export_path
        self._loop = loop or asyncio.get_running_loop()
        self._problems: dict[str, list[Problem]] = {}
        self._listeners: list[ChangeListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._subscription: Any = None
        self._disposed = False
        self._export_lock = asyncio.Lock()
        self._export_dirty = False
        self._export_task: asyncio.Task[None] | None = None

        self._subscribe_to_host()
        self._analysis_handle: asyncio.TimerHandle | None = self._loop.call_later(
            self._config.initial_analysis_delay_s, self._run_scheduled_analysis
        )

    # -- lifecycle -------------------------------------------------------------

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def monitor(self) -> OperationMonitor:
        return self._monitor

    def dispose(self) -> None:
        """Stop all processing.  Safe to call repeatedly."""
        if self._disposed:
            return
        self._disposed = True
        if self._analysis_handle is not None:
            self._analysis_handle.cancel()
            self._analysis_handle = None
        for task in list(self._tasks):
            task.cancel()
        if self._subscription is not None:
            try:
                self._subscription.dispose()
            except Exception:
                LOGGER.warning("Error disposing diagnostics subscription", exc_info=True)
            self._subscription = None
        self._problems.clear()
        self._listeners.clear()

    async def aclose(self) -> None:
        """Dispose and wait for cancelled background tasks to unwind."""
        self.dispose()
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def add_listener(self, listener: ChangeListener) -> None:
        if not self._disposed and listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- push ingestion --------------------------------------------------------

    def on_raw_change(self, locator: Any, raw_payload_hint: Any = None) -> None:
        """Refresh the store entry for *locator* from the host.

        The push payload is only a hint; the authoritative diagnostics are
        always re-read.  Raises ``ValueError`` for a ``None`` locator.
        """
        key = locator_path(locator)
        if self._disposed:
            return
        problems = self._monitor.measure(
            OP_DIAGNOSTIC_PROCESSING, lambda: self._read_locator(locator)
        )
        if problems is None:
            return
        self._apply(key, problems)
        if self._export_path is not None:
            self._schedule_auto_export(self._export_path)

    def _handle_host_event(self, payload: Any) -> None:
        for locator in raw_change_locators(payload):
            try:
                self.on_raw_change(locator, payload)
            except Exception:
                LOGGER.warning("Ignoring diagnostics change for %r", locator, exc_info=True)

    # -- reconciliation --------------------------------------------------------

    async def trigger_workspace_analysis(self) -> None:
        """Run a full reconciliation pass.  No-op once disposed."""
        if self._disposed:
            return
        await self._monitor.measure_async(OP_WORKSPACE_ANALYSIS, self._reconcile)

    async def _reconcile(self) -> None:
        await self._reload_language_service()
        if self._disposed:
            return
        self._load_all_existing_diagnostics()
        if self._disposed:
            return
        await self._analyze_workspace_files_in_background()
        LOGGER.debug("Workspace analysis finished; %d file(s) tracked", len(self._problems))

    async def _reload_language_service(self) -> None:
        command = self._config.reload_command
        if not command:
            return
        try:
            await self._await_host(self._host.run_command(command))
        except Exception:
            LOGGER.warning("Language service reload (%s) failed; continuing", command, exc_info=True)

    def _load_all_existing_diagnostics(self) -> None:
        try:
            entries = list(self._host.get_diagnostics())
        except Exception:
            LOGGER.error("Failed to read workspace diagnostics", exc_info=True)
            return
        seen: set[str] = set()
        for entry in entries:
            try:
                locator, raw_list = entry
                key = locator_path(locator)
                problems = self._normalize_all(raw_list, locator)
            except Exception:
                LOGGER.warning("Skipping malformed workspace diagnostics entry", exc_info=True)
                continue
            seen.add(key)
            self._apply(key, list(dict.fromkeys(problems)))
        for key in [k for k, v in self._problems.items() if k not in seen and v]:
            self._apply(key, [])

    async def _analyze_workspace_files_in_background(self) -> None:
        patterns = self._config.file_patterns
        if patterns:
            await asyncio.gather(*(self._scan_pattern(pattern) for pattern in patterns))

    async def _scan_pattern(self, pattern: str) -> None:
        try:
            files = await self._await_host(
                self._host.find_files(pattern, self._config.exclude_pattern)
            )
            files = list(files or [])
        except Exception:
            LOGGER.warning("Error processing %s", pattern, exc_info=True)
            return
        if self._disposed:
            return
        limit = self._config.max_files_per_pattern
        if len(files) > limit:
            LOGGER.debug("Pattern %s matched %d files; opening first %d", pattern, len(files), limit)
            files = files[:limit]
        await asyncio.gather(*(self._open_and_refresh(locator) for locator in files))

    async def _open_and_refresh(self, locator: Any) -> None:
        try:
            await self._await_host(self._host.open_document(locator))
            key = locator_path(locator)
        except Exception:
            LOGGER.debug("Could not open %s for analysis", locator, exc_info=True)
            return
        if self._disposed:
            return
        problems = self._read_locator(locator)
        if problems is not None:
            self._apply(key, problems, skip_unchanged=True)

    def _run_scheduled_analysis(self) -> None:
        self._analysis_handle = None
        if self._disposed:
            return
        self._spawn(self._scheduled_pass(), name="workspace-analysis")

    async def _scheduled_pass(self) -> None:
        try:
            await self.trigger_workspace_analysis()
        except Exception:
            LOGGER.error("Scheduled workspace analysis failed", exc_info=True)
        finally:
            interval = self._config.reconcile_interval_s
            if interval > 0 and not self._disposed:
                self._analysis_handle = self._loop.call_later(
                    interval, self._run_scheduled_analysis
                )

    # -- store -----------------------------------------------------------------

    def refresh_diagnostics(self) -> None:
        """Emit the complete current problem set as a ``refresh`` event."""
        if self._disposed:
            return
        self._emit(ChangeEvent(type="refresh", locator=None, problems=tuple(self.get_all_problems())))

    def _read_locator(self, locator: Any) -> list[Problem] | None:
        try:
            raw_list = self._host.get_diagnostics(locator)
            return self._normalize_all(raw_list, locator)
        except Exception:
            LOGGER.warning("Failed to read diagnostics for %s", locator, exc_info=True)
            return None

    def _normalize_all(self, raw_list: Iterable[Any] | None, locator: Any) -> list[Problem]:
        resolver = getattr(self._host, "resolve_workspace_folder", None)
        return [normalize_problem(raw, locator, resolver) for raw in (raw_list or [])]

    def _apply(self, key: str, problems: list[Problem], *, skip_unchanged: bool = False) -> None:
        if self._disposed:
            return
        cap = self._config.max_problems_per_file
        if len(problems) > cap:
            LOGGER.debug("Truncating %d problems for %s to %d", len(problems), key, cap)
            problems = problems[:cap]
        if skip_unchanged and self._problems.get(key, []) == problems:
            return
        self._problems[key] = problems
        self._emit(ChangeEvent(type="update", locator=key, problems=tuple(problems)))

    def _emit(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.warning("Change listener %r failed", listener, exc_info=True)

    # -- queries ---------------------------------------------------------------

    def get_all_problems(self) -> list[Problem]:
        return [p for problems in self._problems.values() for p in problems]

    def problem_count(self) -> int:
        return sum(len(problems) for problems in self._problems.values())

    def get_problems_for_file(self, file_path: Any) -> list[Problem]:
        if file_path is None:
            return []
        try:
            key = locator_path(file_path)
        except Exception:
            return []
        return list(self._problems.get(key, ()))

    def get_problems_for_workspace(self, workspace_folder: str) -> list[Problem]:
        if not workspace_folder:
            return []
        return [p for p in self.get_all_problems() if p.workspace_folder == workspace_folder]

    def get_filtered_problems(
        self,
        *,
        severity: Severity | None = None,
        file_path: str | None = None,
        workspace_folder: str | None = None,
        source: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Problem]:
        problems = (
            self.get_problems_for_file(file_path) if file_path is not None else self.get_all_problems()
        )
        if severity is not None:
            problems = [p for p in problems if p.severity == severity]
        if workspace_folder is not None:
            problems = [p for p in problems if p.workspace_folder == workspace_folder]
        if source is not None:
            problems = [p for p in problems if p.source == source]
        start = max(0, int(offset or 0))
        if limit is None:
            return problems[start:]
        return problems[start : start + max(0, int(limit))]

    def get_files_with_problems(self) -> list[str]:
        return [key for key, problems in self._problems.items() if problems]

    def get_workspace_summary(self, group_by: str = "severity") -> dict[str, int]:
        """Count problems grouped by ``severity``, ``source`` or ``workspaceFolder``.

        Severity grouping always lists all four severities.  Any other
        *group_by* value falls back to severity grouping.
        """
        problems = self.get_all_problems()
        if group_by == "source":
            return self._count_by(problems, lambda p: p.source)
        if group_by == "workspaceFolder":
            return self._count_by(problems, lambda p: p.workspace_folder)
        if group_by != "severity":
            LOGGER.debug("Unknown summary grouping %r; grouping by severity", group_by)
        counts = dict.fromkeys(SEVERITY_ORDER, 0)
        for problem in problems:
            counts[problem.severity] += 1
        return counts

    @staticmethod
    def _count_by(problems: list[Problem], key: Callable[[Problem], str]) -> dict[str, int]:
        counts: dict[str, int] = {}
        for problem in problems:
            name = key(problem)
            counts[name] = counts.get(name, 0) + 1
        return counts

    def get_problem_summary(self) -> ProblemSummary:
        return ProblemSummary.from_problems(
            self.get_all_problems(), file_count=len(self.get_files_with_problems())
        )

    # -- export ----------------------------------------------------------------

    def build_export_document(self) -> ExportDocument:
        return ExportDocument(
            problems=[p.to_dict() for p in self.get_all_problems()],
            summary=ExportSummary(**self.get_problem_summary().to_dict()),
            exportedAt=utc_now_iso(),
        )

    async def export_problems_to_file(self, path: str | Path) -> None:
        """Atomically write the store and its summary as JSON to *path*.

        Failures are logged and re-raised.
        """
        target = Path(path)
        # Snapshot and write under one lock so writes land in snapshot order.
        async with self._export_lock:
            try:
                document = self.build_export_document()
                text = safe_json_dumps(document.model_dump(mode="json"), indent=2)
                await asyncio.to_thread(_atomic_write_text, target, text)
            except Exception:
                LOGGER.error("Failed to export problems to %s", target, exc_info=True)
                raise
        LOGGER.info("Exported %d problem(s) to %s", len(document.problems), target)

    def _schedule_auto_export(self, path: Path) -> None:
        self._export_dirty = True
        if self._export_task is None or self._export_task.done():
            self._export_task = self._spawn(self._auto_export(path), name="problems-auto-export")

    async def _auto_export(self, path: Path) -> None:
        while self._export_dirty and not self._disposed:
            self._export_dirty = False
            try:
                await self.export_problems_to_file(path)
            except Exception:
                LOGGER.warning("Background export to %s failed", path)

    # -- internals -------------------------------------------------------------

    def _subscribe_to_host(self) -> None:
        try:
            self._subscription = self._host.on_diagnostics_changed(self._handle_host_event)
        except Exception:
            LOGGER.error("Failed to subscribe to diagnostic changes", exc_info=True)

    async def _await_host(self, result: Any) -> Any:
        if inspect.isawaitable(result):
            return await asyncio.wait_for(result, timeout=self._config.host_call_timeout_s)
        return result

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = self._loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
