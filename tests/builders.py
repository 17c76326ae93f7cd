"""Builders for fake host editors, raw diagnostics and aggregators."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from problemhub.aggregator import DiagnosticsAggregator
from problemhub.config import AggregatorConfig
from problemhub.host import locator_path


def raw_diag(
    message: str = "boom",
    severity: Any = 0,
    *,
    start: tuple[int, int] = (0, 0),
    end: tuple[int, int] = (0, 0),
    source: str | None = "ts",
    code: Any = None,
    related: Any = None,
) -> dict[str, Any]:
    diag: dict[str, Any] = {
        "message": message,
        "severity": severity,
        "range": {
            "start": {"line": start[0], "character": start[1]},
            "end": {"line": end[0], "character": end[1]},
        },
        "source": source,
    }
    if code is not None:
        diag["code"] = code
    if related is not None:
        diag["relatedInformation"] = related
    return diag


def make_host(
    diagnostics: dict[str, list[dict[str, Any]]] | None = None,
    *,
    folder: str | Callable[[Any], str | None] = "root",
) -> MagicMock:
    """Fake host editor backed by a mutable ``host.diagnostics`` mapping."""
    host = MagicMock()
    host.diagnostics = dict(diagnostics or {})
    host.subscription = MagicMock()
    host.on_diagnostics_changed.return_value = host.subscription

    def _get_diagnostics(locator: Any = None) -> Any:
        if locator is None:
            return [(path, list(diags)) for path, diags in host.diagnostics.items()]
        return list(host.diagnostics.get(locator_path(locator), []))

    def _resolve(locator: Any) -> dict[str, str] | None:
        name = folder(locator) if callable(folder) else folder
        return {"name": name} if name else None

    host.get_diagnostics.side_effect = _get_diagnostics
    host.resolve_workspace_folder.side_effect = _resolve
    host.find_files = AsyncMock(return_value=[])
    host.open_document = AsyncMock(return_value=None)
    host.run_command = AsyncMock(return_value=None)
    return host


def host_listener(host: MagicMock) -> Callable[[Any], None]:
    """Return the listener the aggregator registered with *host*."""
    return host.on_diagnostics_changed.call_args[0][0]


def make_aggregator(host: MagicMock, **overrides: Any) -> DiagnosticsAggregator:
    """Build an aggregator whose initial analysis is far in the future unless overridden."""
    export_path = overrides.pop("export_path", None)
    overrides.setdefault("initial_analysis_delay_s", 3600.0)
    return DiagnosticsAggregator(host, config=AggregatorConfig(**overrides), export_path=export_path)
