from __future__ import annotations

import logging
import tempfile
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    DEFAULT_EXCLUDE_PATTERN,
    DEFAULT_EXPORT_FILENAME,
    DEFAULT_FILE_PATTERNS,
    DEFAULT_RELOAD_COMMAND,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_EXPORT_PATH = Path(tempfile.gettempdir()) / DEFAULT_EXPORT_FILENAME

DEFAULT_CONFIG: dict[str, Any] = {
    "aggregator": {
        "initial_analysis_delay_s": 1.0,
        "reconcile_interval_s": 0.0,
        "max_problems_per_file": 1000,
        "file_patterns": list(DEFAULT_FILE_PATTERNS),
        "exclude_pattern": DEFAULT_EXCLUDE_PATTERN,
        "max_files_per_pattern": 500,
        "host_call_timeout_s": 10.0,
        "reload_command": DEFAULT_RELOAD_COMMAND,
    },
    "monitor": {
        "enable_logging": False,
        "max_metrics_history": 100,
        "custom_thresholds": {},
    },
    "export": {
        "enabled": True,
        "path": str(DEFAULT_EXPORT_PATH),
        "interval_s": 2.0,
        "auto_export_on_change": True,
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(path_text: str, config_path: Path) -> Path:
    path = Path(path_text)
    if path.is_absolute():
        return path
    return config_path.resolve().parent / path


def _non_negative(section: str, name: str, value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        LOGGER.warning("%s.%s=%r is invalid — using default %s", section, name, value, default)
        return float(default)
    return float(value)


def _at_least_one(section: str, name: str, value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 0
    if parsed < 1:
        LOGGER.warning("%s.%s=%r is below minimum 1 — clamped to 1", section, name, value)
        return 1
    return parsed


@dataclass(slots=True)
class AggregatorConfig:
    initial_analysis_delay_s: float = 1.0
    reconcile_interval_s: float = 0.0
    max_problems_per_file: int = 1000
    file_patterns: tuple[str, ...] = DEFAULT_FILE_PATTERNS
    exclude_pattern: str | None = DEFAULT_EXCLUDE_PATTERN
    max_files_per_pattern: int = 500
    host_call_timeout_s: float = 10.0
    reload_command: str | None = DEFAULT_RELOAD_COMMAND

    def __post_init__(self) -> None:
        self.initial_analysis_delay_s = _non_negative(
            "aggregator", "initial_analysis_delay_s", self.initial_analysis_delay_s, 1.0
        )
        self.reconcile_interval_s = _non_negative(
            "aggregator", "reconcile_interval_s", self.reconcile_interval_s, 0.0
        )
        self.max_problems_per_file = _at_least_one(
            "aggregator", "max_problems_per_file", self.max_problems_per_file
        )
        self.max_files_per_pattern = _at_least_one(
            "aggregator", "max_files_per_pattern", self.max_files_per_pattern
        )
        if (
            isinstance(self.host_call_timeout_s, bool)
            or not isinstance(self.host_call_timeout_s, (int, float))
            or self.host_call_timeout_s <= 0
        ):
            LOGGER.warning(
                "aggregator.host_call_timeout_s=%r must be positive — using 10.0",
                self.host_call_timeout_s,
            )
            self.host_call_timeout_s = 10.0
        self.file_patterns = tuple(
            str(p) for p in self.file_patterns if isinstance(p, str) and p.strip()
        )


@dataclass(slots=True)
class MonitorConfig:
    enable_logging: bool = False
    max_metrics_history: int = 100
    custom_thresholds: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.max_metrics_history = _at_least_one(
            "monitor", "max_metrics_history", self.max_metrics_history
        )
        valid: dict[str, float] = {}
        for name, value in (self.custom_thresholds or {}).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                LOGGER.warning("monitor.custom_thresholds.%s=%r dropped (not positive)", name, value)
                continue
            valid[str(name)] = float(value)
        self.custom_thresholds = valid


@dataclass(slots=True)
class ExportConfig:
    enabled: bool = True
    path: Path = DEFAULT_EXPORT_PATH
    interval_s: float = 2.0
    auto_export_on_change: bool = True

    def __post_init__(self) -> None:
        if (
            isinstance(self.interval_s, bool)
            or not isinstance(self.interval_s, (int, float))
            or self.interval_s <= 0
        ):
            LOGGER.warning("export.interval_s=%r must be positive — using 2.0", self.interval_s)
            self.interval_s = 2.0


@dataclass(slots=True)
class AppConfig:
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    config_path: Path | None = None


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def _section(merged: dict[str, Any], name: str) -> dict[str, Any]:
    section = merged.get(name)
    if not isinstance(section, dict):
        raise ValueError(f"{name} must be a mapping, got {type(section).__name__}")
    return section


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load YAML configuration merged over :data:`DEFAULT_CONFIG`.

    A missing file yields the defaults.  Relative ``export.path`` values are
    resolved against the config file's directory.
    """
    override: dict[str, Any] = {}
    path: Path | None = None
    if config_path is not None:
        path = config_path.resolve()
        override = _read_config_file(path)
    merged = _deep_merge(deepcopy(DEFAULT_CONFIG), override)
    agg = _section(merged, "aggregator")
    mon = _section(merged, "monitor")
    exp = _section(merged, "export")

    patterns_raw = agg.get("file_patterns")
    if isinstance(patterns_raw, str):
        patterns_raw = [patterns_raw]
    if not isinstance(patterns_raw, list):
        raise ValueError("aggregator.file_patterns must be a list of glob patterns")

    export_path_raw = str(exp.get("path") or DEFAULT_EXPORT_PATH)
    export_path = (
        _resolve_config_path(export_path_raw, path) if path is not None else Path(export_path_raw)
    )
    thresholds = mon.get("custom_thresholds") or {}
    if not isinstance(thresholds, dict):
        raise ValueError("monitor.custom_thresholds must be a mapping of name to milliseconds")

    app_config = AppConfig(
        aggregator=AggregatorConfig(
            initial_analysis_delay_s=agg.get("initial_analysis_delay_s"),
            reconcile_interval_s=agg.get("reconcile_interval_s"),
            max_problems_per_file=agg.get("max_problems_per_file"),
            file_patterns=tuple(patterns_raw),
            exclude_pattern=agg.get("exclude_pattern") or None,
            max_files_per_pattern=agg.get("max_files_per_pattern"),
            host_call_timeout_s=agg.get("host_call_timeout_s"),
            reload_command=agg.get("reload_command") or None,
        ),
        monitor=MonitorConfig(
            enable_logging=bool(mon.get("enable_logging", False)),
            max_metrics_history=mon.get("max_metrics_history"),
            custom_thresholds=dict(thresholds),
        ),
        export=ExportConfig(
            enabled=bool(exp.get("enabled", True)),
            path=export_path,
            interval_s=exp.get("interval_s"),
            auto_export_on_change=bool(exp.get("auto_export_on_change", True)),
        ),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config=%s export_path=%s patterns=%s",
        app_config.config_path,
        app_config.export.path,
        ",".join(app_config.aggregator.file_patterns),
    )
    return app_config
