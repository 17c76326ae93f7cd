"""Shared constants for the diagnostics aggregation service."""

from __future__ import annotations

SEVERITY_BY_CODE: dict[int, str] = {
    0: "Error",
    1: "Warning",
    2: "Information",
    3: "Hint",
}
"""Host numeric severity -> canonical severity name."""

SEVERITY_ORDER: tuple[str, ...] = ("Error", "Warning", "Information", "Hint")

UNKNOWN = "unknown"
NO_MESSAGE = "No message"
UNKNOWN_ERROR_MESSAGE = "Unknown error"
CONVERSION_ERROR_MESSAGE = "Conversion error occurred"

# Operation names with built-in warning thresholds (milliseconds).
OP_DIAGNOSTIC_PROCESSING = "diagnostic-processing"
OP_PROTOCOL_RESPONSE = "mcp-response"
OP_ACTIVATION = "extension-activation"
OP_WORKSPACE_ANALYSIS = "workspace-analysis"

PERFORMANCE_THRESHOLDS_MS: dict[str, float] = {
    OP_DIAGNOSTIC_PROCESSING: 500.0,
    OP_PROTOCOL_RESPONSE: 100.0,
    OP_ACTIVATION: 2000.0,
}

TOPIC_PROBLEMS_CHANGED = "problemsChanged"
KNOWN_TOPICS: frozenset[str] = frozenset({TOPIC_PROBLEMS_CHANGED})

NOTIFICATION_METHOD = "notifications/message"
NOTIFICATION_LOGGER = "vscode-diagnostics"

DEFAULT_FILE_PATTERNS: tuple[str, ...] = ("**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx")
DEFAULT_EXCLUDE_PATTERN = "**/node_modules/**"
DEFAULT_RELOAD_COMMAND = "typescript.reloadProjects"
DEFAULT_EXPORT_FILENAME = "vscode-diagnostics-export.json"
