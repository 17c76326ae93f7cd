"""Pydantic models for the push-notification and export-file contracts.

Problems travel as their ``Problem.to_dict()`` form; these models pin the
envelope shape that external consumers depend on.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .constants import NOTIFICATION_LOGGER, NOTIFICATION_METHOD, TOPIC_PROBLEMS_CHANGED


class ProblemsChangedData(BaseModel):
    type: str = TOPIC_PROBLEMS_CHANGED
    uri: str | None = None
    changeType: str | None = None
    problemCount: int = Field(ge=0)
    problems: list[dict[str, Any]] = []
    timestamp: str


class NotificationParams(BaseModel):
    level: Literal["info"] = "info"
    logger: str = NOTIFICATION_LOGGER
    data: ProblemsChangedData


class ProblemsChangedNotification(BaseModel):
    """Envelope delivered to every subscriber of ``problemsChanged``."""

    method: str = NOTIFICATION_METHOD
    params: NotificationParams


class ExportSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    totalProblems: int = 0
    errorCount: int = 0
    warningCount: int = 0
    infoCount: int = 0
    hintCount: int = 0
    fileCount: int = 0
    workspaceFolders: list[str] = []


class ExportDocument(BaseModel):
    """Atomically replaced snapshot file read by polling consumers."""

    problems: list[dict[str, Any]] = []
    summary: ExportSummary = ExportSummary()
    exportedAt: str
