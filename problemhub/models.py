"""Domain model objects for the diagnostics aggregator.

Problems are immutable, hashable dataclasses so a locator's problem list can
be de-duplicated and shared between the store, change events and exports
without defensive copying.  ``to_dict`` produces the external JSON contract
(camelCase keys, optional fields omitted when absent).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from .constants import SEVERITY_ORDER

Severity = Literal["Error", "Warning", "Information", "Hint"]

ProblemCode = str | int | float | bool


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class Position:
    line: int = 0
    character: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True, slots=True)
class Range:
    start: Position = Position()
    end: Position = Position()

    @classmethod
    def zero(cls) -> Range:
        return cls(Position(0, 0), Position(0, 0))

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}


@dataclass(frozen=True, slots=True)
class RelatedInformation:
    uri: str
    range: Range
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": {"uri": self.uri, "range": self.range.to_dict()},
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class Problem:
    file_path: str
    workspace_folder: str
    range: Range
    severity: Severity
    message: str
    source: str
    code: ProblemCode | None = None
    related_information: tuple[RelatedInformation, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "filePath": self.file_path,
            "workspaceFolder": self.workspace_folder,
            "range": self.range.to_dict(),
            "severity": self.severity,
            "message": self.message,
            "source": self.source,
        }
        if self.code is not None:
            out["code"] = self.code
        if self.related_information is not None:
            out["relatedInformation"] = [info.to_dict() for info in self.related_information]
        return out


@dataclass(slots=True)
class ProblemSummary:
    total_problems: int
    error_count: int
    warning_count: int
    info_count: int
    hint_count: int
    file_count: int
    workspace_folders: list[str]

    @classmethod
    def from_problems(cls, problems: list[Problem], file_count: int) -> ProblemSummary:
        counts = dict.fromkeys(SEVERITY_ORDER, 0)
        for problem in problems:
            counts[problem.severity] = counts.get(problem.severity, 0) + 1
        return cls(
            total_problems=len(problems),
            error_count=counts["Error"],
            warning_count=counts["Warning"],
            info_count=counts["Information"],
            hint_count=counts["Hint"],
            file_count=file_count,
            workspace_folders=sorted({p.workspace_folder for p in problems}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalProblems": self.total_problems,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "infoCount": self.info_count,
            "hintCount": self.hint_count,
            "fileCount": self.file_count,
            "workspaceFolders": list(self.workspace_folders),
        }


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A store change.  ``locator`` is ``None`` for workspace-wide refreshes."""

    type: Literal["update", "refresh"]
    locator: str | None
    problems: tuple[Problem, ...]
