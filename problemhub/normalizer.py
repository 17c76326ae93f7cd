"""Defensive conversion of raw host diagnostics into canonical :class:`Problem` objects.

Raw diagnostics come from arbitrary providers and may be dicts or attribute
objects with missing, null or mistyped fields.  :func:`normalize_problem`
never raises: every field is coerced independently and a failure reading the
primary fields yields a minimal fallback problem instead.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import Any

from .constants import (
    CONVERSION_ERROR_MESSAGE,
    NO_MESSAGE,
    SEVERITY_BY_CODE,
    UNKNOWN,
    UNKNOWN_ERROR_MESSAGE,
)
from .host import locator_path
from .models import Position, Problem, ProblemCode, Range, RelatedInformation, Severity

LOGGER = logging.getLogger(__name__)

__all__ = [
    "WorkspaceResolver",
    "coerce_coordinate",
    "coerce_range",
    "map_severity",
    "normalize_problem",
    "resolve_file_path",
    "resolve_workspace_name",
]

WorkspaceResolver = Callable[[Any], Any]


def _field(obj: Any, name: str) -> Any:
    """Read *name* from a mapping or attribute object; ``None`` when absent."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def map_severity(value: Any) -> Severity:
    """Map a host severity code to its name; anything unrecognised is ``Error``."""
    if isinstance(value, bool):
        return "Error"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return "Error"
    return SEVERITY_BY_CODE.get(value, "Error")  # type: ignore[return-value]


def coerce_coordinate(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value >= 0 else 0
    if isinstance(value, float) and math.isfinite(value) and value >= 0:
        return int(value)
    return 0


def _coerce_position(raw: Any) -> Position:
    return Position(
        line=coerce_coordinate(_field(raw, "line")),
        character=coerce_coordinate(_field(raw, "character")),
    )


def coerce_range(raw: Any) -> Range:
    if raw is None:
        return Range.zero()
    return Range(start=_coerce_position(_field(raw, "start")), end=_coerce_position(_field(raw, "end")))


def resolve_file_path(locator: Any) -> str:
    if locator is None:
        return UNKNOWN
    return locator_path(locator)


def resolve_workspace_name(locator: Any, resolver: WorkspaceResolver | None) -> str:
    if resolver is None:
        return UNKNOWN
    try:
        name = _field(resolver(locator), "name")
    except Exception:
        LOGGER.debug("Workspace folder resolution failed for %s", locator, exc_info=True)
        return UNKNOWN
    if isinstance(name, str) and name:
        return name
    return UNKNOWN


def _coerce_message(value: Any, default: str) -> str:
    if isinstance(value, str):
        return value or default
    if value is None:
        return default
    return str(value)


def _coerce_code(value: Any) -> ProblemCode | None:
    if isinstance(value, (str, int, float, bool)):
        return value
    if value is None:
        return None
    inner = _field(value, "value")
    if isinstance(inner, (str, int, float, bool)):
        return inner
    return None


def _coerce_related(raw: Any) -> tuple[RelatedInformation, ...] | None:
    if raw is None or isinstance(raw, (str, bytes, dict)):
        return None
    try:
        items = []
        for info in raw:
            location = _field(info, "location")
            uri = _field(location, "uri")
            items.append(
                RelatedInformation(
                    uri=str(uri) if uri else UNKNOWN,
                    range=coerce_range(_field(location, "range")),
                    message=_coerce_message(_field(info, "message"), NO_MESSAGE),
                )
            )
        return tuple(items)
    except Exception:
        LOGGER.debug("Dropping malformed related information", exc_info=True)
        return None


def _fallback_problem(raw: Any, file_path: str) -> Problem:
    try:
        message = _coerce_message(_field(raw, "message"), CONVERSION_ERROR_MESSAGE)
    except Exception:
        message = CONVERSION_ERROR_MESSAGE
    return Problem(
        file_path=file_path,
        workspace_folder=UNKNOWN,
        range=Range.zero(),
        severity="Error",
        message=message,
        source=UNKNOWN,
    )


def normalize_problem(
    raw: Any,
    locator: Any,
    workspace_resolver: WorkspaceResolver | None = None,
) -> Problem:
    """Convert one raw diagnostic for *locator* into a :class:`Problem`.

    Never raises.  Field rules: unknown severity -> ``Error``; missing or
    invalid coordinates -> 0; missing source -> ``"unknown"``; structured
    ``{value, target}`` codes collapse to ``value``; malformed related
    information is dropped as a whole.
    """
    file_path = resolve_file_path(locator)
    try:
        message = _coerce_message(_field(raw, "message"), UNKNOWN_ERROR_MESSAGE)
        severity = map_severity(_field(raw, "severity"))
        source_raw = _field(raw, "source")
        source = str(source_raw) if source_raw is not None and source_raw != "" else UNKNOWN
        problem_range = coerce_range(_field(raw, "range"))
    except Exception:
        LOGGER.warning("Diagnostic conversion failed for %s; using fallback", file_path, exc_info=True)
        return _fallback_problem(raw, file_path)

    try:
        code = _coerce_code(_field(raw, "code"))
    except Exception:
        code = None
    try:
        related_raw = _field(raw, "related_information")
        if related_raw is None:
            related_raw = _field(raw, "relatedInformation")
    except Exception:
        related_raw = None

    return Problem(
        file_path=file_path,
        workspace_folder=resolve_workspace_name(locator, workspace_resolver),
        range=problem_range,
        severity=severity,
        message=message,
        source=source,
        code=code,
        related_information=_coerce_related(related_raw),
    )
