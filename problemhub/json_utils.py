"""Strict-JSON helpers shared by notification envelopes and the export file.

Domain objects are flattened through their ``to_dict()``; NaN and infinities
are emitted as ``null`` so consumers never see non-standard JSON tokens.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import PurePath
from typing import Any

__all__ = [
    "safe_json_dumps",
    "safe_json_loads",
    "sanitize_for_json",
    "sanitize_value",
]

LOGGER = logging.getLogger(__name__)


class _Cleaner:
    __slots__ = ("replaced",)

    def __init__(self) -> None:
        self.replaced = 0

    def clean(self, value: Any) -> Any:
        as_dict = getattr(value, "to_dict", None)
        if callable(as_dict):
            return self.clean(as_dict())
        if isinstance(value, float) and not math.isfinite(value):
            self.replaced += 1
            return None
        if isinstance(value, PurePath):
            return str(value)
        if isinstance(value, dict):
            return {str(key): self.clean(item) for key, item in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.clean(item) for item in value]
        return value


def sanitize_for_json(obj: Any) -> tuple[Any, bool]:
    """Return ``(plain_obj, had_non_finite)`` for *obj*.

    Tuples and sets become lists, paths become strings, and objects with a
    ``to_dict()`` method are expanded before recursion.
    """
    cleaner = _Cleaner()
    plain = cleaner.clean(obj)
    return plain, cleaner.replaced > 0


def sanitize_value(value: Any) -> Any:
    return sanitize_for_json(value)[0]


def safe_json_dumps(value: Any, *, indent: int | None = None) -> str:
    return json.dumps(sanitize_value(value), ensure_ascii=False, allow_nan=False, indent=indent)


def safe_json_loads(value: str | None, *, context: str) -> Any | None:
    """Parse *value*; empty or malformed text yields ``None``.

    *context* names the payload in the warning, e.g. ``"export file /tmp/x.json"``.
    """
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Ignoring malformed JSON in %s: %s", context, exc)
        return None
