"""Host editor boundary.

The aggregator never talks to an editor directly; it is handed an object that
satisfies :class:`HostEditor`.  Production code adapts the real editor API to
this protocol, tests pass ``MagicMock``/``AsyncMock`` instances.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class Locator:
    """File reference carrying a native path and a serialisable URI string."""

    fs_path: str
    uri: str = ""

    @classmethod
    def file(cls, path: str) -> Locator:
        return cls(fs_path=path, uri=f"file://{path}" if path.startswith("/") else path)

    def __str__(self) -> str:
        return self.uri or self.fs_path


class Disposable(Protocol):
    def dispose(self) -> None: ...


class WorkspaceFolder(Protocol):
    name: str


RawChangeListener = Callable[[Any], None]
"""Receives a raw change payload shaped like ``{"locators": [...]}``."""


class HostEditor(Protocol):
    def on_diagnostics_changed(self, listener: RawChangeListener) -> Disposable: ...

    def get_diagnostics(
        self, locator: Any = None
    ) -> Sequence[Any] | Iterable[tuple[Any, Sequence[Any]]]: ...

    def resolve_workspace_folder(self, locator: Any) -> WorkspaceFolder | None: ...

    def find_files(self, glob_pattern: str, exclude_pattern: str | None) -> Awaitable[list[Any]]: ...

    def open_document(self, locator: Any) -> Awaitable[None]: ...

    def run_command(self, command_id: str) -> Awaitable[None]: ...


def locator_path(locator: Any) -> str:
    """Return the native path of *locator*, falling back to its string form.

    Plain strings are accepted as their own path.  Raises ``ValueError`` for
    ``None`` so callers that key the store on locators fail loudly.
    """
    if locator is None:
        raise ValueError("locator is required")
    if isinstance(locator, str):
        return locator
    fs_path = getattr(locator, "fs_path", None)
    if isinstance(fs_path, str) and fs_path.strip():
        return fs_path
    return str(locator)


def raw_change_locators(payload: Any) -> list[Any]:
    """Extract the locator list from a raw host change payload."""
    if payload is None:
        return []
    if isinstance(payload, dict):
        locators = payload.get("locators")
    else:
        locators = getattr(payload, "locators", None)
    if locators is None:
        return []
    return list(locators)
