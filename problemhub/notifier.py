"""Per-topic subscriber registry with isolated fan-out delivery."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .constants import KNOWN_TOPICS
from .json_utils import sanitize_for_json
from .models import Problem, utc_now_iso
from .ws_models import NotificationParams, ProblemsChangedData, ProblemsChangedNotification

LOGGER = logging.getLogger(__name__)

_SEND_TIMEOUT_S: float = 5.0
"""Per-subscriber delivery timeout; a slow subscriber counts as a failed delivery."""

Sender = Callable[[str, dict[str, Any]], Awaitable[None] | None]
"""Transport callback: ``sender(subscriber_id, envelope)``; may be sync or async."""


def build_notification(
    locator: str | None,
    problems: Iterable[Problem],
    change_type: str | None = None,
) -> dict[str, Any]:
    problem_dicts = [p.to_dict() for p in problems]
    envelope = ProblemsChangedNotification(
        params=NotificationParams(
            data=ProblemsChangedData(
                uri=locator,
                changeType=change_type,
                problemCount=len(problem_dicts),
                problems=problem_dicts,
                timestamp=utc_now_iso(),
            )
        )
    )
    cleaned, had_non_finite = sanitize_for_json(envelope.model_dump(mode="json"))
    if had_non_finite:
        LOGGER.warning("Notification for %s contained NaN/Inf values; replaced with null.", locator)
    return cleaned


class SubscriberNotifier:
    def __init__(
        self,
        sender: Sender,
        *,
        topics: Iterable[str] = KNOWN_TOPICS,
        send_timeout_s: float = _SEND_TIMEOUT_S,
    ):
        self._sender = sender
        self._subscriptions: dict[str, set[str]] = {topic: set() for topic in topics}
        self._send_timeout_s = send_timeout_s

    def subscribe(self, topic: str, subscriber_id: str) -> bool:
        """Register *subscriber_id*; returns ``False`` for unrecognised topics."""
        subscribers = self._subscriptions.get(topic)
        if subscribers is None:
            LOGGER.debug("Ignoring subscription to unknown topic %r", topic)
            return False
        subscribers.add(subscriber_id)
        return True

    def unsubscribe(self, topic: str, subscriber_id: str) -> None:
        subscribers = self._subscriptions.get(topic)
        if subscribers is not None:
            subscribers.discard(subscriber_id)

    def subscribers(self, topic: str) -> list[str]:
        return sorted(self._subscriptions.get(topic, ()))

    def subscriber_count(self, topic: str | None = None) -> int:
        if topic is not None:
            return len(self._subscriptions.get(topic, ()))
        return sum(len(ids) for ids in self._subscriptions.values())

    def clear(self) -> None:
        for subscribers in self._subscriptions.values():
            subscribers.clear()

    async def publish(
        self,
        topic: str,
        locator: str | None,
        problems: Iterable[Problem],
        *,
        change_type: str | None = None,
    ) -> list[str]:
        """Deliver a change envelope to every subscriber of *topic*.

        Each delivery is attempted independently.  Returns the ids whose
        delivery failed; failures are logged, never raised.
        """
        subscriber_ids = list(self._subscriptions.get(topic, ()))
        if not subscriber_ids:
            return []
        envelope = build_notification(locator, problems, change_type)

        async def _send(subscriber_id: str) -> str | None:
            try:
                result = self._sender(subscriber_id, envelope)
                if inspect.isawaitable(result):
                    await asyncio.wait_for(result, timeout=self._send_timeout_s)
                return None
            except Exception:
                LOGGER.warning(
                    "Failed to send notification to subscriber %s",
                    subscriber_id,
                    exc_info=True,
                )
                return subscriber_id

        results = await asyncio.gather(*(_send(sid) for sid in subscriber_ids))
        failed = [sid for sid in results if sid is not None]
        if failed:
            LOGGER.error(
                "Notification delivery failed for %d of %d subscriber(s) on %s",
                len(failed),
                len(subscriber_ids),
                topic,
            )
        return failed
