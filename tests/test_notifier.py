"""Tests for the per-topic subscriber notifier."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from builders import raw_diag

from problemhub.normalizer import normalize_problem
from problemhub.notifier import SubscriberNotifier, build_notification

TOPIC = "problemsChanged"


def _problems():
    return [normalize_problem(raw_diag("unused import", 1), "/a.ts", lambda _l: {"name": "root"})]


def test_unknown_topic_accepts_no_subscription() -> None:
    notifier = SubscriberNotifier(MagicMock())
    assert notifier.subscribe("somethingElse", "client-1") is False
    assert notifier.subscriber_count() == 0


def test_unsubscribe_unknown_is_noop() -> None:
    notifier = SubscriberNotifier(MagicMock())
    notifier.unsubscribe(TOPIC, "never-subscribed")
    notifier.unsubscribe("bogus-topic", "never-subscribed")
    assert notifier.subscriber_count(TOPIC) == 0


@pytest.mark.asyncio
async def test_resubscribe_yields_single_delivery() -> None:
    sender = MagicMock()
    notifier = SubscriberNotifier(sender)
    assert notifier.subscribe(TOPIC, "client-1")
    assert notifier.subscribe(TOPIC, "client-1")
    await notifier.publish(TOPIC, "/a.ts", _problems())
    assert sender.call_count == 1
    assert sender.call_args[0][0] == "client-1"


@pytest.mark.asyncio
async def test_zero_subscribers_makes_no_delivery_attempts() -> None:
    sender = MagicMock()
    notifier = SubscriberNotifier(sender)
    assert await notifier.publish(TOPIC, "/a.ts", _problems()) == []
    sender.assert_not_called()


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(caplog) -> None:
    delivered: list[str] = []

    def _sender(subscriber_id, envelope):
        if subscriber_id == "client-2":
            raise ConnectionError("gone")
        delivered.append(subscriber_id)

    notifier = SubscriberNotifier(_sender)
    for sid in ("client-1", "client-2", "client-3"):
        notifier.subscribe(TOPIC, sid)
    with caplog.at_level(logging.WARNING, logger="problemhub.notifier"):
        failed = await notifier.publish(TOPIC, "/a.ts", _problems())
    assert failed == ["client-2"]
    assert sorted(delivered) == ["client-1", "client-3"]
    assert "client-2" in caplog.text


@pytest.mark.asyncio
async def test_async_sender_is_awaited() -> None:
    sender = AsyncMock()
    notifier = SubscriberNotifier(sender)
    notifier.subscribe(TOPIC, "a")
    notifier.subscribe(TOPIC, "b")
    await notifier.publish(TOPIC, "/a.ts", _problems())
    assert sender.await_count == 2


@pytest.mark.asyncio
async def test_slow_subscriber_times_out_without_blocking() -> None:
    fast = AsyncMock()

    async def _sender(subscriber_id, envelope):
        if subscriber_id == "slow":
            await asyncio.sleep(5)
        await fast(subscriber_id)

    notifier = SubscriberNotifier(_sender, send_timeout_s=0.05)
    notifier.subscribe(TOPIC, "slow")
    notifier.subscribe(TOPIC, "fast")
    failed = await notifier.publish(TOPIC, None, [])
    assert failed == ["slow"]
    fast.assert_awaited_once_with("fast")


@pytest.mark.asyncio
async def test_unsubscribed_client_receives_nothing() -> None:
    sender = MagicMock()
    notifier = SubscriberNotifier(sender)
    notifier.subscribe(TOPIC, "a")
    notifier.unsubscribe(TOPIC, "a")
    await notifier.publish(TOPIC, "/a.ts", _problems())
    sender.assert_not_called()


def test_envelope_shape() -> None:
    envelope = build_notification("/a.ts", _problems(), "update")
    assert envelope["method"] == "notifications/message"
    assert envelope["params"]["level"] == "info"
    assert envelope["params"]["logger"] == "vscode-diagnostics"
    data = envelope["params"]["data"]
    assert data["type"] == "problemsChanged"
    assert data["changeType"] == "update"
    assert data["uri"] == "/a.ts"
    assert data["problemCount"] == 1
    assert data["problems"][0]["severity"] == "Warning"
    assert datetime.fromisoformat(data["timestamp"]).tzinfo is not None
