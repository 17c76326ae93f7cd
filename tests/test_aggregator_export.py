"""Tests for the JSON export file written by the aggregator."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from datetime import datetime

import pytest
from builders import make_aggregator, make_host, raw_diag
from conftest import async_wait_until

from problemhub import aggregator as aggregator_module
from problemhub.exporter import read_export_file


@pytest.mark.asyncio
async def test_export_writes_document_atomically(tmp_path) -> None:
    host = make_host({"/a.ts": [raw_diag("e", 0), raw_diag("w", 1)], "/b.ts": [raw_diag("h", 3)]})
    agg = make_aggregator(host)
    agg.on_raw_change("/a.ts")
    agg.on_raw_change("/b.ts")
    target = tmp_path / "out" / "export.json"

    await agg.export_problems_to_file(target)

    document = json.loads(target.read_text(encoding="utf-8"))
    assert len(document["problems"]) == 3
    assert document["problems"][0]["filePath"] == "/a.ts"
    assert document["summary"] == {
        "totalProblems": 3,
        "errorCount": 1,
        "warningCount": 1,
        "infoCount": 0,
        "hintCount": 1,
        "fileCount": 2,
        "workspaceFolders": ["root"],
    }
    assert datetime.fromisoformat(document["exportedAt"]).tzinfo is not None
    assert [p.name for p in target.parent.iterdir()] == ["export.json"]
    agg.dispose()


@pytest.mark.asyncio
async def test_export_of_empty_store(tmp_path) -> None:
    agg = make_aggregator(make_host())
    target = tmp_path / "export.json"
    await agg.export_problems_to_file(str(target))
    document = read_export_file(target)
    assert document["problems"] == []
    assert document["summary"]["totalProblems"] == 0
    agg.dispose()


@pytest.mark.asyncio
async def test_export_failure_is_logged_and_raised(tmp_path, caplog) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    agg = make_aggregator(make_host())
    with caplog.at_level(logging.ERROR, logger="problemhub.aggregator"):
        with pytest.raises(OSError):
            await agg.export_problems_to_file(blocker / "export.json")
    assert "Failed to export problems to" in caplog.text
    agg.dispose()


@pytest.mark.asyncio
async def test_failed_replace_keeps_previous_file(tmp_path, monkeypatch) -> None:
    host = make_host({"/a.ts": [raw_diag()]})
    agg = make_aggregator(host)
    target = tmp_path / "export.json"
    await agg.export_problems_to_file(target)
    previous = target.read_text(encoding="utf-8")

    agg.on_raw_change("/a.ts")

    def _broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _broken_replace)
    with pytest.raises(OSError, match="disk full"):
        await agg.export_problems_to_file(target)

    assert target.read_text(encoding="utf-8") == previous
    assert [p.name for p in tmp_path.iterdir()] == ["export.json"]
    agg.dispose()


@pytest.mark.asyncio
async def test_raw_change_triggers_background_export(tmp_path) -> None:
    target = tmp_path / "auto.json"
    host = make_host({"/a.ts": [raw_diag("auto")]})
    agg = make_aggregator(host, export_path=target)
    agg.on_raw_change("/a.ts")
    assert await async_wait_until(target.exists)
    document = read_export_file(target)
    assert [p["message"] for p in document["problems"]] == ["auto"]
    await agg.aclose()


@pytest.mark.asyncio
async def test_background_export_failure_is_not_surfaced(tmp_path, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    host = make_host({"/a.ts": [raw_diag("still stored")]})
    agg = make_aggregator(host, export_path=blocker / "auto.json")
    with caplog.at_level(logging.WARNING, logger="problemhub.aggregator"):
        agg.on_raw_change("/a.ts")
        assert await async_wait_until(lambda: "Background export to" in caplog.text)
    assert [p.message for p in agg.get_problems_for_file("/a.ts")] == ["still stored"]
    await agg.aclose()


@pytest.mark.asyncio
async def test_background_export_never_leaves_older_snapshot(tmp_path, monkeypatch) -> None:
    writes: list[str] = []
    real_write = aggregator_module._atomic_write_text

    def _slow_first_write(path, text):
        if not writes:
            time.sleep(0.2)
        writes.append(text)
        real_write(path, text)

    monkeypatch.setattr(aggregator_module, "_atomic_write_text", _slow_first_write)
    target = tmp_path / "auto.json"
    host = make_host({"/a.ts": [raw_diag("old")]})
    agg = make_aggregator(host, export_path=target)

    agg.on_raw_change("/a.ts")
    await asyncio.sleep(0.05)
    host.diagnostics["/a.ts"] = [raw_diag("new")]
    agg.on_raw_change("/a.ts")

    assert await async_wait_until(lambda: len(writes) == 2)
    await asyncio.sleep(0.05)
    assert len(writes) == 2
    assert [p["message"] for p in read_export_file(target)["problems"]] == ["new"]
    await agg.aclose()


@pytest.mark.asyncio
async def test_burst_of_changes_is_exported_once(tmp_path, monkeypatch) -> None:
    writes: list[str] = []
    real_write = aggregator_module._atomic_write_text

    def _counting_write(path, text):
        writes.append(text)
        real_write(path, text)

    monkeypatch.setattr(aggregator_module, "_atomic_write_text", _counting_write)
    target = tmp_path / "auto.json"
    host = make_host({f"/f{i}.ts": [raw_diag(f"m{i}")] for i in range(5)})
    agg = make_aggregator(host, export_path=target)
    for i in range(5):
        agg.on_raw_change(f"/f{i}.ts")

    assert await async_wait_until(target.exists)
    await asyncio.sleep(0.05)
    assert len(writes) == 1
    assert len(read_export_file(target)["problems"]) == 5
    await agg.aclose()
