"""Tests for the transcript log watcher."""

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from watchfiles import Change

from sessiondeck.core.log_watcher import LogWatcher

Batch = set[tuple[Change, str]]


def fake_awatch(batches: list[Batch], seen: dict[str, Any]) -> Callable[..., AsyncIterator[Batch]]:
    """Stand-in for watchfiles.awatch that replays batches then waits for stop."""

    def _awatch(*paths: Path, **kwargs: Any) -> AsyncIterator[Batch]:
        seen["paths"] = paths
        seen.update(kwargs)
        watch_filter = kwargs["watch_filter"]
        stop_event: asyncio.Event = kwargs["stop_event"]

        async def gen() -> AsyncIterator[Batch]:
            for batch in batches:
                accepted = {(c, p) for c, p in batch if watch_filter(c, p)}
                if accepted:
                    yield accepted
            await stop_event.wait()

        return gen()

    return _awatch


@pytest.fixture
def indexer(projects_dir: Path) -> MagicMock:
    mock = MagicMock()
    mock.projects_dir = projects_dir
    mock.index_session_file = AsyncMock(return_value=None)
    return mock


async def wait_for_calls(mock: AsyncMock, count: int) -> None:
    async def _poll() -> None:
        while mock.await_count < count:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout=2)


class TestLogWatcher:
    """Tests for LogWatcher."""

    @pytest.mark.asyncio
    async def test_indexes_added_and_modified_transcripts(
        self, indexer: MagicMock, projects_dir: Path
    ) -> None:
        transcript = str(projects_dir / "-p" / "s1.jsonl")
        other = str(projects_dir / "-p" / "s2.jsonl")
        batches = [
            {
                (Change.added, transcript),
                (Change.modified, transcript),
                (Change.deleted, other),
                (Change.modified, str(projects_dir / "-p" / "notes.md")),
                (Change.modified, str(projects_dir / "top.jsonl")),
            },
            {(Change.modified, other)},
        ]
        seen: dict[str, Any] = {}
        watcher = LogWatcher(indexer, projects_dir, quiet_period_ms=2000)

        with patch("sessiondeck.core.log_watcher.awatch", fake_awatch(batches, seen)):
            await watcher.start()
            await wait_for_calls(indexer.index_session_file, 2)
            await watcher.stop()

        called = [c.args[0] for c in indexer.index_session_file.await_args_list]
        assert called == [transcript, other]
        assert seen["step"] == 2000
        assert seen["debounce"] > seen["step"]

    @pytest.mark.asyncio
    async def test_start_registers_callback(self, indexer: MagicMock, projects_dir: Path) -> None:
        callback = AsyncMock()
        watcher = LogWatcher(indexer, projects_dir)

        with patch("sessiondeck.core.log_watcher.awatch", fake_awatch([], {})):
            await watcher.start(callback)
            assert watcher.is_running
            await watcher.stop()

        indexer.set_update_callback.assert_called_once_with(callback)
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, indexer: MagicMock, projects_dir: Path) -> None:
        watcher = LogWatcher(indexer, projects_dir)
        await watcher.stop()

        with patch("sessiondeck.core.log_watcher.awatch", fake_awatch([], {})):
            await watcher.start()
            await watcher.stop()
            await watcher.stop()

        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_missing_root_is_not_watched(self, indexer: MagicMock, temp_dir: Path) -> None:
        watcher = LogWatcher(indexer, temp_dir / "absent")

        with patch("sessiondeck.core.log_watcher.awatch") as awatch:
            await watcher.start()

        awatch.assert_not_called()
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_in_flight_index_completes_on_stop(
        self, indexer: MagicMock, projects_dir: Path
    ) -> None:
        transcript = str(projects_dir / "-p" / "s1.jsonl")
        started = asyncio.Event()
        finished = asyncio.Event()

        async def slow_index(path: str) -> None:
            started.set()
            await asyncio.sleep(0.05)
            finished.set()

        indexer.index_session_file = AsyncMock(side_effect=slow_index)
        watcher = LogWatcher(indexer, projects_dir)

        batches: list[Batch] = [{(Change.modified, transcript)}]
        with patch("sessiondeck.core.log_watcher.awatch", fake_awatch(batches, {})):
            await watcher.start()
            await asyncio.wait_for(started.wait(), timeout=2)
            await watcher.stop()

        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_index_failure_keeps_watching(
        self, indexer: MagicMock, projects_dir: Path
    ) -> None:
        broken = str(projects_dir / "-p" / "broken.jsonl")
        healthy = str(projects_dir / "-p" / "healthy.jsonl")
        indexer.index_session_file = AsyncMock(side_effect=[TypeError("unhashable"), None])
        watcher = LogWatcher(indexer, projects_dir)

        batches: list[Batch] = [{(Change.modified, broken)}, {(Change.modified, healthy)}]
        with patch("sessiondeck.core.log_watcher.awatch", fake_awatch(batches, {})):
            await watcher.start()
            await wait_for_calls(indexer.index_session_file, 2)
            await asyncio.sleep(0.01)
            assert watcher.is_running
            await watcher.stop()

        called = [c.args[0] for c in indexer.index_session_file.await_args_list]
        assert called == [broken, healthy]
