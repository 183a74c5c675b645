"""Watch the projects directory and reindex transcripts as they are written."""

import asyncio
import logging
from pathlib import Path

from watchfiles import Change, awatch

from sessiondeck.core.path_utils import is_transcript_file
from sessiondeck.core.session_indexer import SessionIndexer, UpdateCallback

logger = logging.getLogger(__name__)

# Upper bound on how long a burst of writes is grouped before yielding anyway
DEBOUNCE_MULTIPLIER = 5
STOP_GRACE_SECONDS = 10.0


class LogWatcher:
    """Reindexes a transcript once writes to it have been quiet for a while.

    Existing files are not replayed on start; run a full index for that.
    """

    def __init__(
        self,
        indexer: SessionIndexer,
        root: Path | None = None,
        quiet_period_ms: int = 2000,
    ) -> None:
        self._indexer = indexer
        self._root = root or indexer.projects_dir
        self._quiet_period_ms = quiet_period_ms
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _accepts(self, change: Change, path: str) -> bool:
        if change not in (Change.added, Change.modified):
            return False
        return is_transcript_file(Path(path), self._root)

    async def start(self, on_update: UpdateCallback | None = None) -> None:
        """Start watching in a background task."""
        if self.is_running:
            logger.warning("Log watcher already running")
            return
        if on_update is not None:
            self._indexer.set_update_callback(on_update)
        if not self._root.is_dir():
            logger.warning(f"Projects directory {self._root} does not exist, not watching")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(self._stop_event), name="log_watcher")
        logger.info(f"Watching {self._root} (quiet period {self._quiet_period_ms}ms)")

    async def stop(self) -> None:
        """Stop watching. Safe to call more than once.

        A file that is being indexed when this is called is finished first.
        """
        task, self._task = self._task, None
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None
        if task is None:
            return

        _done, pending = await asyncio.wait({task}, timeout=STOP_GRACE_SECONDS)
        if pending:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Log watcher stopped")

    async def _watch_loop(self, stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(
                self._root,
                watch_filter=self._accepts,
                step=self._quiet_period_ms,
                debounce=self._quiet_period_ms * DEBOUNCE_MULTIPLIER,
                stop_event=stop_event,
            ):
                paths = sorted({path for _change, path in changes})
                logger.debug(f"{len(paths)} transcript(s) changed")
                for path in paths:
                    if stop_event.is_set():
                        return
                    try:
                        await self._indexer.index_session_file(path)
                    except Exception:
                        logger.exception(f"Failed to index {path}")
        except Exception:
            logger.exception(f"Log watcher for {self._root} failed")
