"""Index transcript files into the session store."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path

from sessiondeck.core.path_utils import list_transcript_files, session_id_for
from sessiondeck.core.session_parser import parse_session_file
from sessiondeck.db.repository import SessionRepository
from sessiondeck.models.sessions import Session

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 100

UpdateCallback = Callable[[Session], Awaitable[None]]


class SessionIndexer:
    """Keeps the store in sync with transcript files, one file at a time."""

    def __init__(
        self,
        repository: SessionRepository,
        projects_dir: Path,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._repository = repository
        self._projects_dir = projects_dir
        self._on_update = on_update

    @property
    def projects_dir(self) -> Path:
        return self._projects_dir

    def set_update_callback(self, on_update: UpdateCallback | None) -> None:
        self._on_update = on_update

    async def index_session_file(
        self, file_path: str | Path, now: datetime | None = None
    ) -> Session | None:
        """Index one transcript.

        Unchanged files (same size as stored) only get their status re-derived.

        Returns:
            The stored session, or None if the file could not be indexed.
        """
        path = Path(file_path)
        try:
            size = path.stat().st_size
            existing = await self._repository.get_session(session_id_for(path))

            if existing is not None and existing.file_size_bytes == size:
                session, changed = await self._repository.refresh_status(
                    existing.session_id, now or datetime.now(UTC)
                )
                if session is not None and changed:
                    await self._notify(session)
                return session

            loop = asyncio.get_running_loop()
            parsed = await loop.run_in_executor(None, parse_session_file, path)
            session = await self._repository.reindex_session(parsed, now)
        except Exception:
            logger.exception(f"Failed to index {path}")
            return None

        logger.debug(
            f"Indexed session {session.session_id}: {len(parsed.events)} events, "
            f"status={session.status}"
        )
        await self._notify(session)
        return session

    async def index_all_sessions(self) -> int:
        """Index every transcript under the projects directory.

        Returns:
            Number of files that produced a session.
        """
        files = list_transcript_files(self._projects_dir)
        if not files:
            logger.info(f"No transcripts found under {self._projects_dir}")
            return 0

        logger.info(f"Indexing {len(files)} transcripts from {self._projects_dir}")
        indexed = 0
        for position, path in enumerate(files, start=1):
            if await self.index_session_file(path) is not None:
                indexed += 1
            if position % PROGRESS_LOG_EVERY == 0:
                logger.info(f"Indexed {position}/{len(files)} transcripts")

        logger.info(f"Indexing complete: {indexed}/{len(files)} sessions")
        return indexed

    async def _notify(self, session: Session) -> None:
        if self._on_update is None:
            return
        try:
            await self._on_update(session)
        except Exception:
            logger.exception(f"Session update callback failed for {session.session_id}")
