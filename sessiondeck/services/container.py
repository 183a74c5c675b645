"""Wire the indexer, watcher and pane mapper together."""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessiondeck.config import get_settings
from sessiondeck.core.log_watcher import LogWatcher
from sessiondeck.core.pane_mapper import PaneMapper
from sessiondeck.core.session_indexer import SessionIndexer, UpdateCallback
from sessiondeck.db.repository import SessionRepository
from sessiondeck.services.process_tree import PgrepProcessInspector, ProcessInspector
from sessiondeck.services.tmux import TmuxClient


@dataclass
class AppServices:
    """The long-lived service objects of one running instance."""

    repository: SessionRepository
    indexer: SessionIndexer
    watcher: LogWatcher
    tmux: TmuxClient
    mapper: PaneMapper

    async def stop(self) -> None:
        await self.watcher.stop()
        await self.mapper.stop_periodic_mapping()


def build_services(
    on_update: UpdateCallback | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    projects_dir: Path | None = None,
    tmux: TmuxClient | None = None,
    inspector: ProcessInspector | None = None,
) -> AppServices:
    settings = get_settings()
    root = (projects_dir or settings.PROJECTS_DIR).expanduser()

    repository = SessionRepository(session_factory)
    indexer = SessionIndexer(repository, root, on_update)
    watcher = LogWatcher(indexer, root, settings.WATCH_QUIET_PERIOD_MS)
    tmux = tmux or TmuxClient()
    mapper = PaneMapper(repository, tmux, inspector or PgrepProcessInspector(), on_update)

    return AppServices(
        repository=repository,
        indexer=indexer,
        watcher=watcher,
        tmux=tmux,
        mapper=mapper,
    )
