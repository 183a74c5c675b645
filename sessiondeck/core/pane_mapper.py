"""Map tmux panes to the sessions running in them and track agent liveness.

A cycle takes one OS snapshot (panes, the agent process under each pane and
that process's cwd), then matches agents to sessions by working directory:

1. A pane whose agent cwd matches one or more active/idle sessions maps to
   the most recently active of them; the session becomes ``alive``.
2. A session claimed by one pane is not offered to another pane in the same
   cycle.
3. A session previously mapped to a pane that still exists becomes ``dead``
   when no pane claims it this cycle, including when the pane's agent now runs
   in another directory.
4. A session previously mapped to a pane that no longer exists loses its pane
   coordinates and becomes ``dead``.

Status follows every liveness write, see ``sessiondeck.core.state_machine``.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

from sessiondeck.config import get_settings
from sessiondeck.db.repository import SessionRepository
from sessiondeck.models.panes import PaneSnapshot, TmuxPane
from sessiondeck.models.sessions import Liveness, Session, SessionStatus
from sessiondeck.services.process_tree import ProcessInspector
from sessiondeck.services.tmux import PaneSource

logger = logging.getLogger(__name__)

MAPPABLE_STATUSES = frozenset({SessionStatus.ACTIVE, SessionStatus.IDLE})

UpdateCallback = Callable[[Session], Awaitable[None]]


def _normalize_dir(path: str) -> str:
    return path.rstrip("/") or "/"


def sessions_by_directory(sessions: Sequence[Session]) -> dict[str, list[Session]]:
    """Index active/idle sessions by working directory, falling back to the project path."""
    index: dict[str, list[Session]] = {}
    for session in sessions:
        if session.status not in MAPPABLE_STATUSES:
            continue
        key = session.working_directory or session.project_path
        if key:
            index.setdefault(_normalize_dir(key), []).append(session)
    return index


class PaneMapper:
    """Owns the pane-to-session mapping and its short-lived cache."""

    def __init__(
        self,
        repository: SessionRepository,
        pane_source: PaneSource,
        inspector: ProcessInspector,
        on_update: UpdateCallback | None = None,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._repository = repository
        self._pane_source = pane_source
        self._inspector = inspector
        self._on_update = on_update
        self._cache_ttl = (
            settings.PANE_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._clock = clock

        self._mapping: dict[str, str] = {}
        self._mapped_at: float | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    def set_update_callback(self, on_update: UpdateCallback | None) -> None:
        self._on_update = on_update

    def invalidate_cache(self) -> None:
        """Force the next lookup to take a fresh snapshot, e.g. after a spawn."""
        self._mapped_at = None

    def _cache_valid(self) -> bool:
        return self._mapped_at is not None and self._clock() - self._mapped_at < self._cache_ttl

    async def map_all_panes(self, now: datetime | None = None) -> dict[str, str]:
        """Run a mapping cycle unless a recent result is cached.

        Returns:
            Mapping of pane id (``session:window.pane``) to session id.

        Raises:
            SQLAlchemyError: If the store fails; the cache is left untouched.
        """
        if self._cache_valid():
            return dict(self._mapping)

        async with self._lock:
            if self._cache_valid():
                return dict(self._mapping)
            mapping = await self._run_cycle(now)
            self._mapping = mapping
            self._mapped_at = self._clock()
            return dict(mapping)

    async def get_session_for_pane(self, pane_id: str) -> str | None:
        mapping = await self.map_all_panes()
        return mapping.get(pane_id)

    async def get_pane_for_session(self, session_id: str) -> TmuxPane | None:
        mapping = await self.map_all_panes()
        pane_id = next((pid for pid, sid in mapping.items() if sid == session_id), None)
        if pane_id is None:
            return None

        loop = asyncio.get_running_loop()
        panes = await loop.run_in_executor(None, self._pane_source.list_panes)
        return next((pane for pane in panes if pane.pane_id == pane_id), None)

    def _snapshot(self) -> list[PaneSnapshot]:
        """Blocking OS queries for one cycle."""
        snapshots: list[PaneSnapshot] = []
        for pane in self._pane_source.list_panes():
            agent_pid = self._inspector.resolve_agent_process(pane.pid)
            agent_cwd = self._inspector.resolve_cwd(agent_pid) if agent_pid else None
            snapshots.append(PaneSnapshot(pane=pane, agent_pid=agent_pid, agent_cwd=agent_cwd))
        return snapshots

    async def _run_cycle(self, now: datetime | None) -> dict[str, str]:
        loop = asyncio.get_running_loop()
        snapshots = await loop.run_in_executor(None, self._snapshot)
        sessions = await self._repository.get_mapping_candidates()

        by_directory = sessions_by_directory(sessions)
        panes = {snap.pane.pane_id: snap for snap in snapshots}

        mapping: dict[str, str] = {}
        claimed: set[str] = set()
        for snap in snapshots:
            if snap.agent_pid is None or not snap.agent_cwd:
                continue
            candidates = [
                s
                for s in by_directory.get(_normalize_dir(snap.agent_cwd), [])
                if s.session_id not in claimed
            ]
            if not candidates:
                continue
            winner = max(candidates, key=lambda s: s.last_activity)
            mapping[snap.pane.pane_id] = winner.session_id
            claimed.add(winner.session_id)

        for pane_id, session_id in mapping.items():
            await self._write(session_id, Liveness.ALIVE, now, pane=panes[pane_id].pane)

        for session in sessions:
            previous = session.pane_id
            if previous is None or session.session_id in claimed:
                continue
            snap = panes.get(previous)
            if snap is None:
                await self._write(session.session_id, Liveness.DEAD, now, clear_pane=True)
            else:
                await self._write(session.session_id, Liveness.DEAD, now)

        logger.debug(f"Mapped {len(mapping)} of {len(snapshots)} panes")
        return mapping

    async def _write(
        self,
        session_id: str,
        liveness: Liveness,
        now: datetime | None,
        pane: TmuxPane | None = None,
        clear_pane: bool = False,
    ) -> None:
        session, changed = await self._repository.update_live_state(
            session_id, liveness, pane=pane, clear_pane=clear_pane, now=now
        )
        if session is None or not changed:
            return
        logger.info(
            f"Session {session.session_id} is {liveness} "
            f"(pane={session.pane_id or '-'}, status={session.status})"
        )
        if self._on_update is None:
            return
        try:
            await self._on_update(session)
        except Exception:
            logger.exception(f"Session update callback failed for {session.session_id}")

    def start_periodic_mapping(self, interval_seconds: float | None = None) -> None:
        """Map now and then on a fixed interval, in a background task."""
        if self._task is not None and not self._task.done():
            return
        interval = interval_seconds or get_settings().PANE_MAP_INTERVAL_SECONDS
        self._task = asyncio.create_task(self._periodic_loop(interval), name="pane_mapper")
        logger.info(f"Pane mapping started (every {interval}s)")

    async def stop_periodic_mapping(self) -> None:
        """Stop the background task. Safe to call more than once."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Pane mapping stopped")

    async def _periodic_loop(self, interval: float) -> None:
        while True:
            await self._tick()
            await asyncio.sleep(interval)

    async def _tick(self) -> None:
        if self._lock.locked():
            logger.debug("Previous mapping cycle still running, skipping tick")
            return
        try:
            await self.map_all_panes()
        except Exception:
            logger.exception("Pane mapping cycle failed")
