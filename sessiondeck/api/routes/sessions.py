import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from sessiondeck.api.deps import IndexerDep, MapperDep, RepositoryDep, TmuxDep
from sessiondeck.api.websocket import manager
from sessiondeck.core.pane_mapper import PaneMapper
from sessiondeck.models.panes import SendKeysRequest, TmuxPane
from sessiondeck.models.sessions import (
    ProjectInfo,
    Session,
    SessionAnnotations,
    SessionEvent,
    SessionFilters,
    SessionStats,
    SessionStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("")
async def list_sessions(
    repository: RepositoryDep,
    status: SessionStatus | None = None,
    project: str | None = None,
    show_all: Annotated[bool, Query(alias="all")] = False,
    days: Annotated[int | None, Query(ge=1)] = None,
    limit: Annotated[int, Query(ge=0)] = 0,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[Session]:
    """List sessions.

    Without ``status`` or ``all`` only active sessions and sessions active
    within the last ``days`` days are returned, active ones first.
    """
    filters = SessionFilters(
        status=status,
        project_path=project,
        show_all=show_all,
        max_age_days=days,
        limit=limit,
        offset=offset,
    )
    try:
        return await repository.list_sessions(filters)
    except SQLAlchemyError as e:
        logger.exception(f"Error in list_sessions: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/search")
async def search_sessions(
    repository: RepositoryDep, q: Annotated[str, Query(min_length=1)]
) -> list[Session]:
    try:
        return await repository.search_sessions(q)
    except SQLAlchemyError as e:
        logger.exception(f"Error in search_sessions: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/stats")
async def get_stats(repository: RepositoryDep) -> SessionStats:
    return await repository.get_stats()


@router.get("/projects")
async def get_projects(repository: RepositoryDep) -> list[ProjectInfo]:
    return await repository.get_distinct_projects()


@router.post("/reindex")
async def reindex_all(indexer: IndexerDep) -> dict[str, int]:
    """Index every transcript under the projects directory."""
    indexed = await indexer.index_all_sessions()
    return {"indexed": indexed}


@router.get("/{session_id}")
async def get_session(session_id: str, repository: RepositoryDep) -> Session:
    session = await repository.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("/{session_id}/events")
async def get_session_events(
    session_id: str,
    repository: RepositoryDep,
    after: Annotated[int | None, Query(ge=0)] = None,
) -> list[SessionEvent]:
    """Events of a session, optionally only those with an id greater than ``after``."""
    if await repository.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return await repository.get_session_events(session_id, after)


@router.patch("/{session_id}")
async def update_session(
    session_id: str, annotations: SessionAnnotations, repository: RepositoryDep
) -> Session:
    """Set the user-owned name, tags and ledger link of a session."""
    session = await repository.update_session_annotations(session_id, annotations)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    await manager.broadcast_session(session)
    return session


@router.delete("/{session_id}")
async def delete_session(session_id: str, repository: RepositoryDep) -> dict[str, str]:
    """Delete a session, its events and its search entry.

    The transcript file is left alone, so the session comes back the next
    time the agent writes to it or a full reindex runs.

    Raises:
        HTTPException: If the session is not found or deletion fails.
    """
    try:
        deleted = await repository.delete_session(session_id)
    except SQLAlchemyError as e:
        logger.exception(f"Error deleting session {session_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")

    await manager.broadcast_session_deleted(session_id)
    return {"status": "success", "message": f"Session {session_id} deleted"}


async def _pane_or_404(session_id: str, mapper: PaneMapper) -> TmuxPane:
    pane = await mapper.get_pane_for_session(session_id)
    if pane is None:
        raise HTTPException(status_code=404, detail="Session is not running in a tmux pane")
    return pane


@router.post("/{session_id}/focus")
async def focus_session(session_id: str, mapper: MapperDep, tmux: TmuxDep) -> TmuxPane:
    """Select the tmux window and pane the session is running in."""
    pane = await _pane_or_404(session_id, mapper)
    loop = asyncio.get_running_loop()
    if not await loop.run_in_executor(None, tmux.focus_pane, pane):
        raise HTTPException(status_code=502, detail="tmux select-pane failed")
    return pane


@router.post("/{session_id}/send")
async def send_to_session(
    session_id: str, request: SendKeysRequest, mapper: MapperDep, tmux: TmuxDep
) -> TmuxPane:
    """Type text into the session's pane followed by Enter."""
    pane = await _pane_or_404(session_id, mapper)
    loop = asyncio.get_running_loop()
    if not await loop.run_in_executor(None, tmux.send_to_pane, pane, request.text):
        raise HTTPException(status_code=502, detail="tmux send-keys failed")
    return pane
