import asyncio
import logging

from fastapi import APIRouter

from sessiondeck.api.deps import MapperDep, TmuxDep
from sessiondeck.models.panes import PaneMapping, SpawnRequest, SpawnResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/panes", tags=["panes"])


@router.get("")
async def list_panes(mapper: MapperDep, tmux: TmuxDep) -> list[PaneMapping]:
    """Live tmux panes with the session mapped to each."""
    mapping = await mapper.map_all_panes()
    loop = asyncio.get_running_loop()
    panes = await loop.run_in_executor(None, tmux.list_panes)
    return [
        PaneMapping(pane_id=pane.pane_id, pane=pane, session_id=mapping.get(pane.pane_id))
        for pane in panes
    ]


@router.post("/spawn")
async def spawn_session(request: SpawnRequest, mapper: MapperDep, tmux: TmuxDep) -> SpawnResult:
    """Start the agent in a new tmux window and drop the cached pane mapping."""
    if not tmux.is_available():
        return SpawnResult(success=False, error="tmux is not installed")

    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(
        None,
        lambda: tmux.spawn_agent_session(
            request.project_path,
            task=request.task,
            resume=request.resume,
            tmux_session=request.tmux_session,
        ),
    )
    if result.success:
        mapper.invalidate_cache()
    else:
        logger.warning(f"Spawn in {request.project_path} failed: {result.error}")
    return result
