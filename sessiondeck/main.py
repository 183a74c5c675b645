import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from rich.logging import RichHandler

from sessiondeck.api.routes import panes, sessions
from sessiondeck.api.websocket import manager
from sessiondeck.config import get_settings
from sessiondeck.db.database import get_engine, init_db
from sessiondeck.services.container import AppServices, build_services

logging.basicConfig(
    level=logging.INFO, format="%(message)s", handlers=[RichHandler(rich_tracebacks=True)]
)

logger = logging.getLogger(__name__)

settings = get_settings()


async def start_background_services(services: AppServices) -> None:
    """Catch up on existing transcripts, then follow new writes and map panes."""
    indexed = await services.indexer.index_all_sessions()
    logger.info(f"Startup index complete: {indexed} sessions")
    await services.watcher.start()
    services.mapper.start_periodic_mapping(settings.PANE_MAP_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle."""
    settings.ensure_data_dir()
    await init_db()

    services = build_services(on_update=manager.broadcast_session)
    app.state.services = services
    startup = asyncio.create_task(start_background_services(services), name="startup_index")

    yield

    startup.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await startup
    await services.stop()
    await get_engine().dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router, prefix=f"{settings.API_V1_STR}")
app.include_router(panes.router, prefix=f"{settings.API_V1_STR}")


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await manager.connect(websocket)

    services: AppServices | None = getattr(websocket.app.state, "services", None)
    if services is not None:
        current = await services.repository.list_sessions()
        await manager.send_personal_message(
            {
                "type": "sessions_snapshot",
                "sessions": [s.model_dump(mode="json", by_alias=True) for s in current],
            },
            websocket,
        )

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await manager.disconnect(websocket)
