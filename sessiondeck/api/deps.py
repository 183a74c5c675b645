"""FastAPI dependencies resolving the running instance's services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from sessiondeck.core.pane_mapper import PaneMapper
from sessiondeck.core.session_indexer import SessionIndexer
from sessiondeck.db.repository import SessionRepository
from sessiondeck.services.container import AppServices
from sessiondeck.services.tmux import TmuxClient


def get_services(request: Request) -> AppServices:
    services: AppServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not started")
    return services


ServicesDep = Annotated[AppServices, Depends(get_services)]


def get_repository(services: ServicesDep) -> SessionRepository:
    return services.repository


def get_indexer(services: ServicesDep) -> SessionIndexer:
    return services.indexer


def get_mapper(services: ServicesDep) -> PaneMapper:
    return services.mapper


def get_tmux(services: ServicesDep) -> TmuxClient:
    return services.tmux


RepositoryDep = Annotated[SessionRepository, Depends(get_repository)]
IndexerDep = Annotated[SessionIndexer, Depends(get_indexer)]
MapperDep = Annotated[PaneMapper, Depends(get_mapper)]
TmuxDep = Annotated[TmuxClient, Depends(get_tmux)]
