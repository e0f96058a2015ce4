"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.services.sync_engine import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    return request.app.state.engine


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.ws_manager


EngineDep = Annotated[SyncEngine, Depends(get_engine)]
ManagerDep = Annotated[ConnectionManager, Depends(get_manager)]
