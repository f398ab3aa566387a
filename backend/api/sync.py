from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from api.errors import service_errors
from auth.utils import get_current_user_id
from services.sync_gateway import SyncGateway

router = APIRouter(prefix="/sync", tags=["sync"])


def get_sync_gateway(request: Request) -> SyncGateway:
    return request.app.state.sync_gateway


@router.post("/push")
def push_changes(
    payload: Any = Body(...),
    user_id: int = Depends(get_current_user_id),
    gateway: SyncGateway = Depends(get_sync_gateway),
):
    with service_errors():
        result = gateway.push(user_id, payload)
    return result.to_dict()


@router.get("/pull")
def pull_changes(
    since: Optional[str] = Query(default=None),
    user_id: int = Depends(get_current_user_id),
    gateway: SyncGateway = Depends(get_sync_gateway),
):
    with service_errors():
        result = gateway.pull(user_id, since)
    return result.to_dict()
