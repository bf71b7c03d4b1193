from __future__ import annotations

"""FastAPI router for timer management."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ctrlsys.interfaces.api.auth import require_api_token
from ctrlsys.interfaces.api.schemas import TimerCreateRequest, TimerUpdateRequest
from ctrlsys.service.timer_service import TimerService
from ctrlsys.service.timer_view import TimerView

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/timers",
    tags=["Timers"],
    dependencies=[Depends(require_api_token)],
    responses={404: {"description": "Timer not found"}},
)

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_timer_service(request: Request) -> TimerService:
    """Provide TimerService per-request; the store scope and hub live on app.state."""
    state = request.app.state
    return TimerService(state.store_provider.scope, state.hub, retention=state.list_retention)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TimerView,
    status_code=status.HTTP_201_CREATED,
    summary="Create a timer (started immediately unless auto_start is false)",
)
async def create_timer(
    req: TimerCreateRequest,
    svc: TimerService = Depends(get_timer_service),
):
    timer = await svc.create_timer(
        name=req.name,
        duration_seconds=req.duration_seconds,
        labels=req.labels,
        created_by=req.created_by or "api",
        auto_start=req.auto_start,
    )
    return TimerView.from_timer(timer)


@router.get(
    "",
    response_model=List[TimerView],
    summary="List active timers and recently finished ones",
)
async def list_timers(svc: TimerService = Depends(get_timer_service)):
    timers = await svc.list_timers()
    return [TimerView.from_timer(t) for t in timers]


@router.get("/{timer_id}", response_model=TimerView, summary="Get single timer by ID")
async def get_timer(timer_id: str, svc: TimerService = Depends(get_timer_service)):
    return TimerView.from_timer(await svc.get_timer(timer_id))


@router.patch("/{timer_id}", response_model=TimerView, summary="Update labels and/or status")
async def update_timer(
    timer_id: str,
    req: TimerUpdateRequest,
    svc: TimerService = Depends(get_timer_service),
):
    timer = await svc.update_timer(timer_id, status=req.status, labels=req.labels)
    return TimerView.from_timer(timer)


@router.post("/{timer_id}/start", response_model=TimerView, summary="Start a pending timer")
async def start_timer(timer_id: str, svc: TimerService = Depends(get_timer_service)):
    return TimerView.from_timer(await svc.start_timer(timer_id))


@router.delete(
    "/{timer_id}",
    response_model=TimerView,
    summary="Cancel a timer, or delete it physically with ?purge=true",
    responses={204: {"description": "Timer deleted"}},
)
async def cancel_timer(
    timer_id: str,
    purge: bool = Query(False, description="Remove the row instead of cancelling"),
    svc: TimerService = Depends(get_timer_service),
):
    if purge:
        await svc.delete_timer(timer_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return TimerView.from_timer(await svc.cancel_timer(timer_id))
