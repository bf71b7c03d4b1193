from __future__ import annotations

"""Status RPC surface of a standalone timer job (HTTP + WebSocket)."""

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from ctrlsys.domain.timer_state import JobState
from ctrlsys.errors import BadRequestError, NotFoundError
from ctrlsys.events.broadcast_hub import BroadcastHub
from ctrlsys.events.eventbus_model import TimerEventType
from ctrlsys.interfaces.api.errors import register_error_handlers
from ctrlsys.job.status import StatusCell

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rpc", tags=["Timer job"])

CLOSE_INVALID_ARGUMENT = 4400
CLOSE_NOT_FOUND = 4404


class CheckStatusRequest(BaseModel):
    timer_id: str = ""


class CheckStatusResponse(BaseModel):
    timer_id: str
    metadata: Dict[str, Any]
    state: str
    elapsed_seconds: int
    remaining_seconds: int
    error_message: Optional[str] = None


def resolve_timer_id(requested: Optional[str], own_id: str) -> str:
    """A job only answers for its own timer."""
    if requested is None or not requested.strip():
        raise BadRequestError("Timer ID cannot be empty")
    if requested.strip() != own_id:
        raise NotFoundError(f"Timer {requested} not found")
    return own_id


@router.post("/check-status", response_model=CheckStatusResponse)
async def check_status(req: CheckStatusRequest, request: Request):
    cell: StatusCell = request.app.state.status_cell
    async with cell.read() as job:
        resolve_timer_id(req.timer_id, job.timer_id)
        body = job.to_dict()
    return CheckStatusResponse(**body)


@router.websocket("/stream-status")
async def stream_status(websocket: WebSocket, timer_id: Optional[str] = Query(None)):
    cell: StatusCell = websocket.app.state.status_cell
    hub: BroadcastHub = websocket.app.state.hub

    async with cell.read() as job:
        own_id = job.timer_id
    try:
        resolve_timer_id(timer_id, own_id)
    except (BadRequestError, NotFoundError) as exc:
        await websocket.accept()
        code = CLOSE_INVALID_ARGUMENT if isinstance(exc, BadRequestError) else CLOSE_NOT_FOUND
        await websocket.close(code=code, reason=exc.message[:120])
        return

    await websocket.accept()
    logger.info("[TimerJob] status stream opened timer_id=%s", own_id)

    async def forward() -> None:
        # subscribe before the snapshot so no update falls in between
        with hub.subscribe() as sub:
            async with cell.read() as job:
                snapshot = job.to_event(TimerEventType.Snapshot)
            await websocket.send_json(snapshot.model_dump(mode="json"))
            if JobState(snapshot.status).is_terminal:
                return
            async for event in sub:
                if event.timer_id != own_id:
                    continue
                await websocket.send_json(event.model_dump(mode="json"))
                if event.event_type in (TimerEventType.Completed, TimerEventType.Failed):
                    return

    async def drain() -> None:
        while True:
            await websocket.receive_text()

    forward_task = asyncio.create_task(forward())
    drain_task = asyncio.create_task(drain())
    done, pending = await asyncio.wait({forward_task, drain_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            logger.error("[TimerJob] status stream failed timer_id=%s: %s", own_id, exc)

    if forward_task in done and WebSocketState.DISCONNECTED not in (
        websocket.application_state,
        websocket.client_state,
    ):
        await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
    logger.info("[TimerJob] status stream closed timer_id=%s", own_id)


def create_job_app(cell: StatusCell, hub: BroadcastHub) -> FastAPI:
    app = FastAPI(title="ctrlsys timer job", description="Standalone timer status surface")
    app.state.status_cell = cell
    app.state.hub = hub
    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health():
        async with cell.read() as job:
            return {"status": "healthy", "timer_id": job.timer_id, "state": job.state.value}

    return app
