from __future__ import annotations

"""Live timer updates over WebSocket: snapshot first, then ticks until terminal."""

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from ctrlsys.errors import NotFoundError, ValidationError
from ctrlsys.events.eventbus_model import TimerEvent
from ctrlsys.interfaces.api.auth import websocket_authorized
from ctrlsys.service.timer_service import TimerService

router = APIRouter(prefix="/api/timers", tags=["WebSocket"])
logger = logging.getLogger(__name__)

CLOSE_NOT_FOUND = 4404


def event_payload(event: TimerEvent) -> Dict[str, Any]:
    """Full timer JSON plus the event that produced it."""
    payload = dict(event.attributes.get("timer", {}))
    payload["event"] = event.event_type.value
    return payload


async def _forward(websocket: WebSocket, svc: TimerService, timer_id: str, push_interval: float) -> None:
    async for event in svc.stream(timer_id, push_interval=push_interval):
        await websocket.send_json(event_payload(event))


async def _close(websocket: WebSocket, code: int, reason: str = "") -> None:
    if WebSocketState.DISCONNECTED not in (websocket.application_state, websocket.client_state):
        await websocket.close(code=code, reason=reason)


async def _drain(websocket: WebSocket) -> None:
    # client messages are ignored; this only notices the disconnect
    while True:
        await websocket.receive_text()


@router.websocket("/{timer_id}/ws")
async def timer_stream(websocket: WebSocket, timer_id: str):
    state = websocket.app.state
    if not websocket_authorized(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    svc = TimerService(state.store_provider.scope, state.hub, retention=state.list_retention)
    manager = state.ws_manager

    await manager.connect(websocket, timer_id)
    try:
        try:
            await svc.get_timer(timer_id)
        except (NotFoundError, ValidationError) as exc:
            await websocket.close(code=CLOSE_NOT_FOUND, reason=exc.message[:120])
            return

        forward = asyncio.create_task(_forward(websocket, svc, timer_id, state.ws_push_interval))
        drain = asyncio.create_task(_drain(websocket))
        done, pending = await asyncio.wait({forward, drain}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if forward in done:
            exc = forward.exception()
            if exc is None:
                await _close(websocket, status.WS_1000_NORMAL_CLOSURE)
            elif isinstance(exc, WebSocketDisconnect):
                logger.info("[WS] client went away timer_id=%s", timer_id)
            else:
                logger.error("[WS] stream failed timer_id=%s: %s", timer_id, exc)
                await _close(websocket, status.WS_1011_INTERNAL_ERROR)
        else:
            # retrieve the disconnect so the task result is consumed
            drain.exception()
            logger.info("[WS] client disconnected timer_id=%s", timer_id)
    finally:
        manager.disconnect(websocket, timer_id)
