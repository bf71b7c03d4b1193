import logging
from typing import Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks live timer-stream WebSockets, grouped by timer id."""

    def __init__(self):
        self.timer_connections: Dict[str, Set[WebSocket]] = {}

    @property
    def active_count(self) -> int:
        return sum(len(conns) for conns in self.timer_connections.values())

    def watchers(self, timer_id: str) -> int:
        return len(self.timer_connections.get(timer_id, ()))

    async def connect(self, websocket: WebSocket, timer_id: str) -> None:
        await websocket.accept()
        self.timer_connections.setdefault(timer_id, set()).add(websocket)
        logger.info("[WS] stream opened timer_id=%s (watchers=%s)", timer_id, self.watchers(timer_id))

    def disconnect(self, websocket: WebSocket, timer_id: str) -> None:
        conns = self.timer_connections.get(timer_id)
        if not conns or websocket not in conns:
            return
        conns.discard(websocket)
        if not conns:
            del self.timer_connections[timer_id]
        logger.info("[WS] stream closed timer_id=%s (watchers=%s)", timer_id, self.watchers(timer_id))
