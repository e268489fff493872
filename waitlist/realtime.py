"""Fan-out of live waitlist counters to connected WebSocket clients."""
from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Any, Dict, List, Mapping, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger("zintle.realtime")

COUNTER_UPDATE = "counter_update"
SPOTS_UPDATE = "spots_update"


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def send_websocket_json(websocket: WebSocket, payload: Dict[str, Any]) -> bool:
    """Send a JSON payload to an open websocket; return whether it was sent."""

    if not _is_open(websocket):
        return False
    try:
        await websocket.send_json(payload)
    except Exception:
        logger.debug("Dropping realtime message for a connection that went away", exc_info=True)
        return False
    return True


class ConnectionRegistry:
    """Tracks open subscriber connections and pushes events to them.

    Delivery is best effort: there is no queue, no retry and no replay for
    clients that connect after an event was published.
    """

    def __init__(self) -> None:
        self._connections: Set[WebSocket] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def add(self, websocket: WebSocket) -> None:
        with self._lock:
            self._connections.add(websocket)

    def discard(self, websocket: WebSocket) -> None:
        with self._lock:
            self._connections.discard(websocket)

    def snapshot(self) -> List[WebSocket]:
        with self._lock:
            return list(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        # Registered before the handshake completes; broadcasts skip it until open.
        self.add(websocket)
        try:
            await websocket.accept()
        except Exception:
            self.discard(websocket)
            raise
        logger.debug("Realtime subscriber connected (%s open)", len(self))

    async def broadcast(self, event_type: str, payload: Mapping[str, Any]) -> int:
        """Send ``{"type": event_type, **payload}`` to every open connection.

        Returns the number of connections the message was written to. Closed
        or not-yet-accepted connections are skipped silently.
        """

        message = {"type": event_type, **payload}
        delivered = 0
        for websocket in self.snapshot():
            if await send_websocket_json(websocket, message):
                delivered += 1
        return delivered

    async def publish_counts(self, total_signups: int, spots_left: int) -> int:
        delivered = await self.broadcast(COUNTER_UPDATE, {"count": total_signups})
        await self.broadcast(SPOTS_UPDATE, {"spots": spots_left})
        return delivered

    async def close_all(self) -> None:
        for websocket in self.snapshot():
            self.discard(websocket)
            if websocket.application_state != WebSocketState.DISCONNECTED:
                with suppress(Exception):
                    await websocket.close()


__all__ = [
    "COUNTER_UPDATE",
    "ConnectionRegistry",
    "SPOTS_UPDATE",
    "send_websocket_json",
]
