"""In-process WebSocket fan-out for live client updates.

Pushes are fire-and-forget: a message addressed to a user with no open
socket is dropped, and nothing is persisted or replayed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from .database import on_commit

logger = logging.getLogger("uvicorn.error")


@dataclass(eq=False)
class Connection:
    id: int
    user_id: str | None
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)


class PushHub:
    """Tracks open sockets and routes messages to all of them or to one user."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[int, Connection] = {}
        self._ids = itertools.count(1)

    def connect(self, user_id: str | None) -> Connection:
        connection = Connection(
            id=next(self._ids),
            user_id=user_id,
            loop=asyncio.get_running_loop(),
        )
        with self._lock:
            self._connections[connection.id] = connection
        return connection

    def disconnect(self, connection: Connection) -> None:
        with self._lock:
            self._connections.pop(connection.id, None)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def emit_to_all(self, event_name: str, payload: Any = None) -> int:
        with self._lock:
            targets = list(self._connections.values())
        return self._deliver(targets, event_name, payload)

    def emit_to_user(self, user_id: str, event_name: str, payload: Any = None) -> int:
        with self._lock:
            targets = [c for c in self._connections.values() if c.user_id == user_id]
        return self._deliver(targets, event_name, payload)

    def _deliver(
        self, targets: list[Connection], event_name: str, payload: Any
    ) -> int:
        message = {"event": event_name, "payload": jsonable_encoder(payload)}
        delivered = 0
        for connection in targets:
            try:
                connection.loop.call_soon_threadsafe(
                    connection.queue.put_nowait, message
                )
            except RuntimeError:
                # Loop already closed; the socket is gone.
                self.disconnect(connection)
                continue
            delivered += 1
        logger.debug("Pushed %s to %d socket(s)", event_name, delivered)
        return delivered

    async def pump(self, websocket: WebSocket, connection: Connection) -> None:
        """Forward queued messages to ``websocket`` until the client goes away."""
        receiver = asyncio.ensure_future(websocket.receive_text())
        try:
            while True:
                sender = asyncio.ensure_future(connection.queue.get())
                done, _ = await asyncio.wait(
                    {receiver, sender}, return_when=asyncio.FIRST_COMPLETED
                )
                if sender in done:
                    await websocket.send_json(sender.result())
                else:
                    sender.cancel()
                if receiver in done:
                    try:
                        receiver.result()
                    except WebSocketDisconnect:
                        return
                    # Client messages are keep-alives; nothing to route.
                    receiver = asyncio.ensure_future(websocket.receive_text())
        finally:
            receiver.cancel()


push_hub = PushHub()


def push_to_all(session: Session, event_name: str, payload: Any = None) -> None:
    """Broadcast once ``session`` commits."""
    on_commit(session, lambda: push_hub.emit_to_all(event_name, payload))


def push_to_user(
    session: Session, user_id: str, event_name: str, payload: Any = None
) -> None:
    """Send to one user's sockets once ``session`` commits."""
    on_commit(session, lambda: push_hub.emit_to_user(user_id, event_name, payload))
