"""
Connection, join and leave handlers.
"""

from typing import Any

import socketio

from ..services import get_event_queue, get_lifecycle_controller
from .dispatch import dispatch


def register_connection_handlers(sio: socketio.AsyncServer) -> None:
    """Register connection-related event handlers."""

    @sio.event
    async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
        """Accept every connection; identity is established by the first join."""
        await dispatch("connect", sid)
        return True

    @sio.event
    async def disconnect(sid: str, reason: str | None = None) -> None:
        """Handle socket disconnection after any queued events for it have run."""
        controller = get_lifecycle_controller()
        queue = get_event_queue()

        done = queue.submit(sid, controller.handle, "disconnect", sid, reason)
        await queue.close(sid)
        await done

    @sio.event
    async def join(sid: str, data: Any = None) -> dict[str, Any]:
        """
        Join a room, declaring a display name on the first join.

        Expected data: {"room": "name", "name": "display name"}

        Emits to the caller: joined, users, groups, joined:rooms
        Broadcasts to the room: room:members
        """
        return await dispatch("join", sid, data)

    @sio.event
    async def leave(sid: str, data: Any = None) -> dict[str, Any]:
        """
        Leave a room.

        Expected data: "room name" (or {"room": "room name"})

        Broadcasts to the room: room:members
        """
        return await dispatch("leave", sid, data)
