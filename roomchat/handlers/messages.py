"""
Message handling for room chat and direct messages.
"""

from typing import Any

import socketio

from .dispatch import dispatch


def register_message_handlers(sio: socketio.AsyncServer) -> None:
    """Register message-related event handlers."""

    @sio.event
    async def chat(sid: str, data: Any = None) -> dict[str, Any]:
        """
        Handle sending a message to a room.

        Expected data: {"room": "name", "content": "message text"}

        Broadcasts to the room: {
            "id": 1,
            "room": "name",
            "author": "display name",
            "author_id": "user id",
            "content": "message text",
            "is_private": false,
            "created_at": "ISO8601"
        }
        """
        return await dispatch("chat", sid, data)

    @sio.event
    async def private(sid: str, data: Any = None) -> dict[str, Any]:
        """
        Handle sending a direct message.

        Expected data: {"to": "recipient user id", "content": "message text"}

        Emits "private" to the sender and to the recipient, with the same
        shape as "chat" plus "recipient" and "recipient_id".
        """
        return await dispatch("private", sid, data)
