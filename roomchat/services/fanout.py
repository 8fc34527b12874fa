"""
Message fan-out: persist first, then deliver.
"""

import logging
from typing import Optional

import socketio

from ..errors import NotFoundError, ValidationError
from .identity_registry import Identity, IdentityRegistry
from .store import Message

logger = logging.getLogger(__name__)


def direct_room_key(sender_id: str, recipient_id: str) -> str:
    """Room key under which a direct message is stored (sender first)."""
    return f"dm:{sender_id}:{recipient_id}"


class MessageFanout:
    """Stores chat and direct messages and delivers them to connections.

    Delivery only happens after the store accepted the message; a store
    failure propagates as PersistenceError and nothing is sent.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        store,
        identities: IdentityRegistry,
        lobby_room: str,
    ):
        self._sio = sio
        self._store = store
        self._identities = identities
        self._lobby_room = lobby_room

    async def send_to_room(
        self, sender: Identity, room: Optional[str], content: Optional[str]
    ) -> Optional[Message]:
        """
        Store a chat message and broadcast it to everyone joined to the room.

        Returns None without storing anything when the content is blank.
        """
        room = (room or "").strip() or self._lobby_room
        content = (content or "").strip()
        if not content:
            return None

        msg = await self._store.create_message(
            room=room,
            author=sender.display_name,
            author_id=sender.user_id,
            content=content,
            is_private=False,
        )

        await self._sio.emit("chat", msg.to_dict(), room=room)
        logger.debug(f"Message {msg.id} sent to room {room} by {sender.user_id}")
        return msg

    async def send_direct(
        self, sender: Identity, to: Optional[str], content: Optional[str]
    ) -> Optional[Message]:
        """
        Store a direct message, echo it to the sender and deliver it to the
        recipient's private room.

        Raises:
            ValidationError: no recipient given
            NotFoundError: the recipient is not connected
        """
        target_id = (to or "").strip()
        if not target_id:
            raise ValidationError("missing recipient", code="MISSING_RECIPIENT")

        target = self._identities.lookup(target_id)
        if target is None:
            raise NotFoundError("user offline")

        content = (content or "").strip()
        if not content:
            return None

        msg = await self._store.create_message(
            room=direct_room_key(sender.user_id, target.user_id),
            author=sender.display_name,
            author_id=sender.user_id,
            content=content,
            is_private=True,
            recipient=target.display_name,
            recipient_id=target.user_id,
        )

        payload = msg.to_dict()
        await self._sio.emit("private", payload, to=sender.connection_id)
        await self._sio.emit("private", payload, room=target.connection_id)
        logger.debug(
            f"Direct message {msg.id} sent from {sender.user_id} to {target.user_id}"
        )
        return msg
