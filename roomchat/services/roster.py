"""
Room rosters: durable membership merged with live online status.
"""

import logging
from dataclasses import dataclass

import socketio

from ..errors import PersistenceError
from .identity_registry import IdentityRegistry
from .room_tracker import RoomTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterEntry:
    """One user in a room's roster."""

    user_id: str
    display_name: str
    is_online: bool

    def to_dict(self) -> dict:
        return {"id": self.user_id, "name": self.display_name, "is_online": self.is_online}


class RosterBuilder:
    """Answers "who is in this room, and who among them is online"."""

    def __init__(
        self,
        sio: socketio.AsyncServer,
        store,
        identities: IdentityRegistry,
        tracker: RoomTracker,
        lobby_room: str,
    ):
        self._sio = sio
        self._store = store
        self._identities = identities
        self._tracker = tracker
        self._lobby_room = lobby_room

    def online_user_ids(self, room: str) -> set[str]:
        """User ids of identified connections currently joined to a room."""
        user_ids = set()
        for sid in self._tracker.connections_in(room):
            identity = self._identities.lookup(sid)
            if identity:
                user_ids.add(identity.user_id)
        return user_ids

    async def roster(self, room: str) -> list[RosterEntry]:
        """
        Build the roster for a room.

        Every user with a durable membership row is listed, online or not.
        Online connections without a row are left out. A failed read is
        logged and yields an empty roster instead of an error.
        """
        if room == self._lobby_room:
            return []

        try:
            members = await self._store.get_room_members(room)
        except PersistenceError as e:
            logger.error(f"Failed to load roster for room {room}: {e}")
            return []

        online = self.online_user_ids(room)
        return [
            RosterEntry(
                user_id=member.user_id,
                display_name=member.user_name,
                is_online=member.user_id in online,
            )
            for member in members
        ]

    async def broadcast(self, room: str) -> None:
        """Send the current roster to everyone in the room."""
        if room == self._lobby_room:
            return

        members = await self.roster(room)
        await self._sio.emit(
            "room:members",
            {"room": room, "members": [m.to_dict() for m in members]},
            room=room,
        )
        logger.debug(f"Broadcast roster of {len(members)} members to room {room}")
