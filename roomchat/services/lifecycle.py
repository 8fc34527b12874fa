"""
Connection lifecycle: the state machine behind every Socket.IO event.
"""

import logging
from enum import Enum
from typing import Any, Optional

import socketio

from ..errors import ChatError, DisconnectedError, PersistenceError, ValidationError
from .fanout import MessageFanout
from .identity_registry import Identity, IdentityRegistry
from .room_tracker import RoomTracker
from .roster import RosterBuilder

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    CONNECTED = "connected"  # no identity yet
    IDENTIFIED = "identified"  # display name registered
    DISCONNECTED = "disconnected"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _payload(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("malformed payload")
    return data


class LifecycleController:
    """Drives connect -> join -> chat/private/leave -> disconnect.

    Every operation returns an acknowledgement dict. Errors are reported to
    the originating connection as an ``error`` event and never close it.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        store,
        identities: IdentityRegistry,
        tracker: RoomTracker,
        roster: RosterBuilder,
        fanout: MessageFanout,
        lobby_room: str,
    ):
        self._sio = sio
        self._store = store
        self._identities = identities
        self._tracker = tracker
        self._roster = roster
        self._fanout = fanout
        self._lobby_room = lobby_room
        self._states: dict[str, ConnectionState] = {}
        self._operations = {
            "connect": self.connect,
            "join": self.join,
            "chat": self.chat,
            "private": self.private,
            "leave": self.leave,
            "disconnect": self.disconnect,
        }

    def state_of(self, sid: str) -> ConnectionState:
        return self._states.get(sid, ConnectionState.DISCONNECTED)

    async def handle(self, event: str, sid: str, *args: Any) -> dict[str, Any]:
        """Run one inbound event and turn any failure into an error report."""
        operation = self._operations[event]

        # Disconnected is terminal: late events for a closed sid change nothing
        if self._states.get(sid) is ConnectionState.DISCONNECTED:
            logger.warning(f"{event} from {sid} dropped: connection already closed")
            return {"status": "error", **DisconnectedError("connection closed").to_dict()}

        if event != "disconnect":
            self._states.setdefault(sid, ConnectionState.CONNECTED)

        try:
            return await operation(sid, *args)
        except ChatError as e:
            logger.warning(f"{event} from {sid} rejected: {e.message} ({e.code})")
            return await self._report(sid, e)
        except Exception as e:
            logger.exception(f"Unexpected error handling {event} from {sid}: {e}")
            return await self._report(sid, ChatError("internal error", code="INTERNAL_ERROR"))

    # ===== Events =====

    async def connect(self, sid: str) -> dict[str, Any]:
        self._states[sid] = ConnectionState.CONNECTED
        logger.info(f"Socket connected: {sid}")
        return {"status": "connected"}

    async def join(self, sid: str, data: Any = None) -> dict[str, Any]:
        """
        Join a room, registering the display name on the first join.

        Expected data: {"room": "name", "name": "display name"}
        A blank room joins the lobby. Once identified, the name is ignored.
        If a later step fails unexpectedly, the registration and the room
        entry made by this call are undone before the error is reported.
        """
        data = _payload(data)
        room = _text(data.get("room")) or self._lobby_room

        identity = self._identities.lookup(sid)
        registered = identity is None
        if registered:
            identity = self._identities.register(sid, _text(data.get("name")))
            self._states[sid] = ConnectionState.IDENTIFIED
        already_in_room = room in self._tracker.rooms_of(sid)

        try:
            if registered:
                await self._broadcast_users()

            await self._sio.enter_room(sid, room)
            self._tracker.join(sid, room)

            if room != self._lobby_room:
                await self._record_membership(room, identity)

            logger.info(f"Socket {sid} joined room {room}")

            joined = {"room": room, "name": identity.display_name, "userId": identity.user_id}
            await self._sio.emit("joined", joined, to=sid)
            await self._sio.emit("users", self._user_list(), to=sid)

            groups = await self._load_groups()
            if groups is not None:
                await self._sio.emit("groups", groups, to=sid)

            await self._sio.emit("joined:rooms", self.joined_rooms(sid), to=sid)
            await self._roster.broadcast(room)
        except Exception:
            await self._undo_join(sid, room, registered, already_in_room)
            raise

        return {"status": "joined", **joined}

    async def chat(self, sid: str, data: Any = None) -> dict[str, Any]:
        """
        Send a message to a room.

        Expected data: {"room": "name", "content": "message text"}
        """
        identity = self._require_identity(sid)
        data = _payload(data)

        msg = await self._fanout.send_to_room(
            identity, _text(data.get("room")), _text(data.get("content"))
        )
        if msg is None:
            return {"status": "ignored"}
        return {"status": "sent", "messageId": msg.id}

    async def private(self, sid: str, data: Any = None) -> dict[str, Any]:
        """
        Send a direct message to another connected user.

        Expected data: {"to": "recipient user id", "content": "message text"}
        """
        identity = self._require_identity(sid)
        data = _payload(data)

        msg = await self._fanout.send_direct(
            identity, _text(data.get("to")), _text(data.get("content"))
        )
        if msg is None:
            return {"status": "ignored"}
        return {"status": "sent", "messageId": msg.id}

    async def leave(self, sid: str, data: Any = None) -> dict[str, Any]:
        """
        Leave a room.

        Expected data: "room name" or {"room": "room name"}
        """
        if isinstance(data, str):
            room = data.strip()
        else:
            room = _text(_payload(data).get("room"))

        # The private room is the delivery address for direct messages
        if not room or room == sid:
            return {"status": "ignored"}

        await self._sio.leave_room(sid, room)
        self._tracker.leave(sid, room)
        logger.info(f"Socket {sid} left room {room}")

        await self._roster.broadcast(room)
        return {"status": "left", "room": room}

    async def disconnect(self, sid: str, reason: Optional[str] = None) -> dict[str, Any]:
        """Forget the connection and tell everyone who is still around."""
        logger.info(f"Socket disconnected {sid}: {reason}")

        rooms = self._tracker.drop(sid)
        self._identities.remove(sid)
        # Kept as a tombstone; Socket.IO never reuses a sid
        self._states[sid] = ConnectionState.DISCONNECTED

        await self._broadcast_users()
        for room in sorted(rooms):
            if room != sid:
                await self._roster.broadcast(room)

        return {"status": "disconnected"}

    # ===== Helpers =====

    def joined_rooms(self, sid: str) -> list[str]:
        """Rooms the connection joined explicitly, without its private room."""
        return sorted(room for room in self._tracker.rooms_of(sid) if room != sid)

    def _require_identity(self, sid: str) -> Identity:
        identity = self._identities.lookup(sid)
        if identity is None:
            raise ValidationError("join a room first", code="NOT_IDENTIFIED")
        return identity

    def _user_list(self) -> list[dict]:
        return [identity.to_dict() for identity in self._identities.list()]

    async def _broadcast_users(self) -> None:
        await self._sio.emit("users", self._user_list())

    async def _record_membership(self, room: str, identity: Identity) -> None:
        """Create the durable membership row, or refresh its display name."""
        try:
            member = await self._store.get_room_member(room, identity.user_id)
            if member is None:
                await self._store.create_room_member(
                    room, identity.user_id, identity.display_name
                )
            elif member.user_name != identity.display_name:
                await self._store.update_room_member_name(member.id, identity.display_name)
        except PersistenceError as e:
            # The join still succeeds; the roster just won't list this user.
            logger.error(
                f"Failed to save membership of {identity.user_id} in room {room}: {e}"
            )

    async def _load_groups(self) -> Optional[list[dict]]:
        try:
            groups = await self._store.list_groups()
        except PersistenceError as e:
            logger.error(f"Failed to load groups: {e}")
            return None
        return [group.to_dict() for group in groups]

    async def _undo_join(
        self, sid: str, room: str, registered: bool, already_in_room: bool
    ) -> None:
        """Roll back the presence changes of a join that failed part way."""
        if not already_in_room:
            self._tracker.leave(sid, room)
        if registered:
            self._identities.remove(sid)
            self._states[sid] = ConnectionState.CONNECTED
        logger.warning(f"Rolled back join of {sid} to room {room}")

        if not already_in_room:
            await self._sio.leave_room(sid, room)
        if registered:
            await self._broadcast_users()

    async def _report(self, sid: str, error: ChatError) -> dict[str, Any]:
        await self._sio.emit("error", error.to_dict(), to=sid)
        return {"status": "error", **error.to_dict()}
