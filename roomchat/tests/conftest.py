"""
Pytest fixtures for chat server tests.

No database is needed: services run against an in-memory store and, for the
unit tests, a fake Socket.IO server that records every emit.
"""

import itertools
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
import socketio
from aiohttp import web
from aiohttp.test_utils import TestServer

from roomchat.app import create_app
from roomchat.errors import PersistenceError
from roomchat.services.fanout import MessageFanout
from roomchat.services.identity_registry import IdentityRegistry
from roomchat.services.lifecycle import LifecycleController
from roomchat.services.room_tracker import RoomTracker
from roomchat.services.roster import RosterBuilder
from roomchat.services.store import Group, Message, RoomMember

LOBBY = "general"


class InMemoryStore:
    """Store with the same interface as PostgresStore, kept in lists.

    Add an operation name to ``failing`` to make it raise PersistenceError.
    """

    def __init__(self):
        self.messages: list[Message] = []
        self.members: list[RoomMember] = []
        self.groups: list[Group] = [Group(id=1, name=LOBBY, created_at=self._now())]
        self.failing: set[str] = set()
        self._ids = itertools.count(1)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise PersistenceError(f"unable to {operation}")

    async def create_message(
        self,
        room: str,
        author: str,
        author_id: str,
        content: str,
        is_private: bool = False,
        recipient: Optional[str] = None,
        recipient_id: Optional[str] = None,
    ) -> Message:
        self._check("create_message")
        msg = Message(
            id=next(self._ids),
            room=room,
            author=author,
            author_id=author_id,
            content=content,
            is_private=is_private,
            created_at=self._now(),
            recipient=recipient,
            recipient_id=recipient_id,
        )
        self.messages.append(msg)
        return msg

    async def get_room_messages(self, room: str) -> list[Message]:
        self._check("get_room_messages")
        return [m for m in self.messages if m.room == room and not m.is_private]

    async def get_private_messages(self, user_id: str, peer_id: str) -> list[Message]:
        self._check("get_private_messages")
        pair = {(user_id, peer_id), (peer_id, user_id)}
        return [
            m for m in self.messages
            if m.is_private and (m.author_id, m.recipient_id) in pair
        ]

    async def get_room_member(self, room: str, user_id: str) -> Optional[RoomMember]:
        self._check("get_room_member")
        for member in self.members:
            if member.room == room and member.user_id == user_id:
                return member
        return None

    async def get_room_members(self, room: str) -> list[RoomMember]:
        self._check("get_room_members")
        return [m for m in self.members if m.room == room]

    async def create_room_member(
        self, room: str, user_id: str, user_name: str
    ) -> RoomMember:
        self._check("create_room_member")
        member = RoomMember(
            id=next(self._ids),
            room=room,
            user_id=user_id,
            user_name=user_name,
            joined_at=self._now(),
        )
        self.members.append(member)
        return member

    async def update_room_member_name(self, member_id: int, user_name: str) -> None:
        self._check("update_room_member_name")
        for member in self.members:
            if member.id == member_id:
                member.user_name = user_name

    async def list_groups(self) -> list[Group]:
        self._check("list_groups")
        return list(self.groups)

    async def create_group(self, name: str) -> Group:
        self._check("create_group")
        group = Group(id=len(self.groups) + 1, name=name, created_at=self._now())
        self.groups.append(group)
        return group


class FakeSio:
    """Records emits and room changes the way socketio.AsyncServer applies them."""

    def __init__(self):
        self.emitted: list[dict] = []
        self.rooms: dict[str, set[str]] = {}

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        self.emitted.append(
            {"event": event, "data": data, "to": to if to is not None else room}
        )

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(sid, set()).add(room)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(sid, set()).discard(room)

    def connect(self, sid: str) -> None:
        # Socket.IO puts every connection in a room named after its sid
        self.rooms.setdefault(sid, set()).add(sid)

    def received(self, sid: str, event: str) -> list:
        """Payloads of ``event`` that a connection would have received."""
        rooms = self.rooms.get(sid, {sid})
        return [
            e["data"]
            for e in self.emitted
            if e["event"] == event and (e["to"] is None or e["to"] in rooms or e["to"] == sid)
        ]

    def events_for(self, target) -> list[str]:
        return [e["event"] for e in self.emitted if e["to"] == target]

    def clear(self) -> None:
        self.emitted.clear()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sio() -> FakeSio:
    return FakeSio()


@pytest.fixture
def identities() -> IdentityRegistry:
    return IdentityRegistry()


@pytest.fixture
def tracker() -> RoomTracker:
    return RoomTracker()


@pytest.fixture
def roster(sio, store, identities, tracker) -> RosterBuilder:
    return RosterBuilder(sio, store, identities, tracker, LOBBY)


@pytest.fixture
def fanout(sio, store, identities) -> MessageFanout:
    return MessageFanout(sio, store, identities, LOBBY)


@pytest.fixture
def controller(sio, store, identities, tracker, roster, fanout) -> LifecycleController:
    return LifecycleController(sio, store, identities, tracker, roster, fanout, LOBBY)


# ===== End-to-end fixtures =====


@pytest_asyncio.fixture
async def app(store: InMemoryStore) -> web.Application:
    """Create the test application on top of the in-memory store."""
    return create_app(store=store)


@pytest_asyncio.fixture
async def test_server(app: web.Application) -> AsyncGenerator[TestServer, None]:
    """Create a test server."""
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def make_client(test_server: TestServer):
    """Factory for connected Socket.IO clients, disconnected after the test."""
    clients = []
    url = f"http://{test_server.host}:{test_server.port}"

    async def _make(collector: "EventCollector" = None) -> socketio.AsyncClient:
        client = socketio.AsyncClient()
        if collector is not None:
            collector.attach(client)
        await client.connect(url)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        if client.connected:
            await client.disconnect()


class EventCollector:
    """Helper class to collect Socket.IO events."""

    EVENTS = (
        "joined",
        "users",
        "groups",
        "joined:rooms",
        "room:members",
        "chat",
        "private",
        "error",
        "group:created",
    )

    def __init__(self):
        self.events: dict[str, list] = {}

    def handler(self, event_name: str):
        """Create a handler for a specific event."""
        if event_name not in self.events:
            self.events[event_name] = []

        async def _handler(data):
            self.events[event_name].append(data)

        return _handler

    def attach(self, client: socketio.AsyncClient) -> None:
        for event_name in self.EVENTS:
            client.on(event_name, self.handler(event_name))

    def get(self, event_name: str) -> list:
        """Get collected events for a specific event type."""
        return self.events.get(event_name, [])

    def clear(self):
        """Clear all collected events."""
        for events in self.events.values():
            events.clear()
