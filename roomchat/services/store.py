"""
PostgreSQL storage for message history, room membership and the group catalog.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..config import config
from ..errors import PersistenceError

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS groups (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    room TEXT NOT NULL,
    author TEXT NOT NULL,
    author_id TEXT NOT NULL,
    recipient TEXT,
    recipient_id TEXT,
    content TEXT NOT NULL,
    is_private BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS messages_room_idx ON messages (room);
CREATE INDEX IF NOT EXISTS messages_pair_idx ON messages (author_id, recipient_id);

CREATE TABLE IF NOT EXISTS room_members (
    id BIGSERIAL PRIMARY KEY,
    room TEXT NOT NULL,
    user_id TEXT NOT NULL,
    user_name TEXT NOT NULL,
    joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (room, user_id)
);
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Message:
    """A stored chat or direct message."""

    id: int
    room: str
    author: str
    author_id: str
    content: str
    is_private: bool
    created_at: datetime
    recipient: Optional[str] = None
    recipient_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "room": self.room,
            "author": self.author,
            "author_id": self.author_id,
            "content": self.content,
            "is_private": self.is_private,
            "created_at": _iso(self.created_at),
        }
        if self.recipient:
            data["recipient"] = self.recipient
        if self.recipient_id:
            data["recipient_id"] = self.recipient_id
        return data

    @classmethod
    def from_record(cls, row: Any) -> "Message":
        return cls(
            id=row["id"],
            room=row["room"],
            author=row["author"],
            author_id=row["author_id"],
            content=row["content"],
            is_private=row["is_private"],
            created_at=row["created_at"],
            recipient=row["recipient"],
            recipient_id=row["recipient_id"],
        )


@dataclass
class RoomMember:
    """Durable record that a user has joined a room at some point."""

    id: int
    room: str
    user_id: str
    user_name: str
    joined_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "room": self.room,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "joined_at": _iso(self.joined_at),
        }

    @classmethod
    def from_record(cls, row: Any) -> "RoomMember":
        return cls(
            id=row["id"],
            room=row["room"],
            user_id=row["user_id"],
            user_name=row["user_name"],
            joined_at=row["joined_at"],
        )


@dataclass
class Group:
    """A group catalog entry."""

    id: int
    name: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "created_at": _iso(self.created_at)}

    @classmethod
    def from_record(cls, row: Any) -> "Group":
        return cls(id=row["id"], name=row["name"], created_at=row["created_at"])


class PostgresStore:
    """Durable storage backed by an asyncpg pool.

    Every query failure is logged and re-raised as PersistenceError so
    callers can report it to the originating connection.
    """

    def __init__(self, dsn: Optional[str] = None):
        self._dsn = dsn or config.DATABASE_URL
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """Connect to PostgreSQL and make sure the schema exists."""
        logger.info(f"Connecting to PostgreSQL at {self._dsn}")
        self._pool = await asyncpg.create_pool(
            self._dsn,
            min_size=config.DB_POOL_MIN_SIZE,
            max_size=config.DB_POOL_MAX_SIZE,
        )
        await self.migrate()
        logger.info("Connected to PostgreSQL")

    async def close(self) -> None:
        """Close PostgreSQL connection."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection closed")

    async def migrate(self) -> None:
        """Create missing tables and seed the lobby group."""
        async with self._acquire("migrate schema") as conn:
            await conn.execute(SCHEMA)
            exists = await conn.fetchval(
                "SELECT COUNT(*) FROM groups WHERE name = $1", config.LOBBY_ROOM
            )
            if not exists:
                await conn.execute(
                    "INSERT INTO groups (name) VALUES ($1)", config.LOBBY_ROOM
                )
                logger.info(f"Seeded group {config.LOBBY_ROOM!r}")

    @asynccontextmanager
    async def _acquire(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection; database failures become PersistenceError."""
        if not self._pool:
            logger.error("PostgreSQL pool not initialized")
            raise PersistenceError(f"unable to {action}", code="STORE_UNAVAILABLE")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError(f"unable to {action}") from e

    # ===== Messages =====

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
        """Insert a message and return the stored row."""
        async with self._acquire("save message") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO messages
                    (room, author, author_id, recipient, recipient_id, content, is_private)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                room,
                author,
                author_id,
                recipient,
                recipient_id,
                content,
                is_private,
            )
        return Message.from_record(row)

    async def get_room_messages(self, room: str) -> list[Message]:
        """Public messages of a room, oldest first."""
        async with self._acquire("load messages") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE room = $1 AND is_private = FALSE
                ORDER BY created_at ASC, id ASC
                """,
                room,
            )
        return [Message.from_record(row) for row in rows]

    async def get_private_messages(self, user_id: str, peer_id: str) -> list[Message]:
        """Direct messages exchanged between two users in either direction."""
        async with self._acquire("load messages") as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE is_private = TRUE
                  AND ((author_id = $1 AND recipient_id = $2)
                    OR (author_id = $2 AND recipient_id = $1))
                ORDER BY created_at ASC, id ASC
                """,
                user_id,
                peer_id,
            )
        return [Message.from_record(row) for row in rows]

    # ===== Room membership =====

    async def get_room_member(self, room: str, user_id: str) -> Optional[RoomMember]:
        async with self._acquire("load room member") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM room_members WHERE room = $1 AND user_id = $2",
                room,
                user_id,
            )
        return RoomMember.from_record(row) if row else None

    async def get_room_members(self, room: str) -> list[RoomMember]:
        """Everyone who has ever joined a room."""
        async with self._acquire("load room members") as conn:
            rows = await conn.fetch(
                "SELECT * FROM room_members WHERE room = $1 ORDER BY joined_at ASC, id ASC",
                room,
            )
        return [RoomMember.from_record(row) for row in rows]

    async def create_room_member(
        self, room: str, user_id: str, user_name: str
    ) -> RoomMember:
        async with self._acquire("save room member") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO room_members (room, user_id, user_name)
                VALUES ($1, $2, $3)
                RETURNING *
                """,
                room,
                user_id,
                user_name,
            )
        return RoomMember.from_record(row)

    async def update_room_member_name(self, member_id: int, user_name: str) -> None:
        async with self._acquire("save room member") as conn:
            await conn.execute(
                "UPDATE room_members SET user_name = $1 WHERE id = $2",
                user_name,
                member_id,
            )

    # ===== Groups =====

    async def list_groups(self) -> list[Group]:
        async with self._acquire("load groups") as conn:
            rows = await conn.fetch("SELECT * FROM groups ORDER BY id ASC")
        return [Group.from_record(row) for row in rows]

    async def create_group(self, name: str) -> Group:
        async with self._acquire("create group") as conn:
            row = await conn.fetchrow(
                "INSERT INTO groups (name) VALUES ($1) RETURNING *", name
            )
        logger.info(f"Created group {row['id']} ({name!r})")
        return Group.from_record(row)

