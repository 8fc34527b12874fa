"""
Ephemeral room membership for live connections.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class RoomTracker:
    """Tracks which rooms each connection has explicitly joined.

    The private room named after a connection id is implied by the
    transport and is never stored here.
    """

    def __init__(self):
        self._lock = threading.Lock()
        # connection_id -> set of room names
        self._rooms: dict[str, set[str]] = {}

    def join(self, connection_id: str, room: str) -> None:
        """Add a room to a connection's set. Joining twice has no extra effect."""
        with self._lock:
            self._rooms.setdefault(connection_id, set()).add(room)
        logger.debug(f"{connection_id} joined {room}")

    def leave(self, connection_id: str, room: str) -> None:
        """Remove a room from a connection's set if present."""
        with self._lock:
            rooms = self._rooms.get(connection_id)
            if rooms is not None:
                rooms.discard(room)
        logger.debug(f"{connection_id} left {room}")

    def rooms_of(self, connection_id: str) -> set[str]:
        """Get a copy of the rooms a connection is in."""
        with self._lock:
            return set(self._rooms.get(connection_id, ()))

    def connections_in(self, room: str) -> set[str]:
        """Get the connection ids currently joined to a room."""
        with self._lock:
            return {sid for sid, rooms in self._rooms.items() if room in rooms}

    def drop(self, connection_id: str) -> set[str]:
        """Forget a connection and return the rooms it was in."""
        with self._lock:
            rooms = self._rooms.pop(connection_id, set())
        if rooms:
            logger.info(f"Dropped {connection_id} from rooms {sorted(rooms)}")
        return rooms

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._rooms
