"""
In-memory registry of connected identities.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from ..errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The display name bound to a live connection."""

    connection_id: str
    display_name: str

    @property
    def user_id(self) -> str:
        # Identities are keyed by connection; the connection id is the user id.
        return self.connection_id

    def to_dict(self) -> dict:
        return {"id": self.user_id, "name": self.display_name}


class IdentityRegistry:
    """Maps connection ids to identities and keeps display names unique."""

    def __init__(self):
        self._lock = threading.Lock()
        # connection_id -> Identity
        self._identities: dict[str, Identity] = {}

    def register(self, connection_id: str, requested_name: str) -> Identity:
        """
        Bind a display name to a connection.

        Names are compared case-insensitively against every live identity.
        The check and the insert happen under one lock, so of two concurrent
        registrations for the same name exactly one succeeds.

        Raises:
            ValidationError: the name is blank after trimming
            ConflictError: another connection already holds the name
        """
        name = (requested_name or "").strip()
        if not name:
            raise ValidationError("display name required", code="MISSING_NAME")

        folded = name.casefold()
        with self._lock:
            for identity in self._identities.values():
                if identity.connection_id == connection_id:
                    continue
                if identity.display_name.casefold() == folded:
                    raise ConflictError("name already in use")

            identity = Identity(connection_id=connection_id, display_name=name)
            self._identities[connection_id] = identity

        logger.info(f"Registered {connection_id} as {name!r}")
        return identity

    def lookup(self, connection_id: str) -> Optional[Identity]:
        """Get the identity for a connection, if it has one."""
        with self._lock:
            return self._identities.get(connection_id)

    def remove(self, connection_id: str) -> Optional[Identity]:
        """Remove a connection's identity. Unknown ids are ignored."""
        with self._lock:
            identity = self._identities.pop(connection_id, None)
        if identity:
            logger.info(f"Removed identity {identity.display_name!r} ({connection_id})")
        return identity

    def list(self) -> list[Identity]:
        """Snapshot of all live identities."""
        with self._lock:
            return list(self._identities.values())

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._identities

    def __len__(self) -> int:
        with self._lock:
            return len(self._identities)
