"""
Error types reported back to the originating connection.

Every error carries a machine readable ``code`` and a human readable
``message``; handlers turn them into ``error`` events and error acks.
"""


class ChatError(Exception):
    """Base class for errors scoped to a single connection."""

    code = "ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class ValidationError(ChatError):
    """Missing or malformed input (empty name, empty recipient, bad payload)."""

    code = "INVALID_PAYLOAD"


class ConflictError(ChatError):
    """The requested display name is already held by a live connection."""

    code = "NAME_TAKEN"


class NotFoundError(ChatError):
    """The direct-message recipient is not currently connected."""

    code = "RECIPIENT_OFFLINE"


class PersistenceError(ChatError):
    """A durable read or write failed."""

    code = "PERSISTENCE_FAILED"


class DisconnectedError(ChatError):
    """The connection has already disconnected; its events are dropped."""

    code = "DISCONNECTED"
