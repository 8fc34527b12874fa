"""
Socket.IO event handlers.
"""

import socketio

from .connection import register_connection_handlers
from .messages import register_message_handlers


def register_handlers(sio: socketio.AsyncServer) -> None:
    """Register all Socket.IO event handlers."""
    register_connection_handlers(sio)
    register_message_handlers(sio)
