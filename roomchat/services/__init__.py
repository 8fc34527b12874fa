"""
Service layer for the chat server.
"""

import logging

from aiohttp import web

from ..config import config
from .event_queue import ConnectionEventQueue
from .fanout import MessageFanout
from .identity_registry import IdentityRegistry
from .lifecycle import LifecycleController
from .room_tracker import RoomTracker
from .roster import RosterBuilder
from .store import PostgresStore

logger = logging.getLogger(__name__)

# Global service instances
store = None
identity_registry: IdentityRegistry = None
room_tracker: RoomTracker = None
roster_builder: RosterBuilder = None
message_fanout: MessageFanout = None
lifecycle_controller: LifecycleController = None
event_queue: ConnectionEventQueue = None
_owns_store = False  # True when the store was opened here and must be closed here


async def initialize_services(app: web.Application) -> None:
    """Initialize all services on application startup."""
    global store, identity_registry, room_tracker, roster_builder
    global message_fanout, lifecycle_controller, event_queue, _owns_store

    logger.info("Initializing services...")

    sio = app["sio"]

    # A store handed to create_app() is used as is
    store = app.get("store")
    _owns_store = store is None
    if _owns_store:
        store = PostgresStore()
        await store.connect()

    identity_registry = IdentityRegistry()
    room_tracker = RoomTracker()
    roster_builder = RosterBuilder(
        sio, store, identity_registry, room_tracker, config.LOBBY_ROOM
    )
    message_fanout = MessageFanout(sio, store, identity_registry, config.LOBBY_ROOM)
    lifecycle_controller = LifecycleController(
        sio,
        store,
        identity_registry,
        room_tracker,
        roster_builder,
        message_fanout,
        config.LOBBY_ROOM,
    )
    event_queue = ConnectionEventQueue()

    # Store services in app for access
    app["store"] = store
    app["identity_registry"] = identity_registry
    app["room_tracker"] = room_tracker
    app["lifecycle_controller"] = lifecycle_controller

    # Register cleanup on shutdown
    app.on_cleanup.append(cleanup_services)

    logger.info("Services initialized successfully")


async def cleanup_services(app: web.Application) -> None:
    """Cleanup services on application shutdown."""
    logger.info("Cleaning up services...")

    if event_queue:
        await event_queue.close_all()
    if store and _owns_store:
        await store.close()

    logger.info("Services cleaned up")


def get_store():
    """Get the persistent store instance."""
    if store is None:
        raise RuntimeError("Store not initialized")
    return store


def get_identity_registry() -> IdentityRegistry:
    """Get the identity registry instance."""
    if identity_registry is None:
        raise RuntimeError("Identity registry not initialized")
    return identity_registry


def get_room_tracker() -> RoomTracker:
    """Get the room tracker instance."""
    if room_tracker is None:
        raise RuntimeError("Room tracker not initialized")
    return room_tracker


def get_lifecycle_controller() -> LifecycleController:
    """Get the lifecycle controller instance."""
    if lifecycle_controller is None:
        raise RuntimeError("Lifecycle controller not initialized")
    return lifecycle_controller


def get_event_queue() -> ConnectionEventQueue:
    """Get the per-connection event queue."""
    if event_queue is None:
        raise RuntimeError("Event queue not initialized")
    return event_queue
