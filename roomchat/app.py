"""
Main application setup for the chat server.
"""

import logging

import socketio
from aiohttp import web

from .config import config

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global references for the running server (set by create_app)
_sio: socketio.AsyncServer = None
_app: web.Application = None


def create_app(store=None) -> web.Application:
    """
    Create and configure a new application instance.

    Args:
        store: storage backend to use instead of connecting to PostgreSQL
    """
    global _sio, _app

    from .handlers import register_handlers
    from .routes import setup_routes
    from .services import initialize_services

    sio = socketio.AsyncServer(
        async_mode="aiohttp",
        cors_allowed_origins=config.cors_origins(),
        logger=False,
        engineio_logger=False,
    )

    # Create aiohttp application
    app = web.Application()
    sio.attach(app)

    # Store sio reference in app for services to access
    app["sio"] = sio
    if store is not None:
        app["store"] = store

    setup_routes(app)

    # Initialize services (identity registry, room tracker, store)
    app.on_startup.append(initialize_services)

    # Register Socket.IO event handlers
    register_handlers(sio)

    # Store global references
    _sio = sio
    _app = app

    logger.info(f"Chat server configured on {config.HOST}:{config.PORT}")
    return app


def get_sio() -> socketio.AsyncServer:
    """Get the current Socket.IO server instance."""
    if _sio is None:
        raise RuntimeError("Application not initialized. Call create_app() first.")
    return _sio
