"""
HTTP routes: health, message history and the group catalog.
"""

import json
import logging

import aiohttp_cors
from aiohttp import web

from .config import config
from .errors import PersistenceError

logger = logging.getLogger(__name__)


async def health_check(request: web.Request) -> web.Response:
    """Health check endpoint for container orchestration."""
    return web.json_response({"status": "healthy", "service": "roomchat"})


async def get_room_messages(request: web.Request) -> web.Response:
    """Public message history of a room, oldest first."""
    room = request.match_info["room"]
    try:
        messages = await request.app["store"].get_room_messages(room)
    except PersistenceError:
        return web.json_response({"error": "unable to load messages"}, status=500)
    return web.json_response([m.to_dict() for m in messages])


async def get_private_messages(request: web.Request) -> web.Response:
    """Direct messages between ?me= and the peer in the path, in either direction."""
    peer = request.match_info.get("peer", "").strip()
    me = request.query.get("me", "").strip()
    if not peer or not me:
        return web.json_response({"error": "missing peer or me"}, status=400)

    try:
        messages = await request.app["store"].get_private_messages(me, peer)
    except PersistenceError:
        return web.json_response({"error": "unable to load messages"}, status=500)
    return web.json_response([m.to_dict() for m in messages])


async def list_groups(request: web.Request) -> web.Response:
    try:
        groups = await request.app["store"].list_groups()
    except PersistenceError:
        return web.json_response({"error": "unable to load groups"}, status=500)
    return web.json_response([g.to_dict() for g in groups])


async def create_group(request: web.Request) -> web.Response:
    """
    Create a group and announce it to every connected socket.

    Expected body: {"name": "group name"}
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "invalid input"}, status=400)

    name = body.get("name") if isinstance(body, dict) else None
    if not isinstance(name, str) or not name.strip():
        return web.json_response({"error": "invalid input"}, status=400)

    try:
        group = await request.app["store"].create_group(name.strip())
    except PersistenceError:
        return web.json_response({"error": "unable to create group"}, status=500)

    await request.app["sio"].emit("group:created", group.to_dict())
    logger.info(f"Announced group {group.id} ({group.name!r})")
    return web.json_response(group.to_dict())


def cors_defaults() -> dict:
    """aiohttp_cors options for the configured origins.

    A wildcard allows every origin without credentials; an explicit list
    allows credentials for those origins only.
    """
    origins = config.cors_origins()
    allow_credentials = origins != "*"
    if not allow_credentials:
        origins = ["*"]

    return {
        origin: aiohttp_cors.ResourceOptions(
            allow_credentials=allow_credentials,
            allow_headers=("Origin", "Content-Type", "Accept-Charset", "Authorization"),
            allow_methods=("GET", "POST", "OPTIONS"),
        )
        for origin in origins
    }


def setup_routes(app: web.Application) -> None:
    routes = [
        app.router.add_get("/health", health_check),
        app.router.add_get("/rooms/{room}/messages", get_room_messages),
        app.router.add_get("/dm/{peer}/messages", get_private_messages),
        app.router.add_get("/groups", list_groups),
        app.router.add_post("/groups", create_group),
    ]

    # Socket.IO answers its own CORS requests; only the HTTP routes get it here
    cors = aiohttp_cors.setup(app, defaults=cors_defaults())
    for route in routes:
        cors.add(route)
