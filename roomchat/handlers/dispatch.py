"""
Routing of inbound events through the per-connection queue.
"""

import logging
from typing import Any

from ..errors import DisconnectedError
from ..services import get_event_queue, get_lifecycle_controller

logger = logging.getLogger(__name__)


async def dispatch(event: str, sid: str, *args: Any) -> dict[str, Any]:
    """Queue an event behind the connection's earlier events and return its ack.

    Events that arrive after the connection's queue was closed are dropped.
    """
    controller = get_lifecycle_controller()
    try:
        done = get_event_queue().submit(sid, controller.handle, event, sid, *args)
    except DisconnectedError as e:
        logger.debug(f"Dropped {event} from closed connection {sid}")
        return {"status": "error", **e.to_dict()}
    return await done
