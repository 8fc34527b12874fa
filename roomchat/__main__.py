"""
Run the roomchat server: ``python -m roomchat`` or the ``roomchat`` script.
"""

import logging

from aiohttp import web

from .app import create_app
from .config import config

logger = logging.getLogger(__name__)


def main() -> None:
    app = create_app()
    logger.info(
        f"Serving rooms on {config.HOST}:{config.PORT} "
        f"(lobby {config.LOBBY_ROOM!r}, origins {config.cors_origins()!r})"
    )
    # run_app handles SIGINT/SIGTERM and runs on_cleanup before returning
    web.run_app(app, host=config.HOST, port=config.PORT, print=None)


if __name__ == "__main__":
    main()
