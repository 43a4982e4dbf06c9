import asyncio
import os
from typing import Any, Dict

import logging

import tornado.web

from telepresence.handlers import (
    DocsHandler,
    DriverWebSocketHandler,
    HealthHandler,
    OfficeCardsHandler,
    RobotsHandler,
    RobotWebSocketHandler,
    SmartActionsHandler,
)
from telepresence.db.context import DBContext
from telepresence.repositories import OfficeCardRepository, RobotRepository, SmartActionRepository
from telepresence.services.coordinator import RelayCoordinator
from telepresence.services.directory import DirectoryService
from telepresence.services.dispatch import ActionDispatcher
from telepresence.services.jwt_service import JWTAuthService
from telepresence.services.registry import ConnectionRegistry
from telepresence.services.relay import MessageRelay
from telepresence.services.sessions import SessionManager


def make_app() -> tornado.web.Application:
    robot_repo = RobotRepository()
    action_repo = SmartActionRepository()
    office_card_repo = OfficeCardRepository()
    jwt_service = JWTAuthService()

    registry = ConnectionRegistry()
    relay = MessageRelay()
    sessions = SessionManager(registry, relay)
    coordinator = RelayCoordinator(
        registry=registry,
        sessions=sessions,
        relay=relay,
        dispatcher=ActionDispatcher(action_repo),
        directory=DirectoryService(),
    )

    ws_args: Dict[str, Any] = dict(coordinator=coordinator, jwt_service=jwt_service)
    robots_args = dict(jwt_service=jwt_service, robot_repo=robot_repo, registry=registry)
    actions_args = dict(jwt_service=jwt_service, action_repo=action_repo)

    return tornado.web.Application(
        [
            (r"/health", HealthHandler, dict(registry=registry, sessions=sessions)),
            (r"/docs", DocsHandler),
            (r"/ws/robot", RobotWebSocketHandler, ws_args),
            (r"/ws/driver", DriverWebSocketHandler, ws_args),
            (r"/robots", RobotsHandler, robots_args),
            (r"/robots/(.+)", RobotsHandler, robots_args),
            (r"/smart-actions", SmartActionsHandler, actions_args),
            (r"/smart-actions/([^/]+)", SmartActionsHandler, actions_args),
            (r"/office-cards", OfficeCardsHandler, dict(jwt_service=jwt_service, office_card_repo=office_card_repo)),
        ],
        websocket_ping_interval=float(os.environ.get("WS_PING_INTERVAL", "20")),
    )


def setup_logger(name):
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
    return logger


async def serve() -> None:
    logger = logging.getLogger(__name__)
    logger.info(f"Started server process {os.getpid()}")
    port = int(os.environ.get("PORT", "8000"))
    address = os.environ.get("ADDRESS", "0.0.0.0")
    app = make_app()
    await DBContext().ensure_indexes()
    logger.info(f"Waiting for application startup...")
    app.listen(port=port, address=address)
    logger.info(f"Application startup complete.")
    logger.info(f"Tornado running on http://{address}:{port} (Press Ctrl+C to quit)")
    await asyncio.Event().wait()


def main() -> None:
    setup_logger("telepresence")
    asyncio.run(serve())


if __name__ == "__main__":
    main()
