from .health_handler import HealthHandler
from .docs_handler import DocsHandler
from .robot_ws_handler import RobotWebSocketHandler
from .driver_ws_handler import DriverWebSocketHandler
from .records_handler import OfficeCardsHandler, RobotsHandler, SmartActionsHandler

__all__ = [
    "HealthHandler",
    "DocsHandler",
    "RobotWebSocketHandler",
    "DriverWebSocketHandler",
    "OfficeCardsHandler",
    "RobotsHandler",
    "SmartActionsHandler",
]
