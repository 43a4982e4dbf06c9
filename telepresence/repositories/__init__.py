from .office_card_repository import OfficeCardRepository
from .robot_repository import RobotRepository, robot_identity
from .smart_action_repository import SmartActionRepository

__all__ = [
    "OfficeCardRepository",
    "RobotRepository",
    "SmartActionRepository",
    "robot_identity",
]
