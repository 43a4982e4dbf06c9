from typing import Any, Dict

from telepresence.handlers.base_ws_handler import RelayWebSocketHandler


class RobotWebSocketHandler(RelayWebSocketHandler):
    """Robot endpoint: announces ``robot-alive`` and streams health/signaling.

    Only tokens issued to robots may connect here, so a driver cannot pose as a
    robot and receive its control stream.
    """

    role = "robot"

    def authorized(self, payload: Dict[str, Any]) -> bool:
        return self.jwt_service.has_role(payload, "robot")
