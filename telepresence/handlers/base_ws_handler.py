import logging
import uuid
from typing import Any, Dict, Optional

import tornado.websocket
from jose import JWTError
from jose.exceptions import ExpiredSignatureError

from telepresence.services.coordinator import RelayCoordinator
from telepresence.services.jwt_service import JWTAuthService

logger = logging.getLogger(__name__)


class RelayWebSocketHandler(tornado.websocket.WebSocketHandler):
    """Authenticated WebSocket connection feeding the relay coordinator.

    Subclasses set ``role``; the endpoint a client connects to decides whether it
    is treated as a robot or a driver.
    """

    role = "driver"

    def initialize(self, coordinator: RelayCoordinator, jwt_service: JWTAuthService):
        self.coordinator = coordinator
        self.jwt_service = jwt_service
        self.jwt_payload: Dict[str, Any] | None = None
        self.connection_id: Optional[str] = None

    def check_origin(self, origin: str) -> bool:
        # Allow cross-origin WebSocket connections (lock down in production).
        return True

    def open(self):
        if not self._authenticate():
            return
        if not self.authorized(self.jwt_payload):
            self.close(code=4003, reason=f"{self.role} token required")
            return
        self.connection_id = uuid.uuid4().hex
        self.coordinator.open(
            self.connection_id,
            self.role,
            self.send_event,
            identity=self.jwt_service.subject(self.jwt_payload),
        )

    def authorized(self, payload: Dict[str, Any]) -> bool:
        return True

    def on_message(self, message):
        if self.connection_id is None:
            return
        self.coordinator.handle(self.connection_id, message)

    def on_close(self):
        if self.connection_id is None:
            return
        self.coordinator.close(self.connection_id)

    def send_event(self, text: str) -> None:
        try:
            future = self.write_message(text)
        except tornado.websocket.WebSocketClosedError:
            logger.debug("Write to closed connection %s skipped", self.connection_id)
            return
        # the close is handled by on_close; only consume the error here
        future.add_done_callback(lambda f: f.cancelled() or f.exception())

    def _authenticate(self) -> bool:
        token = self._extract_token()
        if not token:
            self.close(code=4001, reason="missing token")
            return False
        try:
            self.jwt_payload = self.jwt_service.decode_token(token)
            return True
        except ExpiredSignatureError:
            self.close(code=4001, reason="token expired")
            return False
        except JWTError:
            self.close(code=4003, reason="invalid token")
            return False
        except RuntimeError as exc:
            self.close(code=4003, reason=str(exc))
            return False

    def _extract_token(self) -> str | None:
        auth_header = self.request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            return auth_header.split(" ", 1)[1].strip()
        return self.get_argument("token", default=None)
