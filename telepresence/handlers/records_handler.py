import json
import logging
from typing import Any, Dict, Optional

import tornado.web
from pydantic import ValidationError

from telepresence.models import RobotCreateRequest, SmartActionCreateRequest
from telepresence.repositories import OfficeCardRepository, RobotRepository, SmartActionRepository
from telepresence.services.jwt_service import JWTAuthService
from telepresence.services.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class AuthenticatedHandler(tornado.web.RequestHandler):
    """JSON handler that requires a bearer token; mutations require an admin claim."""

    def initialize(self, jwt_service: JWTAuthService, **kwargs):
        self.jwt_service = jwt_service
        self.jwt_payload: Optional[Dict[str, Any]] = None

    def prepare(self):
        auth_header = self.request.headers.get("Authorization", "")
        token = None
        if auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1].strip()
        token = token or self.get_argument("token", default=None)
        if not token:
            raise tornado.web.HTTPError(401, reason="missing token")
        self.jwt_payload = self.jwt_service.try_decode(token)
        if self.jwt_payload is None:
            raise tornado.web.HTTPError(401, reason="invalid token")

    def write_error(self, status_code: int, **kwargs):
        self.set_header("Content-Type", "application/json")
        self.finish({"error": self._reason})

    def require_admin(self) -> None:
        if not self.jwt_service.is_admin(self.jwt_payload):
            raise tornado.web.HTTPError(403, reason="admin only")

    def json_body(self, model):
        try:
            return model.model_validate(json.loads(self.request.body or b"{}"))
        except (ValueError, ValidationError) as exc:
            logger.warning("Rejected %s body: %s", self.request.path, exc)
            raise tornado.web.HTTPError(400, reason="invalid body")

    def write_json(self, payload: Any, status: int = 200) -> None:
        self.set_status(status)
        self.set_header("Content-Type", "application/json")
        self.write(json.dumps(payload, default=str))


class RobotsHandler(AuthenticatedHandler):
    def initialize(self, jwt_service: JWTAuthService, robot_repo: RobotRepository, registry: ConnectionRegistry):
        super().initialize(jwt_service)
        self.robot_repo = robot_repo
        self.registry = registry

    async def get(self, identity: Optional[str] = None):
        active = self.registry.list_active_robots()
        if identity:
            robot = await self.robot_repo.get(identity)
            if robot is None:
                raise tornado.web.HTTPError(404, reason="unknown robot")
            robot["online"] = identity in active
            self.write_json(robot)
            return
        robots = await self.robot_repo.list()
        for robot in robots:
            robot["online"] = robot.get("identity") in active
        self.write_json({"robots": robots})

    async def post(self, identity: Optional[str] = None):
        self.require_admin()
        request = self.json_body(RobotCreateRequest)
        identity, private_key = await self.robot_repo.create(request.name, request.location)
        logger.info("Robot %s registered as %s", request.name, identity)
        self.write_json({"identity": identity, "private_key": private_key}, status=201)

    async def delete(self, identity: Optional[str] = None):
        self.require_admin()
        if not identity or not await self.robot_repo.delete(identity):
            raise tornado.web.HTTPError(404, reason="unknown robot")
        self.set_status(204)


class SmartActionsHandler(AuthenticatedHandler):
    def initialize(self, jwt_service: JWTAuthService, action_repo: SmartActionRepository):
        super().initialize(jwt_service)
        self.action_repo = action_repo

    async def get(self, action_id: Optional[str] = None):
        if action_id:
            action = await self.action_repo.get(action_id)
            if action is None:
                raise tornado.web.HTTPError(404, reason="unknown smart action")
            self.write_json(action)
            return
        self.write_json({"smart_actions": await self.action_repo.list()})

    async def post(self, action_id: Optional[str] = None):
        self.require_admin()
        request = self.json_body(SmartActionCreateRequest)
        action_id = await self.action_repo.create(request.name, request.webhook)
        self.write_json({"uuid": action_id, "name": request.name, "webhook": request.webhook}, status=201)

    async def delete(self, action_id: Optional[str] = None):
        self.require_admin()
        if not action_id or not await self.action_repo.delete(action_id):
            raise tornado.web.HTTPError(404, reason="unknown smart action")
        self.set_status(204)


class OfficeCardsHandler(AuthenticatedHandler):
    def initialize(self, jwt_service: JWTAuthService, office_card_repo: OfficeCardRepository):
        super().initialize(jwt_service)
        self.office_card_repo = office_card_repo

    async def get(self):
        self.write_json({"office_cards": await self.office_card_repo.list()})
