import tornado.web

from telepresence.services.registry import ConnectionRegistry
from telepresence.services.sessions import SessionManager


class HealthHandler(tornado.web.RequestHandler):
    def initialize(self, registry: ConnectionRegistry, sessions: SessionManager):
        self.registry = registry
        self.sessions = sessions

    def get(self):
        self.write(
            {
                "status": "ok",
                "connections": len(self.registry),
                "sessions": len(self.sessions),
                "active_robots": len(self.registry.list_active_robots()),
            }
        )
