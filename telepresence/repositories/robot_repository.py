import base64
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from telepresence.db.context import DBContext


def robot_identity(private_key: str) -> str:
    """Public robot identity: base64 SHA-256 of the robot's private key."""
    digest = hashlib.sha256(private_key.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


class RobotRepository:
    """Data access layer for registered robots."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.collection("robots")

    async def get(self, identity: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"identity": identity}, {"_id": 0, "private_key": 0})

    async def list(self) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}, {"_id": 0, "private_key": 0})
        return await cursor.to_list(length=None)

    async def create(self, name: str, location: Optional[str] = None) -> Tuple[str, str]:
        """Insert a robot and return ``(identity, private_key)``."""
        private_key = str(uuid.uuid4())
        identity = robot_identity(private_key)
        await self.collection.insert_one(
            {
                "identity": identity,
                "private_key": private_key,
                "name": name,
                "location": location,
                "created_at": datetime.now(timezone.utc),
            }
        )
        return identity, private_key

    async def delete(self, identity: str) -> bool:
        result = await self.collection.delete_one({"identity": identity})
        return result.deleted_count > 0
