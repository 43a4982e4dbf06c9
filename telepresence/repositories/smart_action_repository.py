import uuid
from typing import Any, Dict, List, Optional

from telepresence.db.context import DBContext


class SmartActionRepository:
    """Data access layer for smart actions (fiducial marker -> webhook)."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.collection("smart_actions")

    async def get(self, action_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"uuid": action_id}, {"_id": 0})

    async def find_by_webhook(self, webhook: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"webhook": webhook}, {"_id": 0})

    async def list(self) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}, {"_id": 0})
        return await cursor.to_list(length=None)

    async def create(self, name: str, webhook: str) -> str:
        action_id = str(uuid.uuid4())
        await self.collection.insert_one({"uuid": action_id, "name": name, "webhook": webhook})
        return action_id

    async def delete(self, action_id: str) -> bool:
        result = await self.collection.delete_one({"uuid": action_id})
        return result.deleted_count > 0
