from typing import Any, Dict, List, Optional

from telepresence.db.context import DBContext


class OfficeCardRepository:
    """Office cards: a fiducial marker uuid mapped to a directory user and chat."""

    def __init__(self, db_context: Optional[DBContext] = None):
        context = db_context or DBContext()
        self.collection = context.collection("office_cards")

    async def list(self) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}, {"_id": 0})
        return await cursor.to_list(length=None)
