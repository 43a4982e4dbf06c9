import logging
import os
from typing import Dict

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.mongo_client import AsyncMongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class DBContext:
    """Process-wide handle on the record store.

    Every repository shares one ``AsyncMongoClient``. Each record kind lives in
    its own collection with a unique key, so every write touches one document.
    """

    UNIQUE_KEYS: Dict[str, str] = {
        "robots": "identity",
        "smart_actions": "uuid",
        "office_cards": "uuid",
    }

    _instance: "DBContext | None" = None

    def __new__(cls) -> "DBContext":
        if cls._instance is None:
            mongo_url = os.getenv("MONGODB_URL")
            if not mongo_url:
                raise RuntimeError("MONGODB_URL environment variable is not set")
            context = super().__new__(cls)
            context._client = AsyncMongoClient(mongo_url)
            context._db = context._client[os.getenv("MONGODB_DATABASE", "telepresence_db")]
            cls._instance = context
        return cls._instance

    def collection(self, name: str) -> AsyncCollection:
        return self._db[name]

    async def ensure_indexes(self) -> bool:
        """Create the unique key index of each record collection; False when the store is unreachable."""
        try:
            for name, key in self.UNIQUE_KEYS.items():
                await self.collection(name).create_index(key, unique=True)
        except PyMongoError as exc:
            logger.warning("Could not ensure record store indexes: %s", exc)
            return False
        return True
