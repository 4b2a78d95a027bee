"""Durable key-value side channel for countdown anchors.

The session clock stores two values per attempt: the ISO-8601 start time and
the duration in seconds. Anything that can ``get``/``set``/``clear`` strings by
key will do, so tests substitute the in-memory store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from exam_engine.errors import TransientPersistenceError


def start_key(attempt_id: str) -> str:
    return f"exam_{attempt_id}_start"


def duration_key(attempt_id: str) -> str:
    return f"exam_{attempt_id}_duration"


class AnchorStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self, key: str) -> None:
        raise NotImplementedError


class InMemoryAnchorStore(AnchorStore):
    def __init__(self) -> None:
        self.values: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value

    async def clear(self, key: str) -> None:
        self.values.pop(key, None)


class MongoAnchorStore(AnchorStore):
    def __init__(self, mongo_uri: str, db_name: str, collection: str = "session_anchors") -> None:
        self.client = AsyncIOMotorClient(mongo_uri)
        self.anchors = self.client[db_name][collection]

    async def get(self, key: str) -> Optional[str]:
        try:
            doc = await self.anchors.find_one({"_id": key})
        except PyMongoError as exc:
            raise TransientPersistenceError(f"anchor read failed: {exc}", key=key) from exc
        return doc["value"] if doc else None

    async def set(self, key: str, value: str) -> None:
        try:
            await self.anchors.update_one(
                {"_id": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise TransientPersistenceError(f"anchor write failed: {exc}", key=key) from exc

    async def clear(self, key: str) -> None:
        try:
            await self.anchors.delete_one({"_id": key})
        except PyMongoError as exc:
            raise TransientPersistenceError(f"anchor clear failed: {exc}", key=key) from exc
