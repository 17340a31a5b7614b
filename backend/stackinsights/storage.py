from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .config import Settings
from .logs import log_event


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...

    def close(self) -> None: ...


class MemoryStorage:
    """Process-local string storage, the server-side stand-in for localStorage."""

    mode = "memory"

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def close(self) -> None:
        self._items.clear()


class MongoStorage:
    mode = "mongo"

    def __init__(self, collection, client=None) -> None:
        self._collection = collection
        self._client = client
        self.write_failures = 0

    def get_item(self, key: str) -> Optional[str]:
        try:
            doc = self._collection.find_one({"_id": key})
        except PyMongoError as ex:
            log_event("mongo_read_failed", key=key, error=str(ex))
            return None
        if doc is None:
            return None
        value = doc.get("value")
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self._collection.replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)
        except PyMongoError as ex:
            self.write_failures += 1
            log_event("mongo_write_failed", key=key, error=str(ex))

    def remove_item(self, key: str) -> None:
        try:
            self._collection.delete_one({"_id": key})
        except PyMongoError as ex:
            self.write_failures += 1
            log_event("mongo_delete_failed", key=key, error=str(ex))

    def keys(self) -> List[str]:
        try:
            return [str(doc["_id"]) for doc in self._collection.find({}, {"_id": 1})]
        except PyMongoError as ex:
            log_event("mongo_keys_failed", error=str(ex))
            return []

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


def _mongo_client(settings: Settings) -> Optional[MongoClient]:
    try:
        client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=1200, connectTimeoutMS=1200)
        client.admin.command("ping")
    except PyMongoError as ex:
        log_event("mongo_init_failed", error=str(ex))
        return None
    return client


def build_storage(settings: Settings) -> KeyValueStorage:
    if settings.data_backend == "mongo":
        client = _mongo_client(settings)
        if client is not None:
            log_event("storage_selected", mode="mongo", db=settings.mongo_db_name)
            return MongoStorage(client[settings.mongo_db_name][settings.mongo_collection], client=client)
        log_event("mongo_unavailable_fallback_memory")
    log_event("storage_selected", mode="memory")
    return MemoryStorage()
