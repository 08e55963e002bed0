from kontextstore.storage.base import StorageBackend
from kontextstore.storage.factory import create_storage
from kontextstore.storage.memory import InMemoryStorage
from kontextstore.storage.redis_store import RedisStorage

__all__ = ["StorageBackend", "InMemoryStorage", "RedisStorage", "create_storage"]
