"""Builds the storage backend selected by configuration."""

from __future__ import annotations

import logging

from kontextstore.config import Config
from kontextstore.errors import ValidationError
from kontextstore.storage.base import StorageBackend
from kontextstore.storage.memory import InMemoryStorage
from kontextstore.storage.redis_store import RedisStorage

logger = logging.getLogger(__name__)


def create_storage(config: Config) -> StorageBackend:
    """Construct the backend once at startup. There is no switching afterwards."""
    if config.storage_type == "redis":
        logger.info("Using Redis storage backend")
        return RedisStorage(config.redis_url)
    if config.storage_type == "memory":
        logger.info(f"Using in-memory storage backend (max {config.memory_max_size} contexts)")
        return InMemoryStorage(max_size=config.memory_max_size)
    raise ValidationError(f"Unknown storage type: {config.storage_type!r}")
