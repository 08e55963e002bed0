"""Redis-backed persistent storage.

Key layout:
    kontext:context:<id>            full context as JSON
    kontext:index:all               sorted set of ids, scored by insertion sequence
    kontext:seq                     insertion sequence counter
    kontext:index:type:<type>       ids per context type
    kontext:index:tag:<tag>         ids per tag
    kontext:index:contract:<name>   ids per contractType

The secondary sets only narrow the candidate set. Final filtering, ordering
and paging always run through ``filters.apply_query`` so results match the
in-memory backend exactly. Connection errors from redis propagate unchanged.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

from kontextstore.models import Context, QueryParams
from kontextstore.storage.base import StorageBackend, prepare_for_store, prepare_update
from kontextstore.storage.filters import apply_query

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379"

KEY_PREFIX = "kontext:"
CONTEXT_PREFIX = f"{KEY_PREFIX}context:"
INDEX_PREFIX = f"{KEY_PREFIX}index:"
ALL_INDEX_KEY = f"{INDEX_PREFIX}all"
SEQUENCE_KEY = f"{KEY_PREFIX}seq"


def _context_key(context_id: str) -> str:
    return f"{CONTEXT_PREFIX}{context_id}"


def _index_keys(context: Context) -> list[str]:
    keys = [f"{INDEX_PREFIX}type:{context.type.value}"]
    keys.extend(f"{INDEX_PREFIX}tag:{tag}" for tag in sorted(set(context.metadata.tags)))
    if context.metadata.contract_type:
        keys.append(f"{INDEX_PREFIX}contract:{context.metadata.contract_type}")
    return keys


class RedisStorage(StorageBackend):
    """Durable, multi-instance store. Concurrent writers race; last write wins."""

    def __init__(self, url: str | None = None, client: redis.Redis | None = None) -> None:
        self.url = url or DEFAULT_REDIS_URL
        self._client = client if client is not None else redis.from_url(
            self.url, decode_responses=True
        )
        logger.info(f"Redis storage configured for {self.url}")

    async def store(self, context: Context) -> str:
        existing = await self.retrieve(context.id) if context.id else None
        record = prepare_for_store(context, existing)
        await self._write(record, existing)
        return record.id

    async def retrieve(self, context_id: str) -> Context | None:
        data = await self._client.get(_context_key(context_id))
        if data is None:
            return None
        return Context.from_payload(json.loads(data))

    async def query(self, params: QueryParams) -> list[Context]:
        ids = await self._candidate_ids(params)
        contexts = await self._load(ids)
        return apply_query(contexts, params)

    async def update(self, context_id: str, partial: dict[str, Any]) -> bool:
        existing = await self.retrieve(context_id)
        if existing is None:
            return False
        await self._write(prepare_update(existing, partial), existing)
        return True

    async def delete(self, context_id: str) -> bool:
        existing = await self.retrieve(context_id)
        if existing is None:
            return False

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(_context_key(context_id))
            pipe.zrem(ALL_INDEX_KEY, context_id)
            for key in _index_keys(existing):
                pipe.srem(key, context_id)
            await pipe.execute()
        return True

    async def count(self, params: QueryParams | None = None) -> int:
        if params is None or not params.has_filters():
            return await self._client.zcard(ALL_INDEX_KEY)
        return len(await self.query(params.unbounded()))

    async def close(self) -> None:
        await self._client.aclose()

    async def _write(self, record: Context, existing: Context | None) -> None:
        """Write a record and swap its index memberships in one MULTI/EXEC."""
        sequence = None
        if existing is None:
            sequence = await self._client.incr(SEQUENCE_KEY)

        async with self._client.pipeline(transaction=True) as pipe:
            if existing is not None:
                for key in _index_keys(existing):
                    pipe.srem(key, existing.id)
            pipe.set(_context_key(record.id), json.dumps(record.to_dict()))
            for key in _index_keys(record):
                pipe.sadd(key, record.id)
            if sequence is not None:
                pipe.zadd(ALL_INDEX_KEY, {record.id: sequence}, nx=True)
            await pipe.execute()

    async def _candidate_ids(self, params: QueryParams) -> list[str]:
        """Ids that may match ``params``, in insertion order."""
        ordered = await self._client.zrange(ALL_INDEX_KEY, 0, -1)

        narrowed: set[str] | None = None
        for keys in self._narrowing_keys(params):
            members = set(await self._client.sunion(keys))
            narrowed = members if narrowed is None else narrowed & members

        if narrowed is None:
            return list(ordered)
        return [context_id for context_id in ordered if context_id in narrowed]

    @staticmethod
    def _narrowing_keys(params: QueryParams) -> list[list[str]]:
        groups = []
        if params.types:
            groups.append([f"{INDEX_PREFIX}type:{t.value}" for t in params.types])
        if params.tags:
            groups.append([f"{INDEX_PREFIX}tag:{tag}" for tag in params.tags])
        if params.contract_type:
            groups.append([f"{INDEX_PREFIX}contract:{params.contract_type}"])
        return groups

    async def _load(self, ids: list[str]) -> list[Context]:
        if not ids:
            return []
        values = await self._client.mget([_context_key(i) for i in ids])
        return [Context.from_payload(json.loads(v)) for v in values if v is not None]
