"""Bounded in-process storage backend.

Intended for single-instance and test deployments. Queries are a linear scan
plus sort, which is fine at the default capacity but is not indexed.
"""

from __future__ import annotations

from typing import Any

from kontextstore.errors import CapacityError
from kontextstore.models import Context, QueryParams
from kontextstore.storage.base import StorageBackend, prepare_for_store, prepare_update
from kontextstore.storage.filters import apply_query

DEFAULT_MAX_SIZE = 10_000


class InMemoryStorage(StorageBackend):
    """Dict-backed store; dict order is insertion order, which breaks score ties."""

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        self._contexts: dict[str, Context] = {}
        self.max_size = max_size

    async def store(self, context: Context) -> str:
        existing = self._contexts.get(context.id) if context.id else None
        record = prepare_for_store(context, existing)

        # Only brand-new records count against the cap; overwrites never do.
        if existing is None and len(self._contexts) >= self.max_size:
            raise CapacityError(self.max_size)

        self._contexts[record.id] = record
        return record.id

    async def retrieve(self, context_id: str) -> Context | None:
        context = self._contexts.get(context_id)
        return context.copy() if context is not None else None

    async def query(self, params: QueryParams) -> list[Context]:
        return [c.copy() for c in apply_query(self._contexts.values(), params)]

    async def update(self, context_id: str, partial: dict[str, Any]) -> bool:
        existing = self._contexts.get(context_id)
        if existing is None:
            return False
        self._contexts[context_id] = prepare_update(existing, partial)
        return True

    async def delete(self, context_id: str) -> bool:
        return self._contexts.pop(context_id, None) is not None

    async def count(self, params: QueryParams | None = None) -> int:
        if params is None or not params.has_filters():
            return len(self._contexts)
        return len(apply_query(self._contexts.values(), params.unbounded()))
