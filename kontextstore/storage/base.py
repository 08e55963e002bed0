"""Storage backend interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kontextstore.errors import ValidationError
from kontextstore.models import Context, QueryParams, new_context_id, next_timestamp, utc_now


class StorageBackend(ABC):
    """Async persistence contract shared by the in-memory and Redis stores.

    Missing ids are never an error here: ``retrieve`` returns None and
    ``update``/``delete`` return False.
    """

    @abstractmethod
    async def store(self, context: Context) -> str:
        """Insert or overwrite a context and return its id."""

    @abstractmethod
    async def retrieve(self, context_id: str) -> Context | None:
        ...

    @abstractmethod
    async def query(self, params: QueryParams) -> list[Context]:
        ...

    @abstractmethod
    async def update(self, context_id: str, partial: dict[str, Any]) -> bool:
        ...

    @abstractmethod
    async def delete(self, context_id: str) -> bool:
        ...

    @abstractmethod
    async def count(self, params: QueryParams | None = None) -> int:
        ...

    async def close(self) -> None:
        """Release any held connections."""


def prepare_for_store(context: Context, existing: Context | None) -> Context:
    """Copy ``context`` and assign its id and timestamps for storage.

    createdAt comes from the already-stored record when there is one, so it is
    written once; updatedAt always moves forward.
    """
    if context.metadata is None:
        raise ValidationError("Context metadata is required")

    record = context.copy()
    if record.id is None:
        record.id = new_context_id()

    metadata = record.metadata
    if existing is not None:
        metadata.created_at = existing.metadata.created_at
    elif metadata.created_at is None:
        metadata.created_at = utc_now()
    metadata.updated_at = next_timestamp(
        metadata.created_at,
        existing.metadata.updated_at if existing is not None else None,
    )
    return record


def prepare_update(existing: Context, partial: dict[str, Any]) -> Context:
    """Merge ``partial`` onto ``existing``, keeping id and createdAt."""
    updated = existing.merged(partial)
    updated.metadata.created_at = existing.metadata.created_at
    updated.metadata.updated_at = next_timestamp(
        existing.metadata.created_at, existing.metadata.updated_at
    )
    return updated
