"""Context service: validation, ingestion, querying, ranking and similarity.

The storage backend only stores, filters and pages. Everything that needs a
policy (default scores, query re-ranking, similarity) lives here or in
``kontextstore.scoring``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from kontextstore.errors import KontextError, ValidationError
from kontextstore.models import Context, ContextType, QueryParams, utc_now, validate_partial
from kontextstore.scoring import (
    calculate_relevance_score,
    extract_keywords,
    query_relevance,
    similarity,
)
from kontextstore.storage.base import StorageBackend

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100
DEFAULT_SIMILAR_LIMIT = 5
SEARCH_CANDIDATES_PER_KEYWORD = 20


@dataclass
class QueryPage:
    results: list[Context]
    total: int
    offset: int
    limit: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [c.to_dict() for c in self.results],
            "total": self.total,
            "offset": self.offset,
            "limit": self.limit,
        }


@dataclass
class BatchResult:
    ids: list[str] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)  # {"index": int, "error": str}

    @property
    def succeeded(self) -> int:
        return len(self.ids)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)


class ContextService:
    """Orchestrates one storage backend."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    async def ingest(self, payload: dict[str, Any] | Context) -> str:
        """Validate a payload, fill its defaults and store it. Returns the id."""
        if isinstance(payload, Context):
            context = payload.copy()
            context.validate()
        else:
            context = Context.from_payload(payload)

        metadata = context.metadata
        if metadata.relevance_score is None:
            metadata.relevance_score = calculate_relevance_score(context)
        if metadata.created_at is None:
            metadata.created_at = utc_now()
        if metadata.updated_at is None:
            metadata.updated_at = metadata.created_at

        return await self._storage.store(context)

    async def ingest_batch(self, payloads: list[dict[str, Any]]) -> BatchResult:
        """Ingest up to MAX_BATCH_SIZE payloads, collecting per-item failures."""
        if not isinstance(payloads, list):
            raise ValidationError("Batch payload must be a list")
        if len(payloads) > MAX_BATCH_SIZE:
            raise ValidationError(f"Maximum batch size is {MAX_BATCH_SIZE}")
        return await self.ingest_all(payloads)

    async def ingest_all(self, payloads: list[dict[str, Any]]) -> BatchResult:
        """Ingest every payload with no batch cap. Used for corpus loading."""
        result = BatchResult()
        for index, payload in enumerate(payloads):
            try:
                result.ids.append(await self.ingest(payload))
            except KontextError as e:
                logger.warning(f"Failed to ingest item {index}: {e}")
                result.errors.append({"index": index, "error": str(e)})
        return result

    async def retrieve(self, context_id: str) -> Context | None:
        return await self._storage.retrieve(context_id)

    async def query(self, params: QueryParams | dict[str, Any] | None = None) -> QueryPage:
        """Filtered, relevance-ordered page plus the unpaged match count.

        With ``include_total`` off, ``total`` is just the page size.
        """
        if not isinstance(params, QueryParams):
            params = QueryParams.from_dict(params)
        else:
            params = replace(params)
            params.validate()

        results = await self._storage.query(params)
        if params.include_total:
            total = await self._storage.count(params)
        else:
            total = len(results)

        return QueryPage(results=results, total=total, offset=params.offset, limit=params.limit)

    async def update(self, context_id: str, partial: dict[str, Any]) -> bool:
        validate_partial(partial)
        return await self._storage.update(context_id, partial)

    async def delete(self, context_id: str) -> bool:
        return await self._storage.delete(context_id)

    async def find_similar(
        self, context_id: str, limit: int = DEFAULT_SIMILAR_LIMIT
    ) -> list[Context]:
        """Top ``limit`` contexts by similarity to ``context_id``, excluding itself.

        Unknown ids give an empty list. Ties break on id so repeated calls on
        unchanged data return the same order.
        """
        if limit <= 0:
            return []
        anchor = await self._storage.retrieve(context_id)
        if anchor is None:
            return []

        scored = []
        for candidate in await self._all_contexts():
            if candidate.id == anchor.id:
                continue
            score = similarity(anchor, candidate)
            if score > 0:
                scored.append((score, candidate))

        scored.sort(key=lambda pair: (-pair[0], pair[1].id))
        return [candidate for _, candidate in scored[:limit]]

    async def rank_by_relevance(self, contexts: list[Context], query_text: str) -> list[Context]:
        """Re-order an already-fetched result set by how well it matches ``query_text``."""
        if not query_text or not query_text.strip():
            return list(contexts)
        return sorted(contexts, key=lambda c: query_relevance(c, query_text), reverse=True)

    async def search(self, text: str, limit: int = 3) -> list[Context]:
        """Contexts matching any keyword of a natural-language request, best first.

        Each keyword is run through the free-text filter; the union is then
        re-ranked against the whole request.
        """
        seen: dict[str, Context] = {}
        for keyword in extract_keywords(text):
            for context in await self._storage.query(
                QueryParams(query=keyword, limit=SEARCH_CANDIDATES_PER_KEYWORD)
            ):
                seen.setdefault(context.id, context)

        ranked = await self.rank_by_relevance(list(seen.values()), text)
        return ranked[:limit]

    async def get_stats(self) -> dict[str, Any]:
        by_type = {}
        for context_type in ContextType:
            by_type[context_type.value] = await self._storage.count(
                QueryParams(types=[context_type])
            )
        return {
            "total_contexts": await self._storage.count(),
            "by_type": by_type,
        }

    async def _all_contexts(self) -> list[Context]:
        total = await self._storage.count()
        if total == 0:
            return []
        return await self._storage.query(QueryParams(limit=total))
