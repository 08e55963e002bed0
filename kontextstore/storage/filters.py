"""Filter, sort and page semantics shared by every storage backend.

Backends may narrow their candidate set however they like (indexes, scans),
but the final result must always come from ``apply_query`` so both backends
filter and rank identically.
"""

from __future__ import annotations

from collections.abc import Iterable

from kontextstore.models import Context, QueryParams


def searchable_text(context: Context) -> str:
    """Lower-cased concatenation of content, title, description and tags."""
    metadata = context.metadata
    return " ".join(
        [
            context.content,
            metadata.title,
            metadata.description or "",
            " ".join(metadata.tags),
        ]
    ).lower()


def matches(context: Context, params: QueryParams) -> bool:
    """Apply the type, tag, contractType and free-text filters, in that order."""
    if params.types and context.type not in params.types:
        return False
    if params.tags and not any(tag in context.metadata.tags for tag in params.tags):
        return False
    if params.contract_type and context.metadata.contract_type != params.contract_type:
        return False
    if params.query and params.query.lower() not in searchable_text(context):
        return False
    return True


def apply_query(contexts: Iterable[Context], params: QueryParams) -> list[Context]:
    """Filter, sort by relevanceScore (stable, so ties keep storage order) and page.

    ``contexts`` must be supplied in storage order.
    """
    results = [c for c in contexts if matches(c, params)]
    results.sort(key=lambda c: c.metadata.relevance_score or 0.0, reverse=True)
    return results[params.offset : params.offset + params.limit]
