"""Core data models for kontextstore.

Contexts travel over the wire as camelCase dicts (``relevanceScore``,
``contractType``, ...) and live in Python as dataclasses with snake_case
attributes. Every payload entering the store goes through ``from_payload``,
which rejects unknown keys and unrecognized context types.
"""

from __future__ import annotations

import copy
import sys
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from kontextstore.errors import ValidationError

DEFAULT_LIMIT = 10

CONTEXT_KEYS = {"id", "type", "content", "metadata", "relatedContextIds"}
METADATA_KEYS = {
    "title",
    "description",
    "tags",
    "language",
    "contractType",
    "author",
    "relevanceScore",
    "createdAt",
    "updatedAt",
}
QUERY_KEYS = {"query", "types", "tags", "contractType", "limit", "offset", "includeTotal"}

_OPTIONAL_STRING_FIELDS = ("description", "language", "contractType", "author")
_TIMESTAMP_FIELDS = ("createdAt", "updatedAt")
# Leaves room for updatedAt to keep advancing past a stored value.
_LATEST_TIMESTAMP = datetime.max.replace(tzinfo=timezone.utc) - timedelta(days=1)


class ContextType(str, Enum):
    CODE_EXAMPLE = "code_example"
    BEST_PRACTICE = "best_practice"
    SECURITY_TIP = "security_tip"
    OPTIMIZATION = "optimization"
    DOCUMENTATION = "documentation"
    ERROR_PATTERN = "error_pattern"
    DEPLOYMENT_TOOL = "deployment_tool"
    RUNTIME_BEHAVIOR = "runtime_behavior"

    @classmethod
    def parse(cls, value: Any) -> ContextType:
        """Coerce a raw value into a ContextType, raising ValidationError if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except (ValueError, TypeError):
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(
                f"Unknown context type: {value!r} (expected one of: {allowed})"
            ) from None


def new_context_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are treated as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(*previous: str | None) -> str:
    """Return the current UTC time, moved strictly past every given timestamp."""
    now = datetime.now(timezone.utc)
    for value in previous:
        if not value:
            continue
        floor = parse_timestamp(value) + timedelta(microseconds=1)
        if floor > now:
            now = floor
    return now.isoformat()


def _reject_unknown(data: dict, allowed: set[str], where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"Unknown {where} field(s): {', '.join(unknown)}")


def _check_string_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings")
    return list(value)


def _check_metadata_fields(fields: dict[str, Any]) -> None:
    """Validate whichever camelCase metadata fields are present in ``fields``."""
    if "title" in fields:
        title = fields["title"]
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("metadata.title is required and must be a non-empty string")

    for name in _OPTIONAL_STRING_FIELDS:
        value = fields.get(name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"metadata.{name} must be a string")

    if "tags" in fields:
        _check_string_list(fields["tags"], "metadata.tags")

    score = fields.get("relevanceScore")
    if score is not None:
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValidationError("metadata.relevanceScore must be a number")
        if not 0.0 <= score <= 1.0:
            raise ValidationError("metadata.relevanceScore must be between 0 and 1")

    for name in _TIMESTAMP_FIELDS:
        value = fields.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"metadata.{name} must be an ISO-8601 string")
        try:
            too_late = parse_timestamp(value) > _LATEST_TIMESTAMP
        except (ValueError, OverflowError):
            raise ValidationError(f"metadata.{name} is not a valid ISO-8601 timestamp: {value!r}") from None
        if too_late:
            raise ValidationError(f"metadata.{name} is out of range: {value!r}")


@dataclass
class ContextMetadata:
    title: str
    description: str | None = None
    tags: list[str] = field(default_factory=list)  # order-insignificant, duplicates kept
    language: str | None = None
    contract_type: str | None = None
    author: str | None = None
    relevance_score: float | None = None  # None until the service applies a default
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ContextMetadata:
        if not isinstance(data, dict):
            raise ValidationError("Context metadata is required")
        _reject_unknown(data, METADATA_KEYS, "metadata")
        if "title" not in data:
            raise ValidationError("metadata.title is required")
        _check_metadata_fields(data)

        score = data.get("relevanceScore")
        return cls(
            title=data["title"],
            description=data.get("description"),
            tags=list(data.get("tags") or []),
            language=data.get("language"),
            contract_type=data.get("contractType"),
            author=data.get("author"),
            relevance_score=float(score) if score is not None else None,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "language": self.language,
            "contractType": self.contract_type,
            "author": self.author,
            "relevanceScore": self.relevance_score,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def validate(self) -> None:
        if not isinstance(self.tags, list):
            raise ValidationError("metadata.tags must be a list of strings")
        _check_metadata_fields(self.to_dict())


@dataclass
class Context:
    type: ContextType
    content: str
    metadata: ContextMetadata
    id: str | None = None
    related_context_ids: list[str] = field(default_factory=list)  # hint only, never checked

    @classmethod
    def from_payload(cls, payload: Any) -> Context:
        """Build a validated Context from a wire-format dict."""
        if not isinstance(payload, dict):
            raise ValidationError("Context payload must be an object")
        _reject_unknown(payload, CONTEXT_KEYS, "context")

        if payload.get("metadata") is None:
            raise ValidationError("Context metadata is required")
        if "type" not in payload:
            raise ValidationError("Context type is required")

        context = cls(
            type=ContextType.parse(payload["type"]),
            content=payload.get("content"),
            metadata=ContextMetadata.from_dict(payload["metadata"]),
            id=payload.get("id"),
            related_context_ids=_check_string_list(
                payload.get("relatedContextIds") or [], "relatedContextIds"
            ),
        )
        context.validate()
        return context

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "metadata": self.metadata.to_dict(),
            "relatedContextIds": list(self.related_context_ids),
        }

    def validate(self) -> None:
        if self.metadata is None:
            raise ValidationError("Context metadata is required")
        self.type = ContextType.parse(self.type)
        if not isinstance(self.content, str):
            raise ValidationError("content is required and must be a string")
        if self.id is not None and (not isinstance(self.id, str) or not self.id):
            raise ValidationError("id must be a non-empty string")
        _check_string_list(self.related_context_ids, "relatedContextIds")
        self.metadata.validate()

    def merged(self, partial: dict[str, Any]) -> Context:
        """Return a copy with ``partial`` merged on top; metadata merges key by key."""
        validate_partial(partial)
        data = self.to_dict()
        for key, value in partial.items():
            if key == "id":
                continue
            if key == "metadata":
                data["metadata"] = {**data["metadata"], **value}
            else:
                data[key] = value
        data["id"] = self.id
        return Context.from_payload(data)

    def copy(self) -> Context:
        return copy.deepcopy(self)


def validate_partial(partial: Any) -> None:
    """Check a partial update payload without needing the record it applies to."""
    if not isinstance(partial, dict):
        raise ValidationError("Update payload must be an object")
    _reject_unknown(partial, CONTEXT_KEYS, "context")

    if "type" in partial:
        ContextType.parse(partial["type"])
    if "content" in partial and not isinstance(partial["content"], str):
        raise ValidationError("content must be a string")
    if "relatedContextIds" in partial:
        _check_string_list(partial["relatedContextIds"], "relatedContextIds")
    if "metadata" in partial:
        metadata = partial["metadata"]
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        _reject_unknown(metadata, METADATA_KEYS, "metadata")
        if "relevanceScore" in metadata and metadata["relevanceScore"] is None:
            raise ValidationError("metadata.relevanceScore cannot be cleared")
        _check_metadata_fields(metadata)


def _check_int(value: Any, name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    return value


@dataclass
class QueryParams:
    query: str | None = None
    types: list[ContextType] | None = None
    tags: list[str] | None = None
    contract_type: str | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    include_total: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QueryParams:
        data = data or {}
        if not isinstance(data, dict):
            raise ValidationError("Query parameters must be an object")
        _reject_unknown(data, QUERY_KEYS, "query")

        params = cls(
            query=data.get("query"),
            types=data.get("types"),
            tags=data.get("tags"),
            contract_type=data.get("contractType"),
            limit=data.get("limit", DEFAULT_LIMIT),
            offset=data.get("offset", 0),
            include_total=data.get("includeTotal", True),
        )
        params.validate()
        return params

    def validate(self) -> None:
        """Check every field, coercing ``types`` to ContextType members in place."""
        if self.query is not None and not isinstance(self.query, str):
            raise ValidationError("query must be a string")
        if self.contract_type is not None and not isinstance(self.contract_type, str):
            raise ValidationError("contractType must be a string")
        if not isinstance(self.include_total, bool):
            raise ValidationError("includeTotal must be a boolean")

        if self.types is not None:
            if not isinstance(self.types, (list, tuple)):
                raise ValidationError("types must be a list")
            self.types = [ContextType.parse(t) for t in self.types]
        if self.tags is not None:
            self.tags = _check_string_list(self.tags, "tags")

        _check_int(self.limit, "limit", 1)
        _check_int(self.offset, "offset", 0)

    def has_filters(self) -> bool:
        return bool(self.query or self.types or self.tags or self.contract_type)

    def unbounded(self) -> QueryParams:
        """Same filters, every match on one page."""
        return replace(self, limit=sys.maxsize, offset=0)
