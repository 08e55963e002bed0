"""Shared test fixtures for kontextstore."""

from __future__ import annotations

from typing import Any

import fakeredis
import pytest

from kontextstore.service import ContextService
from kontextstore.storage.memory import InMemoryStorage
from kontextstore.storage.redis_store import RedisStorage


def _fake_redis_storage() -> RedisStorage:
    # A private FakeServer per test so no data leaks between tests.
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return RedisStorage(client=client)


@pytest.fixture
def make_payload():
    """Factory for wire-format context payloads."""

    def _make(
        title: str = "Storage mappers",
        type: str = "code_example",
        content: str = "let balances = SingleValueMapper::new();",
        tags: list[str] | None = None,
        score: float | None = None,
        **metadata: Any,
    ) -> dict[str, Any]:
        meta: dict[str, Any] = {"title": title, "tags": list(tags or [])}
        if score is not None:
            meta["relevanceScore"] = score
        meta.update(metadata)
        return {"type": type, "content": content, "metadata": meta}

    return _make


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
async def redis_storage():
    storage = _fake_redis_storage()
    yield storage
    await storage.close()


@pytest.fixture(params=["memory", "redis"])
async def storage(request):
    """Every storage backend, so behavior tests run against both."""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = _fake_redis_storage()
    yield backend
    await backend.close()


@pytest.fixture
def service(storage) -> ContextService:
    return ContextService(storage)


@pytest.fixture
async def payable_corpus(service: ContextService, make_payload) -> list[str]:
    """Five contexts mentioning "payable" with distinct scores, plus one that doesn't."""
    ids = []
    for i, score in enumerate([0.3, 0.9, 0.5, 0.7, 0.1]):
        ids.append(
            await service.ingest(
                make_payload(
                    title=f"Payable endpoint {i}",
                    content=f"#[payable] fn deposit_{i}()",
                    score=score,
                )
            )
        )
    await service.ingest(make_payload(title="Unrelated", content="fn view()", score=1.0))
    return ids
