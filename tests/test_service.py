"""Tests for kontextstore.service: ingestion, querying, ranking and similarity."""

from __future__ import annotations

import json

import pytest

from kontextstore.errors import CapacityError, ValidationError
from kontextstore.models import Context, ContextType, QueryParams, parse_timestamp
from kontextstore.scoring import DEFAULT_RELEVANCE_SCORE
from kontextstore.service import MAX_BATCH_SIZE, ContextService
from kontextstore.storage.memory import InMemoryStorage


class TestIngest:
    async def test_round_trip(self, service: ContextService, make_payload):
        payload = make_payload(
            tags=["storage", "mapper"],
            score=0.4,
            description="Mappers",
            language="rust",
            author="docs",
        )
        payload["relatedContextIds"] = ["other"]
        context_id = await service.ingest(payload)

        stored = (await service.retrieve(context_id)).to_dict()
        for key in ("createdAt", "updatedAt"):
            stored["metadata"].pop(key)
        assert stored.pop("id") == context_id
        expected = Context.from_payload(payload).to_dict()
        expected.pop("id")
        for key in ("createdAt", "updatedAt"):
            expected["metadata"].pop(key)
        assert stored == expected

    async def test_default_relevance_score(self, service: ContextService, make_payload):
        context = await service.retrieve(await service.ingest(make_payload()))
        assert context.metadata.relevance_score == DEFAULT_RELEVANCE_SCORE == 0.8

    async def test_explicit_zero_score_kept(self, service: ContextService, make_payload):
        context = await service.retrieve(await service.ingest(make_payload(score=0.0)))
        assert context.metadata.relevance_score == 0.0

    async def test_fills_timestamps(self, service: ContextService, make_payload):
        context = await service.retrieve(await service.ingest(make_payload()))
        created = parse_timestamp(context.metadata.created_at)
        assert created <= parse_timestamp(context.metadata.updated_at)

    async def test_keeps_supplied_created_at(self, service: ContextService, make_payload):
        payload = make_payload(createdAt="2024-06-15T10:00:00+00:00")
        context = await service.retrieve(await service.ingest(payload))
        assert context.metadata.created_at == "2024-06-15T10:00:00+00:00"

    async def test_unknown_type_stores_nothing(self, service: ContextService, make_payload):
        with pytest.raises(ValidationError):
            await service.ingest(make_payload(type="not_a_real_type"))
        assert await service.storage.count() == 0

    async def test_missing_metadata_fails(self, service: ContextService, make_payload):
        payload = make_payload()
        payload["metadata"] = None
        with pytest.raises(ValidationError):
            await service.ingest(payload)
        assert await service.storage.count() == 0

    async def test_accepts_context_instance(self, service: ContextService, make_payload):
        context = Context.from_payload(make_payload())
        context_id = await service.ingest(context)
        assert (await service.retrieve(context_id)).metadata.title == "Storage mappers"
        # the caller's object is left untouched
        assert context.metadata.relevance_score is None

    async def test_far_future_created_at_is_rejected(self, service: ContextService, make_payload):
        payload = make_payload(createdAt="9999-12-31T23:59:59.999999+00:00")
        with pytest.raises(ValidationError, match="createdAt"):
            await service.ingest(payload)
        assert await service.storage.count() == 0

    async def test_capacity_error_surfaces(self, make_payload):
        service = ContextService(InMemoryStorage(max_size=1))
        await service.ingest(make_payload())
        with pytest.raises(CapacityError):
            await service.ingest(make_payload(title="second"))


class TestIngestBatch:
    async def test_collects_errors(self, service: ContextService, make_payload):
        result = await service.ingest_batch([
            make_payload(title="good"),
            make_payload(type="bogus"),
            make_payload(title="also good"),
        ])
        assert result.succeeded == 2
        assert result.failed == 1
        assert result.errors[0]["index"] == 1
        assert "bogus" in result.errors[0]["error"]
        assert json.loads(result.to_json())["ids"] == result.ids

    async def test_rejects_oversized_batch(self, service: ContextService, make_payload):
        with pytest.raises(ValidationError, match="Maximum batch size"):
            await service.ingest_batch([make_payload()] * (MAX_BATCH_SIZE + 1))
        assert await service.storage.count() == 0

    async def test_rejects_non_list(self, service: ContextService, make_payload):
        with pytest.raises(ValidationError):
            await service.ingest_batch(make_payload())

    async def test_ingest_all_has_no_cap(self, service: ContextService, make_payload):
        payloads = [make_payload(title=f"t{i}") for i in range(MAX_BATCH_SIZE + 5)]
        result = await service.ingest_all(payloads)
        assert result.succeeded == MAX_BATCH_SIZE + 5


class TestQuery:
    async def test_tag_scenario(self, service: ContextService, make_payload):
        await service.ingest(make_payload(title="one", tags=["storage"], score=0.5))
        await service.ingest(make_payload(title="two", tags=["storage", "mapper"], score=0.9))
        await service.ingest(make_payload(title="three", tags=["events"], score=0.7))

        page = await service.query({"tags": ["storage"]})
        assert [c.metadata.title for c in page.results] == ["two", "one"]
        assert page.total == 2

    async def test_tags_or_semantics(self, service: ContextService, make_payload):
        await service.ingest(make_payload(tags=["a", "b"]))
        page = await service.query({"tags": ["b", "z"]})
        assert len(page.results) == 1

    async def test_payable_second_page(self, service: ContextService, payable_corpus):
        page = await service.query({"query": "payable", "limit": 1, "offset": 1})
        assert len(page.results) == 1
        assert page.results[0].metadata.relevance_score == 0.7
        assert page.results[0].id == payable_corpus[3]
        assert page.total == 5
        assert page.offset == 1
        assert page.limit == 1

    async def test_include_total_false(self, service: ContextService, payable_corpus):
        page = await service.query({"query": "payable", "limit": 2, "includeTotal": False})
        assert len(page.results) == 2
        assert page.total == 2

    async def test_defaults(self, service: ContextService, payable_corpus):
        page = await service.query()
        assert page.limit == 10
        assert page.offset == 0
        assert page.total == 6
        assert page.results[0].metadata.title == "Unrelated"

    async def test_accepts_query_params(self, service: ContextService, payable_corpus):
        page = await service.query(QueryParams(query="PAYABLE", limit=3))
        assert [c.metadata.relevance_score for c in page.results] == [0.9, 0.7, 0.5]

    async def test_query_params_with_string_types(self, service: ContextService, make_payload):
        await service.ingest(make_payload())
        await service.ingest(make_payload(type="security_tip"))
        params = QueryParams(types=["code_example"], tags=None)
        page = await service.query(params)
        assert [c.type for c in page.results] == [ContextType.CODE_EXAMPLE]
        assert page.total == 1
        # the caller's params are not rewritten
        assert params.types == ["code_example"]

    async def test_query_params_with_bad_types(self, service: ContextService):
        with pytest.raises(ValidationError):
            await service.query(QueryParams(types=["nope"]))
        with pytest.raises(ValidationError):
            await service.query(QueryParams(tags="storage"))

    async def test_invalid_params(self, service: ContextService):
        with pytest.raises(ValidationError):
            await service.query({"limit": 0})
        with pytest.raises(ValidationError):
            await service.query({"types": ["nope"]})

    async def test_to_dict(self, service: ContextService, payable_corpus):
        data = (await service.query({"limit": 2})).to_dict()
        assert set(data) == {"results", "total", "offset", "limit"}
        assert data["results"][0]["metadata"]["title"] == "Unrelated"


class TestUpdateDelete:
    async def test_update(self, service: ContextService, make_payload):
        context_id = await service.ingest(make_payload(score=0.2))
        before = await service.retrieve(context_id)
        assert await service.update(context_id, {"metadata": {"relevanceScore": 0.95}})
        after = await service.retrieve(context_id)
        assert after.metadata.relevance_score == 0.95
        assert after.metadata.created_at == before.metadata.created_at
        assert parse_timestamp(after.metadata.updated_at) > parse_timestamp(before.metadata.updated_at)

    async def test_update_validates_before_lookup(self, service: ContextService):
        with pytest.raises(ValidationError):
            await service.update("missing", {"type": "bogus"})

    async def test_update_cannot_clear_relevance_score(self, service: ContextService, make_payload):
        context_id = await service.ingest(make_payload(score=0.6))
        with pytest.raises(ValidationError, match="relevanceScore"):
            await service.update(context_id, {"metadata": {"relevanceScore": None}})
        assert (await service.retrieve(context_id)).metadata.relevance_score == 0.6

    async def test_update_missing(self, service: ContextService):
        assert await service.update("missing", {"content": "x"}) is False

    async def test_delete(self, service: ContextService, make_payload):
        context_id = await service.ingest(make_payload())
        assert await service.delete(context_id) is True
        assert await service.retrieve(context_id) is None
        assert await service.delete(context_id) is False


class TestFindSimilar:
    async def _seed(self, service: ContextService, make_payload) -> dict[str, str]:
        return {
            "anchor": await service.ingest(make_payload(title="anchor", tags=["storage", "mapper"])),
            "two_tags": await service.ingest(make_payload(
                title="two tags", type="best_practice", tags=["mapper", "storage", "x"], score=0.1,
            )),
            "one_tag_same_type": await service.ingest(make_payload(
                title="one tag same type", tags=["storage"], score=0.2,
            )),
            "one_tag": await service.ingest(make_payload(
                title="one tag", type="documentation", tags=["mapper"], score=0.9,
            )),
            "same_type_only": await service.ingest(make_payload(
                title="same type only", tags=["events"], score=0.5,
            )),
            "unrelated": await service.ingest(make_payload(
                title="unrelated", type="security_tip", tags=["admin"], score=1.0,
            )),
        }

    async def test_ranking(self, service: ContextService, make_payload):
        ids = await self._seed(service, make_payload)
        results = await service.find_similar(ids["anchor"], limit=10)
        assert [c.id for c in results] == [
            ids["two_tags"],           # 2*2 + 0 + 0.1
            ids["one_tag_same_type"],  # 2*1 + 1 + 0.2
            ids["one_tag"],            # 2*1 + 0 + 0.9
            ids["same_type_only"],     # 0 + 1 + 0.5
        ]

    async def test_excludes_anchor_and_respects_limit(self, service: ContextService, make_payload):
        ids = await self._seed(service, make_payload)
        results = await service.find_similar(ids["anchor"], limit=2)
        assert len(results) == 2
        assert ids["anchor"] not in {c.id for c in results}

    async def test_unknown_id_returns_empty(self, service: ContextService, make_payload):
        await self._seed(service, make_payload)
        assert await service.find_similar("missing") == []

    async def test_nonpositive_limit(self, service: ContextService, make_payload):
        ids = await self._seed(service, make_payload)
        assert await service.find_similar(ids["anchor"], limit=0) == []

    async def test_alone_in_store(self, service: ContextService, make_payload):
        context_id = await service.ingest(make_payload(tags=["a"]))
        assert await service.find_similar(context_id) == []

    async def test_ties_break_on_id(self, service: ContextService, make_payload):
        anchor = await service.ingest(make_payload(title="anchor", tags=["a"]))
        tied = []
        for i in range(4):
            context = Context.from_payload(make_payload(title=f"tied {i}", tags=["a"], score=0.5))
            context.id = f"id-{3 - i}"
            tied.append(await service.ingest(context))

        first = [c.id for c in await service.find_similar(anchor, limit=10)]
        second = [c.id for c in await service.find_similar(anchor, limit=10)]
        assert first == second == sorted(tied)

    async def test_duplicate_tags_count_once(self, service: ContextService, make_payload):
        anchor = await service.ingest(make_payload(title="anchor", tags=["a", "a"]))
        dup = await service.ingest(make_payload(title="dup", type="optimization", tags=["a", "a"], score=0.1))
        same_type = await service.ingest(make_payload(title="same", tags=["zz"], score=0.9))
        results = await service.find_similar(anchor)
        # 2*1 + 0.1 beats 1 + 0.9
        assert [c.id for c in results] == [dup, same_type]


class TestRankByRelevance:
    async def test_reorders_by_text_match(self, service: ContextService, make_payload):
        contexts = [
            Context.from_payload(make_payload(title="Deployment", content="deploy scripts", score=0.9)),
            Context.from_payload(make_payload(title="Token transfer", content="transfer tokens safely", score=0.5)),
            Context.from_payload(make_payload(title="Token basics", content="what a token is", score=0.7)),
        ]
        ranked = await service.rank_by_relevance(contexts, "token transfer")
        assert [c.metadata.title for c in ranked] == ["Token transfer", "Token basics", "Deployment"]

    async def test_contract_type_boost(self, service: ContextService, make_payload):
        plain = Context.from_payload(make_payload(title="plain", content="staking", score=0.5))
        typed = Context.from_payload(
            make_payload(title="typed", content="staking", score=0.5, contractType="nft")
        )
        ranked = await service.rank_by_relevance([plain, typed], "nft staking")
        assert [c.metadata.title for c in ranked] == ["typed", "plain"]

    async def test_empty_query_keeps_order(self, service: ContextService, make_payload):
        contexts = [
            Context.from_payload(make_payload(title="b", score=0.1)),
            Context.from_payload(make_payload(title="a", score=0.9)),
        ]
        assert await service.rank_by_relevance(contexts, "  ") == contexts

    async def test_does_not_touch_store(self, service: ContextService, make_payload):
        contexts = [Context.from_payload(make_payload())]
        await service.rank_by_relevance(contexts, "mapper")
        assert await service.storage.count() == 0


class TestSearch:
    async def test_keyword_union_ranked(self, service: ContextService, make_payload):
        await service.ingest(make_payload(title="Event annotations", content="#[event]", score=0.5))
        await service.ingest(make_payload(title="Storage mappers", content="mapper", score=0.9))
        await service.ingest(make_payload(title="Admin module", content="owner only", score=0.99))

        results = await service.search("How should I name event storage mappers?", limit=3)
        titles = [c.metadata.title for c in results]
        assert titles[0] == "Storage mappers"
        assert "Event annotations" in titles
        assert "Admin module" not in titles

    async def test_no_keywords(self, service: ContextService, make_payload):
        await service.ingest(make_payload())
        assert await service.search("how do we do it?") == []


class TestStats:
    async def test_counts_by_type(self, service: ContextService, make_payload):
        await service.ingest(make_payload())
        await service.ingest(make_payload(type="security_tip"))
        await service.ingest(make_payload(type="security_tip"))
        stats = await service.get_stats()
        assert stats["total_contexts"] == 3
        assert stats["by_type"]["security_tip"] == 2
        assert stats["by_type"]["code_example"] == 1
        assert set(stats["by_type"]) == {t.value for t in ContextType}
