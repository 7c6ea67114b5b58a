"""Unit tests for rerankers."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import StaticRerankProvider
from knowledge.config.schema import RerankConfig
from knowledge.entities import KnowledgeType, RetrievalResult
from knowledge.retrieval.rerankers import (
    FallbackReranker,
    ModelReranker,
    RerankWeights,
    ScoreSortReranker,
    create_reranker,
    recency_score,
    type_priority,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def candidate(content, score, entry_type=KnowledgeType.QA_PAIR, age_days=0.0):
    return RetrievalResult(
        content=content,
        type=entry_type,
        similarity=score,
        score=score,
        created_at=NOW - timedelta(days=age_days),
    )


class TestScoringHelpers:
    def test_type_priority_covers_every_type(self):
        assert [type_priority(t) for t in KnowledgeType] == [1.0, 1.0, 0.8, 0.7, 0.5]

    def test_recency(self):
        assert recency_score(NOW, NOW) == 1.0
        assert recency_score(NOW - timedelta(days=30), NOW, 30.0) == pytest.approx(0.5)
        assert recency_score(NOW + timedelta(days=1), NOW) == 1.0
        assert recency_score(None, NOW) == 0.5

    def test_naive_timestamp_treated_as_utc(self):
        naive = datetime(2025, 12, 2)
        assert recency_score(naive, NOW, 30.0) == pytest.approx(0.5)


@pytest.mark.asyncio
class TestScoreSortReranker:
    async def test_orders_by_existing_score(self):
        outcome = await ScoreSortReranker().rerank(
            "q", [candidate("low", 0.2), candidate("high", 0.9), candidate("mid", 0.5)], top_k=2
        )
        assert [r.content for r in outcome.results] == ["high", "mid"]
        assert [r.rank for r in outcome.results] == [1, 2]
        assert outcome.metadata["reranked"] is False
        assert outcome.metadata["original_count"] == 3


@pytest.mark.asyncio
class TestModelReranker:
    async def test_base_mode_orders_by_model_score(self):
        reranker = ModelReranker(StaticRerankProvider([0.1, 0.8, 0.5]))
        outcome = await reranker.rerank(
            "q", [candidate("a", 0.9), candidate("b", 0.1), candidate("c", 0.5)], top_k=10
        )
        assert [r.content for r in outcome.results] == ["b", "c", "a"]
        assert [r.rank for r in outcome.results] == [1, 2, 3]
        assert outcome.results[0].rerank_score == 0.8
        assert outcome.results[0].composite_score is None
        assert all(r.reranked for r in outcome.results)
        assert outcome.metadata["reranker_type"] == "static"

    async def test_truncates_to_top_k(self):
        reranker = ModelReranker(StaticRerankProvider([0.3, 0.2, 0.1]))
        outcome = await reranker.rerank("q", [candidate(str(i), 0.5) for i in range(3)], top_k=1)
        assert [r.content for r in outcome.results] == ["0"]

    async def test_enhanced_composite_is_deterministic(self):
        weights = RerankWeights(similarity=0.5, type_priority=0.3, recency=0.2)
        reranker = ModelReranker(StaticRerankProvider([0.9, 0.8]), half_life_days=30.0)
        candidates = [
            candidate("old file", 0.9, KnowledgeType.FILE, age_days=30),
            candidate("new qa", 0.8, KnowledgeType.QA_PAIR, age_days=0),
        ]

        first = await reranker.rerank("q", candidates, enhanced=True, weights=weights, now=NOW)
        second = await reranker.rerank("q", candidates, enhanced=True, weights=weights, now=NOW)

        # old file: 0.9*0.5 + 0.5*0.3 + 0.5*0.2 = 0.70; new qa: 0.8*0.5 + 1.0*0.3 + 1.0*0.2 = 0.90
        assert [r.content for r in first.results] == ["new qa", "old file"]
        assert first.results[0].composite_score == pytest.approx(0.9)
        assert first.results[1].composite_score == pytest.approx(0.7)
        assert [r.score for r in first.results] == [r.score for r in second.results]
        assert first.metadata["enhanced"] is True

    async def test_ties_keep_retrieval_order(self):
        reranker = ModelReranker(StaticRerankProvider([0.5, 0.5, 0.5]))
        outcome = await reranker.rerank("q", [candidate(c, 0.5) for c in "xyz"])
        assert [r.content for r in outcome.results] == ["x", "y", "z"]

    async def test_empty_candidates(self):
        outcome = await ModelReranker(StaticRerankProvider([])).rerank("q", [])
        assert outcome.results == []

    async def test_score_count_mismatch_raises(self):
        reranker = ModelReranker(StaticRerankProvider([0.5]))
        with pytest.raises(Exception, match="2 candidates"):
            await reranker.rerank("q", [candidate("a", 0.1), candidate("b", 0.2)])


@pytest.mark.asyncio
class TestFallbackReranker:
    async def test_uses_primary_when_healthy(self):
        reranker = FallbackReranker(ModelReranker(StaticRerankProvider([0.1, 0.9])))
        outcome = await reranker.rerank("q", [candidate("a", 0.9), candidate("b", 0.1)])
        assert [r.content for r in outcome.results] == ["b", "a"]
        assert outcome.metadata["fallback"] is False

    async def test_falls_back_on_model_failure(self):
        reranker = FallbackReranker(ModelReranker(StaticRerankProvider(None)))
        outcome = await reranker.rerank(
            "q", [candidate("low", 0.1), candidate("high", 0.9)], top_k=5, enhanced=True
        )
        assert [r.content for r in outcome.results] == ["high", "low"]
        assert [r.rank for r in outcome.results] == [1, 2]
        assert outcome.metadata["fallback"] is True
        assert outcome.metadata["reranked"] is False
        assert "rerank model unavailable" in outcome.metadata["error"]

    async def test_without_primary(self):
        outcome = await FallbackReranker(None).rerank("q", [candidate("a", 0.3)])
        assert outcome.metadata["fallback"] is True
        assert "error" not in outcome.metadata


class TestCreateReranker:
    def test_lexical(self):
        reranker = create_reranker(RerankConfig(provider="lexical"))
        assert reranker.name == "lexical"
        assert reranker.primary.weights.similarity == 0.7

    def test_none(self):
        reranker = create_reranker(RerankConfig(provider="none"))
        assert reranker.primary is None
        assert reranker.name == "default"
