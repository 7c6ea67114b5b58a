"""Rerankers: reorder retrieval candidates.

Base mode orders candidates by a rerank model's relevance score. Enhanced mode
blends that score with a per-type priority and a recency decay:

    composite = rerank_score * w_similarity
              + type_priority * w_type
              + recency * w_recency

Both modes truncate to top_k and assign contiguous 1-based ranks.
FallbackReranker guarantees an answer: when the model is missing or fails it
orders candidates by their retrieval score and flags the response.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from knowledge.config.schema import RerankConfig
from knowledge.entities import KnowledgeType, RetrievalResult
from knowledge.observability.logging import get_logger
from knowledge.providers import ProviderConfig, create_rerank_provider
from knowledge.providers.base import ProviderError, RerankProvider

logger = get_logger(__name__)

# Score used when a candidate has no timestamp.
UNKNOWN_RECENCY = 0.5


class RerankWeights(BaseModel):
    """Composite score weights, each in [0, 1]."""

    similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    type_priority: float = Field(default=0.2, ge=0.0, le=1.0)
    recency: float = Field(default=0.1, ge=0.0, le=1.0)


def type_priority(entry_type: KnowledgeType) -> float:
    """Prior usefulness of each knowledge type for grounding answers."""
    if entry_type == KnowledgeType.SCHEMA:
        return 1.0
    elif entry_type == KnowledgeType.QA_PAIR:
        return 1.0
    elif entry_type == KnowledgeType.SYNONYM:
        return 0.8
    elif entry_type == KnowledgeType.BUSINESS_KNOWLEDGE:
        return 0.7
    elif entry_type == KnowledgeType.FILE:
        return 0.5
    raise ValueError(f"Unknown knowledge type: {entry_type!r}")


def recency_score(
    created_at: Optional[datetime],
    now: datetime,
    half_life_days: float = 30.0,
) -> float:
    """Exponential decay: 1.0 for brand new, 0.5 after one half-life."""
    if created_at is None:
        return UNKNOWN_RECENCY
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    age_days = (now - created_at).total_seconds() / 86400
    if age_days <= 0:
        return 1.0
    return 0.5 ** (age_days / half_life_days)


def _assign_ranks(results: list[RetrievalResult], top_k: int) -> list[RetrievalResult]:
    return [
        result.model_copy(update={"rank": index})
        for index, result in enumerate(results[: max(top_k, 0)], start=1)
    ]


@dataclass
class RerankOutcome:
    """Reranked results and a description of how they were produced."""

    results: list[RetrievalResult]
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseReranker(ABC):
    """Strategy interface for reranking."""

    name = "base"

    @abstractmethod
    async def rerank(
        self,
        query: str,
        candidates: list[RetrievalResult],
        top_k: int = 10,
        enhanced: bool = False,
        weights: Optional[RerankWeights] = None,
        now: Optional[datetime] = None,
    ) -> RerankOutcome:
        pass


class ScoreSortReranker(BaseReranker):
    """Order by existing retrieval score; no model involved."""

    name = "default"

    async def rerank(
        self,
        query: str,
        candidates: list[RetrievalResult],
        top_k: int = 10,
        enhanced: bool = False,
        weights: Optional[RerankWeights] = None,
        now: Optional[datetime] = None,
    ) -> RerankOutcome:
        ordered = sorted(
            (c.model_copy(update={"reranked": False}) for c in candidates),
            key=lambda c: c.score,
            reverse=True,
        )
        return RerankOutcome(
            results=_assign_ranks(ordered, top_k),
            metadata={
                "reranker_type": self.name,
                "enhanced": False,
                "reranked": False,
                "original_count": len(candidates),
            },
        )


class ModelReranker(BaseReranker):
    """Rerank with a RerankProvider, optionally blending type and recency."""

    def __init__(
        self,
        provider: RerankProvider,
        weights: Optional[RerankWeights] = None,
        half_life_days: float = 30.0,
    ) -> None:
        self.provider = provider
        self.weights = weights or RerankWeights()
        self.half_life_days = half_life_days
        self.name = provider.config.provider_type

    async def rerank(
        self,
        query: str,
        candidates: list[RetrievalResult],
        top_k: int = 10,
        enhanced: bool = False,
        weights: Optional[RerankWeights] = None,
        now: Optional[datetime] = None,
    ) -> RerankOutcome:
        metadata = {
            "reranker_type": self.name,
            "enhanced": enhanced,
            "reranked": True,
            "original_count": len(candidates),
        }
        if not candidates:
            return RerankOutcome(results=[], metadata=metadata)

        scores = await self.provider.score(query, [c.content for c in candidates])
        if len(scores) != len(candidates):
            raise ProviderError(
                message=f"Rerank model returned {len(scores)} scores for {len(candidates)} candidates",
                provider=self.name,
            )

        weights = weights or self.weights
        now = now or datetime.now(timezone.utc)
        rescored: list[RetrievalResult] = []
        for candidate, raw_score in zip(candidates, scores):
            rerank_score = float(raw_score)
            update: dict[str, Any] = {
                "rerank_score": rerank_score,
                "score": rerank_score,
                "reranked": True,
            }
            if enhanced:
                composite = (
                    rerank_score * weights.similarity
                    + type_priority(candidate.type) * weights.type_priority
                    + recency_score(candidate.created_at, now, self.half_life_days) * weights.recency
                )
                update["composite_score"] = composite
                update["score"] = composite
            rescored.append(candidate.model_copy(update=update))

        # sorted() is stable, so ties keep retrieval order.
        rescored = sorted(rescored, key=lambda c: c.score, reverse=True)
        results = _assign_ranks(rescored, top_k)
        logger.debug(
            "rerank_completed",
            reranker=self.name,
            enhanced=enhanced,
            candidates=len(candidates),
            returned=len(results),
        )
        return RerankOutcome(results=results, metadata=metadata)


class FallbackReranker(BaseReranker):
    """Use the model reranker when available, else order by retrieval score.

    Never raises.
    """

    def __init__(self, primary: Optional[BaseReranker]) -> None:
        self.primary = primary
        self.fallback = ScoreSortReranker()
        self.name = primary.name if primary else self.fallback.name

    async def rerank(
        self,
        query: str,
        candidates: list[RetrievalResult],
        top_k: int = 10,
        enhanced: bool = False,
        weights: Optional[RerankWeights] = None,
        now: Optional[datetime] = None,
    ) -> RerankOutcome:
        error: Optional[str] = None
        if self.primary is not None:
            try:
                outcome = await self.primary.rerank(query, candidates, top_k, enhanced, weights, now)
                outcome.metadata["fallback"] = False
                return outcome
            except Exception as e:
                error = str(e)
                logger.warning("rerank_failed_using_fallback", reranker=self.primary.name, error=error)

        outcome = await self.fallback.rerank(query, candidates, top_k)
        outcome.metadata["fallback"] = True
        if error:
            outcome.metadata["error"] = error
        return outcome


def create_reranker(config: RerankConfig) -> FallbackReranker:
    """Build the configured reranker wrapped in FallbackReranker."""
    provider = create_rerank_provider(
        ProviderConfig(
            provider_type=config.provider.value,
            model_name=config.model_name,
            extra_params=config.extra_params,
        )
    )
    primary = None
    if provider is not None:
        primary = ModelReranker(
            provider,
            weights=RerankWeights(**config.weights.model_dump()),
            half_life_days=config.recency_half_life_days,
        )
    return FallbackReranker(primary)
