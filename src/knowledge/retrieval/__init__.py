"""Retrieval strategies: vector searchers, file retrievers and rerankers.

Each concern has a primary strategy and a decorator that degrades instead of
failing: FallbackSearcher (indexed search, then brute-force scan),
GuardedFileRetriever (errors become no hits) and FallbackReranker (model
scoring, then plain score ordering).
"""

from knowledge.retrieval.files import (
    FileHit,
    FileRetriever,
    GuardedFileRetriever,
    HttpFileRetriever,
    NullFileRetriever,
    VectorStoreFileRetriever,
    create_file_retriever,
    file_hit_to_result,
)
from knowledge.retrieval.rerankers import (
    BaseReranker,
    FallbackReranker,
    ModelReranker,
    RerankOutcome,
    RerankWeights,
    ScoreSortReranker,
    create_reranker,
)
from knowledge.retrieval.searchers import (
    FallbackSearcher,
    IndexedSearcher,
    ScanSearcher,
    SearchOutcome,
    VectorSearcher,
)

__all__ = [
    "BaseReranker",
    "FallbackReranker",
    "FallbackSearcher",
    "FileHit",
    "FileRetriever",
    "GuardedFileRetriever",
    "HttpFileRetriever",
    "IndexedSearcher",
    "ModelReranker",
    "NullFileRetriever",
    "RerankOutcome",
    "RerankWeights",
    "ScanSearcher",
    "ScoreSortReranker",
    "SearchOutcome",
    "VectorSearcher",
    "VectorStoreFileRetriever",
    "create_file_retriever",
    "create_reranker",
    "file_hit_to_result",
]
