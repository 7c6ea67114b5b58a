"""Deterministic lexical rerank provider.

Scores passages by query-token overlap and contiguous phrase matches. It needs
no model download, which makes it the default for offline deployments and
tests. Scoring runs in a worker thread so long candidate lists do not block
the event loop.
"""

import asyncio
import re
from collections.abc import Sequence

from knowledge.providers.base import ProviderConfig, RerankProvider

# Words, or single CJK characters (CJK text has no spaces to split on).
_TOKEN_PATTERN = re.compile(r"[぀-ヿ一-鿿]|[^\W_぀-ヿ一-鿿]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.lower())


class LexicalRerankProvider(RerankProvider):
    """Token overlap scorer normalised to [0, 1].

    score = overlap_weight * (distinct query tokens found / distinct query tokens)
          + phrase_weight * min(1, phrase occurrences)
    """

    def __init__(self, config: ProviderConfig) -> None:
        super().__init__(config)
        self._overlap_weight = float(config.extra_params.get("overlap_weight", 0.8))
        self._phrase_weight = float(config.extra_params.get("phrase_weight", 0.2))

    async def score(self, query: str, texts: list[str]) -> list[float]:
        if not texts:
            return []
        return await asyncio.to_thread(self._score_sync, query, list(texts))

    def _score_sync(self, query: str, texts: list[str]) -> list[float]:
        query_tokens = tokenize(query)
        query_set = set(query_tokens)
        scores: list[float] = []
        for text in texts:
            if not query_set:
                scores.append(0.0)
                continue
            doc_tokens = tokenize(text)
            doc_set = set(doc_tokens)
            overlap = len(query_set & doc_set) / len(query_set)
            phrase = min(1, self._count_phrase(query_tokens, doc_tokens))
            scores.append(self._overlap_weight * overlap + self._phrase_weight * phrase)
        return scores

    @staticmethod
    def _count_phrase(query_tokens: Sequence[str], doc_tokens: Sequence[str]) -> int:
        if len(query_tokens) < 2 or len(doc_tokens) < len(query_tokens):
            return 0
        window = len(query_tokens)
        target = tuple(query_tokens)
        return sum(
            1
            for index in range(len(doc_tokens) - window + 1)
            if tuple(doc_tokens[index : index + window]) == target
        )
