"""
BM25 keyword index over stored chunk text, backed by rank_bm25.

Scoring uses BM25Plus. BM25Okapi's IDF is zero for a term found in exactly
half the documents and is clamped to a small epsilon above that, so on small
corpora the keyword side of hybrid search would come back empty. BM25Plus
keeps IDF positive, but it also gives every document a floor score, so only
documents sharing at least one token with the query are returned.
"""

import re

from rank_bm25 import BM25Plus

from ..identity import ChunkRecord


def tokenize(text: str) -> list[str]:
    """Lower-case and split on non-word characters."""
    return [t for t in re.split(r"\W+", text.lower()) if t]


class KeywordIndex:
    """Immutable BM25 index over a snapshot of records."""

    def __init__(self, records: list[ChunkRecord]):
        self._records = list(records)
        corpus = [tokenize(r.content) for r in self._records]
        self._vocabularies = [set(tokens) for tokens in corpus]
        # BM25 divides by the average document length
        self._bm25 = BM25Plus(corpus) if any(corpus) else None

    def __len__(self) -> int:
        return len(self._records)

    def search(self, query: str, top_k: int) -> list[tuple[ChunkRecord, float]]:
        if self._bm25 is None or top_k <= 0:
            return []

        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        terms = set(query_tokens)
        matching = [i for i, vocab in enumerate(self._vocabularies) if vocab & terms]
        if not matching:
            return []

        scores = self._bm25.get_scores(query_tokens)
        # stable sort keeps corpus order between equal scores
        matching.sort(key=lambda i: float(scores[i]), reverse=True)
        return [(self._records[i], float(scores[i])) for i in matching[:top_k]]
