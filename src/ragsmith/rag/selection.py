"""
Post-retrieval constraints, diversity selection and context packing.
"""

from dataclasses import dataclass
from typing import Literal

import numpy as np

from .store import Hit

CONTEXT_DELIMITER = "\n\n---\n\n"

MustIncludeMode = Literal["all", "any"]


@dataclass
class SearchFilters:
    """Source constraints: exact allow-list and/or path prefix."""

    sources: list[str] | None = None
    source_prefix: str | None = None


def apply_source_filters(hits: list[Hit], filters: SearchFilters | None) -> list[Hit]:
    if filters is None:
        return hits

    allowed = set(filters.sources) if filters.sources is not None else None
    prefix = filters.source_prefix

    out = []
    for hit in hits:
        source = hit.record.source
        if allowed is not None and source not in allowed:
            continue
        if prefix and not source.startswith(prefix):
            continue
        out.append(hit)
    return out


def apply_must_include(
    hits: list[Hit], keywords: list[str] | None, mode: MustIncludeMode = "all"
) -> list[Hit]:
    """Keep hits whose lower-cased text contains all (or any) of the keywords."""
    kws = [str(k).lower() for k in keywords or [] if str(k).strip()]
    if not kws:
        return hits

    match = any if mode == "any" else all
    return [hit for hit in hits if match(k in hit.record.content.lower() for k in kws)]


def estimate_tokens(text: str) -> int:
    """Rough approximation: ~4 characters per token."""
    return len(text) // 4


def pick_diverse(
    hits: list[Hit],
    k: int,
    lam: float = 0.8,
    min_keep: float = 0.1,
    token_budget: int | None = None,
) -> list[Hit]:
    """
    Greedy marginal-relevance selection over score-sorted hits.

    A candidate is kept when it is the first pick, or when
    ``lam * score - (1 - lam) * max_sim > min_keep`` where ``max_sim`` is its
    highest cosine similarity to anything already picked. With a token budget,
    candidates that would overflow it are skipped (the first pick always stays).
    """
    picked: list[Hit] = []
    picked_ids: set[str] = set()
    picked_vectors: list[np.ndarray] = []
    used_tokens = 0

    for hit in hits:
        if len(picked) >= k:
            break
        if hit.record.id in picked_ids:
            continue

        vector = np.asarray(hit.record.vector, dtype=np.float64) if hit.record.vector else None
        max_sim = 0.0
        if vector is not None:
            for other in picked_vectors:
                max_sim = max(max_sim, float(vector @ other))

        mmr_score = lam * hit.score - (1 - lam) * max_sim
        if picked and mmr_score <= min_keep:
            continue

        tokens = estimate_tokens(hit.record.content)
        if picked and token_budget is not None and used_tokens + tokens > token_budget:
            continue

        picked.append(hit)
        picked_ids.add(hit.record.id)
        if vector is not None:
            picked_vectors.append(vector)
        used_tokens += tokens

    return picked


def build_context_block(hits: list[Hit]) -> str:
    """Labeled chunk blocks in selection order."""
    return CONTEXT_DELIMITER.join(
        f"[source: {hit.record.citation_id}]\n{hit.record.content}" for hit in hits
    )
