"""Fusion of the text and vector ranked lists into one ordered result list.

Ordering is by descending fused score, then by the item's best (lowest) rank
in any list, then by first appearance (text list before vector list). The
order never depends on which retrieval call finished first.
"""

from dataclasses import dataclass

from gitdex.logging import get_logger
from gitdex.search.errors import InvalidStrategy, StrategyDataMismatch
from gitdex.search.types import (
    RRF,
    ItemType,
    Linear,
    RankedItem,
    RerankStrategy,
    SearchResult,
    TextOnly,
    VectorOnly,
)

_logger = get_logger(__name__)


@dataclass
class _Candidate:
    item_id: str
    item_type: ItemType
    order: int
    text: RankedItem | None = None
    vector: RankedItem | None = None

    @property
    def best_rank(self) -> int:
        return min(r.rank for r in (self.text, self.vector) if r is not None)


def _collect(text_items: list[RankedItem], vector_items: list[RankedItem]) -> list[_Candidate]:
    candidates: dict[str, _Candidate] = {}
    for role, items in (("text", text_items), ("vector", vector_items)):
        for item in items:
            candidate = candidates.get(item.item_id)
            if candidate is None:
                candidate = candidates[item.item_id] = _Candidate(item.item_id, item.item_type, len(candidates))
            # first (best-ranked) occurrence wins if a provider repeats an item
            if getattr(candidate, role) is None:
                setattr(candidate, role, item)
    return list(candidates.values())


def rrf_score(candidate: _Candidate, k: float) -> float:
    score = 0.0
    for item in (candidate.text, candidate.vector):
        if item is not None:
            score += 1 / (k + item.rank)
    return score


def max_normalize(items: list[RankedItem]) -> dict[str, float]:
    """Divide each raw score by the list maximum; a non-positive maximum yields all zeros."""
    if not items:
        return {}
    top = max(item.raw_score for item in items)
    if top <= 0:
        return {item.item_id: 0.0 for item in items}
    normalized: dict[str, float] = {}
    for item in items:
        normalized.setdefault(item.item_id, item.raw_score / top)
    return normalized


def _result(candidate: _Candidate, fused_score: float, final_rank: int) -> SearchResult:
    text, vector = candidate.text, candidate.vector
    return SearchResult(
        item_id=candidate.item_id,
        item_type=candidate.item_type,
        fused_score=fused_score,
        final_rank=final_rank,
        highlights=text.highlights if text else (),
        text_rank=text.rank if text else None,
        text_score=text.raw_score if text else None,
        vector_rank=vector.rank if vector else None,
        vector_score=vector.raw_score if vector else None,
    )


def fuse(
    text_items: list[RankedItem] | None,
    vector_items: list[RankedItem] | None,
    strategy: RerankStrategy,
) -> list[SearchResult]:
    """Fuse up to two ranked lists. ``None`` means the path was not retrieved at all."""
    # passthrough keeps the source list order; fusion sorts by score
    passthrough = False
    match strategy:
        case TextOnly():
            if text_items is None:
                raise StrategyDataMismatch(strategy.name, "text")
            candidates = _collect(text_items, [])
            scores = {c.item_id: c.text.raw_score for c in candidates}
            passthrough = True
        case VectorOnly():
            if vector_items is None:
                raise StrategyDataMismatch(strategy.name, "vector")
            candidates = _collect([], vector_items)
            scores = {c.item_id: c.vector.raw_score for c in candidates}
            passthrough = True
        case RRF(k=k):
            candidates = _collect(text_items or [], vector_items or [])
            scores = {c.item_id: rrf_score(c, k) for c in candidates}
        case Linear(text_weight=text_weight, vector_weight=vector_weight):
            candidates = _collect(text_items or [], vector_items or [])
            text_norm = max_normalize(text_items or [])
            vector_norm = max_normalize(vector_items or [])
            scores = {
                c.item_id: text_weight * text_norm.get(c.item_id, 0.0)
                + vector_weight * vector_norm.get(c.item_id, 0.0)
                for c in candidates
            }
        case _:
            raise InvalidStrategy(f"unsupported strategy {type(strategy).__name__}")

    if passthrough:
        ordered = sorted(candidates, key=lambda c: (c.best_rank, c.order))
    else:
        ordered = sorted(candidates, key=lambda c: (-scores[c.item_id], c.best_rank, c.order))
    return [_result(c, scores[c.item_id], final_rank) for final_rank, c in enumerate(ordered, start=1)]


def window(results: list[SearchResult], offset: int, limit: int) -> list[SearchResult]:
    return results[offset : offset + limit]


class RerankEngine:
    def rerank(
        self,
        text_items: list[RankedItem] | None,
        vector_items: list[RankedItem] | None,
        strategy: RerankStrategy,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[SearchResult]:
        fused = fuse(text_items, vector_items, strategy)
        _logger.debug(
            "reranked",
            strategy=strategy.name,
            text=None if text_items is None else len(text_items),
            vector=None if vector_items is None else len(vector_items),
            fused=len(fused),
        )
        if limit is None:
            return fused[offset:]
        return window(fused, offset, limit)
