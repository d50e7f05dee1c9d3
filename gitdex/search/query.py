from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType

from gitdex.constants import DEFAULT_LIMIT, DEFAULT_OFFSET
from gitdex.search.errors import InvalidQuery
from gitdex.search.types import FilterMode, RerankStrategy


class SearchMode(StrEnum):
    FULL_TEXT = "full_text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class Query:
    """Immutable search request. Build with the module-level helpers and chain ``with_*``.

    Every ``with_*`` call returns a new Query; instances are safe to share
    between the concurrent retrieval calls of one request.
    """

    mode: SearchMode
    text: str | None = None
    vector: tuple[float, ...] | None = None
    rerank_strategy: RerankStrategy | None = None
    limit: int = DEFAULT_LIMIT
    offset: int = DEFAULT_OFFSET
    filter: str | None = None
    search_fields: tuple[str, ...] | None = None
    field_boosts: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    filter_mode: FilterMode | None = None  # None defers to the vector engine

    def with_limit(self, limit: int) -> "Query":
        return replace(self, limit=limit)

    def with_offset(self, offset: int) -> "Query":
        return replace(self, offset=offset)

    def with_filter(self, filter: str | None) -> "Query":
        return replace(self, filter=filter or None)

    def with_fields(self, fields: Iterable[str] | None) -> "Query":
        return replace(self, search_fields=tuple(fields) if fields is not None else None)

    def with_boosts(self, boosts: Mapping[str, float]) -> "Query":
        return replace(self, field_boosts=MappingProxyType(dict(boosts)))

    def with_rerank_strategy(self, strategy: RerankStrategy) -> "Query":
        return replace(self, rerank_strategy=strategy)

    def with_filter_mode(self, mode: FilterMode | str) -> "Query":
        try:
            filter_mode = FilterMode(mode)
        except ValueError:
            raise InvalidQuery(f"unknown filter mode {mode!r}; use one of: {', '.join(FilterMode)}") from None
        return replace(self, filter_mode=filter_mode)

    def with_vector(self, vector: Sequence[float]) -> "Query":
        """Attach a precomputed embedding so the embedding collaborator is skipped."""
        return replace(self, vector=_as_vector(vector))

    @property
    def needs_embedding(self) -> bool:
        return self.mode != SearchMode.FULL_TEXT and self.vector is None


def _as_vector(vector: Sequence[float]) -> tuple[float, ...]:
    return tuple(float(x) for x in vector)


def full_text(text: str) -> Query:
    return Query(mode=SearchMode.FULL_TEXT, text=text)


def semantic_from_text(text: str) -> Query:
    return Query(mode=SearchMode.SEMANTIC, text=text)


def semantic_from_vector(vector: Sequence[float]) -> Query:
    return Query(mode=SearchMode.SEMANTIC, vector=_as_vector(vector))


def hybrid(text: str, strategy: RerankStrategy | None = None) -> Query:
    return Query(mode=SearchMode.HYBRID, text=text, rerank_strategy=strategy)
