from gitdex.search.dispatcher import QueryDispatcher
from gitdex.search.errors import (
    DimensionMismatch,
    EmbeddingUnavailable,
    EmptyQuery,
    IndexUnavailable,
    InvalidFilter,
    InvalidQuery,
    InvalidStrategy,
    SearchError,
    StrategyDataMismatch,
    UnknownField,
)
from gitdex.search.index import SearchIndex
from gitdex.search.query import Query, SearchMode, full_text, hybrid, semantic_from_text, semantic_from_vector
from gitdex.search.rerank import RerankEngine
from gitdex.search.store import ItemRecord, SearchStore
from gitdex.search.text import TextRetrievalEngine
from gitdex.search.types import (
    RRF,
    FilterMode,
    Highlight,
    ItemType,
    Linear,
    RankedItem,
    RerankStrategy,
    ResultSource,
    SearchResult,
    TextOnly,
    VectorOnly,
)
from gitdex.search.vector import VectorRetrievalEngine

__all__ = [
    "RRF",
    "DimensionMismatch",
    "EmbeddingUnavailable",
    "EmptyQuery",
    "FilterMode",
    "Highlight",
    "IndexUnavailable",
    "InvalidFilter",
    "InvalidQuery",
    "InvalidStrategy",
    "ItemRecord",
    "ItemType",
    "Linear",
    "Query",
    "QueryDispatcher",
    "RankedItem",
    "RerankEngine",
    "RerankStrategy",
    "ResultSource",
    "SearchError",
    "SearchIndex",
    "SearchMode",
    "SearchResult",
    "SearchStore",
    "StrategyDataMismatch",
    "TextOnly",
    "TextRetrievalEngine",
    "UnknownField",
    "VectorOnly",
    "VectorRetrievalEngine",
    "full_text",
    "hybrid",
    "semantic_from_text",
    "semantic_from_vector",
]
