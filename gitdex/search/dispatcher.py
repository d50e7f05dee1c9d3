import asyncio
import time

import numpy as np

from gitdex.constants import RRF_OVERFETCH_FACTOR
from gitdex.embedder import EmbeddingProvider
from gitdex.logging import get_logger
from gitdex.search.errors import (
    EmbeddingUnavailable,
    EmptyQuery,
    InvalidQuery,
    InvalidStrategy,
    SearchError,
    StrategyDataMismatch,
)
from gitdex.search.filters import ParsedFilter, parse_filter
from gitdex.search.query import Query, SearchMode
from gitdex.search.rerank import RerankEngine
from gitdex.search.store import FILTER_COLUMNS
from gitdex.search.text import TextRetrievalEngine, validate_fields
from gitdex.search.types import RRF, Linear, RankedItem, RerankStrategy, SearchResult, TextOnly, VectorOnly
from gitdex.search.vector import VectorRetrievalEngine

_logger = get_logger(__name__)


def _resolve_strategy(query: Query) -> RerankStrategy:
    strategy = query.rerank_strategy
    match query.mode, strategy:
        case SearchMode.HYBRID, None:
            return Linear()
        case SearchMode.HYBRID, RRF() | Linear() | TextOnly() | VectorOnly():
            return strategy
        case SearchMode.FULL_TEXT, None | TextOnly():
            return TextOnly()
        case SearchMode.SEMANTIC, None | VectorOnly():
            return VectorOnly()
        case SearchMode.FULL_TEXT, VectorOnly():
            raise StrategyDataMismatch(strategy.name, "vector")
        case SearchMode.SEMANTIC, TextOnly():
            raise StrategyDataMismatch(strategy.name, "text")
        case _, RRF() | Linear():
            raise InvalidStrategy(f"{strategy.name} fusion needs both result lists; use a hybrid query")
        case _:
            raise InvalidStrategy(f"unsupported strategy {type(strategy).__name__}")


class QueryDispatcher:
    """Routes a Query to the text and/or vector engines and fuses the results.

    Hybrid queries run both engines concurrently in one TaskGroup; if either
    fails the other is cancelled and the whole request fails. Nothing is
    retried here.
    """

    def __init__(
        self,
        text_engine: TextRetrievalEngine,
        vector_engine: VectorRetrievalEngine,
        embedder: EmbeddingProvider | None = None,
        reranker: RerankEngine | None = None,
        overfetch: int = RRF_OVERFETCH_FACTOR,
    ):
        self.text_engine = text_engine
        self.vector_engine = vector_engine
        self.embedder = embedder
        self.reranker = reranker or RerankEngine()
        self.overfetch = overfetch

    def validate(self, query: Query) -> tuple[ParsedFilter | None, RerankStrategy]:
        if isinstance(query.limit, bool) or not isinstance(query.limit, int) or query.limit <= 0:
            raise InvalidQuery(f"limit must be a positive integer, got {query.limit!r}")
        if isinstance(query.offset, bool) or not isinstance(query.offset, int) or query.offset < 0:
            raise InvalidQuery(f"offset must be a non-negative integer, got {query.offset!r}")

        has_text = bool(query.text and query.text.strip())
        match query.mode:
            case SearchMode.FULL_TEXT | SearchMode.HYBRID if not has_text:
                raise EmptyQuery(query.mode)
            case SearchMode.SEMANTIC if not has_text and query.vector is None:
                raise EmptyQuery(query.mode)

        validate_fields(query.search_fields, query.field_boosts)
        parsed_filter = parse_filter(query.filter, FILTER_COLUMNS) if query.filter else None
        return parsed_filter, _resolve_strategy(query)

    async def _embed(self, query: Query) -> np.ndarray:
        if query.vector is not None:
            return np.asarray(query.vector, dtype=np.float32)
        if self.embedder is None:
            raise EmbeddingUnavailable("no embedding provider configured")

        try:
            embedding = await self.embedder.embed_one(query.text)
        except SearchError:
            raise
        except Exception as e:
            raise EmbeddingUnavailable(f"{type(e).__name__}: {e}") from e

        arr = np.asarray(embedding, dtype=np.float32)
        if arr.ndim != 1 or arr.shape[0] != self.vector_engine.dim:
            raise EmbeddingUnavailable(
                f"embedding has dimension {arr.shape[-1] if arr.ndim else 0}, "
                f"vector index expects {self.vector_engine.dim}"
            )
        return arr

    async def _search_text(self, query: Query, parsed_filter: ParsedFilter | None, limit: int) -> list[RankedItem]:
        return await self.text_engine.search(
            query.text,
            limit,
            search_fields=query.search_fields,
            field_boosts=query.field_boosts,
            filter=parsed_filter,
        )

    async def _search_vector(
        self,
        query: Query,
        vector: np.ndarray,
        parsed_filter: ParsedFilter | None,
        limit: int,
    ) -> list[RankedItem]:
        return await self.vector_engine.search(vector, limit, filter=parsed_filter, filter_mode=query.filter_mode)

    async def _search_both(
        self,
        query: Query,
        vector: np.ndarray,
        parsed_filter: ParsedFilter | None,
        limit: int,
    ) -> tuple[list[RankedItem], list[RankedItem]]:
        try:
            async with asyncio.TaskGroup() as tg:
                text_task = tg.create_task(self._search_text(query, parsed_filter, limit))
                vector_task = tg.create_task(self._search_vector(query, vector, parsed_filter, limit))
        except ExceptionGroup:
            # surface one typed error, text path first for determinism
            for task in (text_task, vector_task):
                if task.done() and not task.cancelled() and task.exception() is not None:
                    raise task.exception() from None
            raise
        return text_task.result(), vector_task.result()

    async def search(self, query: Query) -> list[SearchResult]:
        start = time.perf_counter()
        try:
            parsed_filter, strategy = self.validate(query)
            wanted = query.offset + query.limit

            match query.mode:
                case SearchMode.FULL_TEXT:
                    text_items = await self._search_text(query, parsed_filter, wanted)
                    vector_items = None
                case SearchMode.SEMANTIC:
                    vector = await self._embed(query)
                    text_items = None
                    vector_items = await self._search_vector(query, vector, parsed_filter, wanted)
                case SearchMode.HYBRID:
                    vector = await self._embed(query)
                    text_items, vector_items = await self._search_both(
                        query, vector, parsed_filter, wanted * self.overfetch
                    )

            results = self.reranker.rerank(text_items, vector_items, strategy, query.offset, query.limit)
        except SearchError as e:
            _logger.warning("search failed", mode=str(query.mode), error=str(e), error_type=type(e).__name__)
            raise

        _logger.debug(
            "search complete",
            mode=str(query.mode),
            strategy=strategy.name,
            results=len(results),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return results
