from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple, Protocol

from gitdex.constants import DEFAULT_LIMIT, HIGHLIGHT_WINDOW, RRF_OVERFETCH_FACTOR
from gitdex.database import serialize_embedding
from gitdex.embedder import Embedder, EmbeddingConfig, EmbeddingProvider
from gitdex.logging import get_logger
from gitdex.search.dispatcher import QueryDispatcher
from gitdex.search.filters import build_filter
from gitdex.search.query import Query, SearchMode, full_text, hybrid
from gitdex.search.rerank import RerankEngine
from gitdex.search.store import ItemRecord, SearchStore
from gitdex.search.text import TextRetrievalEngine
from gitdex.search.types import FilterMode, ItemType, RerankStrategy, SearchResult
from gitdex.search.vector import VectorRetrievalEngine

if TYPE_CHECKING:
    from gitdex.config import Config

_logger = get_logger(__name__)


class Indexable(Protocol):
    @property
    def item_id(self) -> str: ...

    def to_record(self) -> ItemRecord: ...

    def embedding_text(self) -> str: ...


class SaveResult(NamedTuple):
    updated: int
    unchanged: int


type ProgressCallback = Callable[[int, int], None]


class SearchIndex:
    """Owns the store, the embedder and the query pipeline built on top of them."""

    def __init__(
        self,
        db_path: Path,
        embedding: EmbeddingConfig,
        store: SearchStore | None = None,
        embedder: EmbeddingProvider | None = None,
        default_strategy: RerankStrategy | None = None,
        filter_mode: FilterMode = FilterMode.PREFILTER,
        overfetch: int = RRF_OVERFETCH_FACTOR,
        highlight_window: int = HIGHLIGHT_WINDOW,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.store = store or SearchStore(db_path, embedding.dim)
        self.embedder = embedder or Embedder(embedding)
        self.default_strategy = default_strategy
        self.default_limit = default_limit
        self.text_engine = TextRetrievalEngine(self.store, highlight_window)
        self.vector_engine = VectorRetrievalEngine(self.store, filter_mode, overfetch)
        self.dispatcher = QueryDispatcher(
            self.text_engine,
            self.vector_engine,
            embedder=self.embedder,
            reranker=RerankEngine(),
            overfetch=overfetch,
        )

    @classmethod
    def from_config(cls, config: "Config", embedder: EmbeddingProvider | None = None) -> "SearchIndex":
        return cls(
            config.search_db_path,
            config.embedding,
            embedder=embedder,
            default_strategy=config.rerank_strategy,
            filter_mode=config.filter_mode,
            overfetch=config.overfetch_factor,
            highlight_window=config.highlight_window,
            default_limit=config.default_limit,
        )

    async def connect(self) -> None:
        await self.store.connect()

    async def close(self) -> None:
        await self.store.close()

    async def save(self, item: Indexable, embed: bool = True) -> bool:
        """Store an item, embedding it first unless ``embed`` is False.

        Items saved without an embedding are found by full-text search only.
        """
        embedding = await self.embedder.embed_one(item.embedding_text()) if embed else None
        return await self.store.upsert(item.to_record(), serialize_embedding(embedding))

    async def save_repository(self, repository: Indexable, embed: bool = True) -> bool:
        return await self.save(repository, embed)

    async def save_issue(self, issue: Indexable, embed: bool = True) -> bool:
        return await self.save(issue, embed)

    async def save_pull_request(self, pull_request: Indexable, embed: bool = True) -> bool:
        return await self.save(pull_request, embed)

    async def save_many(
        self,
        items: Sequence[Indexable],
        progress_callback: ProgressCallback | None = None,
        batch_size: int = 50,
    ) -> SaveResult:
        """Batch save; uses ``Embedder.embed`` for whole batches when available."""
        updated = 0
        total = len(items)
        for batch_start in range(0, total, batch_size):
            batch = items[batch_start : batch_start + batch_size]
            texts = [item.embedding_text() for item in batch]
            if isinstance(self.embedder, Embedder):
                embeddings = list(await self.embedder.embed(texts))
            else:
                embeddings = [await self.embedder.embed_one(t) for t in texts]

            for i, (item, embedding) in enumerate(zip(batch, embeddings), start=batch_start + 1):
                if await self.store.upsert(item.to_record(), serialize_embedding(embedding)):
                    updated += 1
                if progress_callback:
                    progress_callback(i, total)

        _logger.info("Saved items", total=total, updated=updated)
        return SaveResult(updated=updated, unchanged=total - updated)

    async def build_indices(self) -> None:
        await self.store.build_fts_index()
        await self.store.build_vector_index()
        _logger.info("Built search indices", items=sum((await self.store.get_stats()).values()))

    async def search(self, query: Query) -> list[SearchResult]:
        """Run a query; hybrid queries without a strategy use ``default_strategy``."""
        if query.rerank_strategy is None and self.default_strategy is not None and query.mode == SearchMode.HYBRID:
            query = query.with_rerank_strategy(self.default_strategy)
        return await self.dispatcher.search(query)

    async def search_issues(
        self,
        text: str,
        repository: str | None = None,
        state: str | None = None,
        label: str | None = None,
        item_type: ItemType | None = None,
        limit: int | None = None,
        semantic: bool = True,
    ) -> list[SearchResult]:
        """Issue/PR search narrowed by repository, state and label."""
        if item_type is None:
            types = f"item_type IN ('{ItemType.ISSUE}', '{ItemType.PULL_REQUEST}')"
        else:
            types = f"item_type = '{ItemType(item_type)}'"
        filter = build_filter(repository=repository, state=state, label=label, extra=types)
        query = hybrid(text) if semantic else full_text(text)
        return await self.search(query.with_filter(filter).with_limit(self.default_limit if limit is None else limit))

    async def get_item(self, item_id: str) -> ItemRecord | None:
        return await self.store.get(item_id)

    async def delete(self, item_id: str) -> bool:
        return await self.store.delete(item_id)

    async def get_stats(self) -> dict[str, int]:
        return await self.store.get_stats()

    async def clear(self) -> int:
        return await self.store.clear_all()
