from collections.abc import Sequence

import numpy as np

from gitdex.constants import RRF_OVERFETCH_FACTOR
from gitdex.database import serialize_embedding
from gitdex.logging import get_logger
from gitdex.search.errors import DimensionMismatch, InvalidQuery
from gitdex.search.filters import ParsedFilter, ensure_parsed
from gitdex.search.store import FILTER_COLUMNS, SearchStore
from gitdex.search.types import FilterMode, RankedItem, ResultSource

_logger = get_logger(__name__)


def check_vector(vector: np.ndarray | Sequence[float], expected_dim: int) -> np.ndarray:
    """Validate a query vector against the index dimensionality; never pads or truncates."""
    arr = np.asarray(vector, dtype=np.float32)
    if arr.ndim != 1:
        raise InvalidQuery(f"query vector must be one-dimensional, got shape {arr.shape}")
    if arr.shape[0] != expected_dim:
        raise DimensionMismatch(expected_dim, arr.shape[0])
    if not np.all(np.isfinite(arr)):
        raise InvalidQuery("query vector contains non-finite values")
    if not np.any(arr):
        raise InvalidQuery("query vector is all zeros; cosine similarity is undefined")
    return arr


class VectorRetrievalEngine:
    """Nearest-neighbour retrieval, ordered by cosine similarity descending.

    With ``FilterMode.PREFILTER`` the predicate selects candidates first and
    the top-K is exact over them. With ``FilterMode.POSTFILTER`` the K nearest
    (times ``overfetch``) are taken from the whole index and then filtered, so
    selective filters can return fewer than K items.
    """

    def __init__(
        self,
        store: SearchStore,
        filter_mode: FilterMode = FilterMode.PREFILTER,
        overfetch: int = RRF_OVERFETCH_FACTOR,
    ):
        self.store = store
        self.filter_mode = filter_mode
        self.overfetch = overfetch

    @property
    def dim(self) -> int:
        return self.store.embedding_dim

    async def search(
        self,
        vector: np.ndarray | Sequence[float],
        limit: int,
        filter: str | ParsedFilter | None = None,
        filter_mode: FilterMode | None = None,
    ) -> list[RankedItem]:
        arr = check_vector(vector, self.dim)
        parsed_filter = ensure_parsed(filter, FILTER_COLUMNS)
        mode = filter_mode or self.filter_mode

        where, params = parsed_filter.to_sql(FILTER_COLUMNS) if parsed_filter else (None, [])
        hits = await self.store.vector_search(
            serialize_embedding(arr),
            limit,
            where,
            params,
            filter_mode=mode,
            overfetch=self.overfetch,
        )
        _logger.debug("vector search", filter_mode=str(mode), hits=len(hits))

        return [
            RankedItem(
                item_id=hit.item_id,
                item_type=hit.item_type,
                raw_score=hit.similarity,
                rank=rank,
                source=ResultSource.VECTOR,
            )
            for rank, hit in enumerate(hits, start=1)
        ]
