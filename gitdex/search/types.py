import math
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from gitdex.constants import DEFAULT_TEXT_WEIGHT, DEFAULT_VECTOR_WEIGHT, RRF_K
from gitdex.search.errors import InvalidStrategy


class ItemType(StrEnum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    REPOSITORY = "repository"


class ResultSource(StrEnum):
    TEXT = "text"
    VECTOR = "vector"


class FilterMode(StrEnum):
    """When the metadata predicate is applied relative to nearest-neighbour search."""

    PREFILTER = "prefilter"
    POSTFILTER = "postfilter"


def _check_param(strategy: str, name: str, value: float) -> None:
    if not isinstance(value, int | float) or isinstance(value, bool):
        raise InvalidStrategy(f"{strategy}.{name} must be a number, got {type(value).__name__}")
    if not math.isfinite(value) or value < 0:
        raise InvalidStrategy(f"{strategy}.{name} must be finite and non-negative, got {value}")


@dataclass(frozen=True)
class RRF:
    """Reciprocal rank fusion: score = sum over lists of 1 / (k + rank)."""

    name: ClassVar[str] = "rrf"

    k: float = RRF_K

    def __post_init__(self):
        _check_param("RRF", "k", self.k)


@dataclass(frozen=True)
class Linear:
    """Weighted sum of max-normalised raw scores."""

    name: ClassVar[str] = "linear"

    text_weight: float = DEFAULT_TEXT_WEIGHT
    vector_weight: float = DEFAULT_VECTOR_WEIGHT

    def __post_init__(self):
        _check_param("Linear", "text_weight", self.text_weight)
        _check_param("Linear", "vector_weight", self.vector_weight)


@dataclass(frozen=True)
class TextOnly:
    name: ClassVar[str] = "text_only"


@dataclass(frozen=True)
class VectorOnly:
    name: ClassVar[str] = "vector_only"


type RerankStrategy = RRF | Linear | TextOnly | VectorOnly


@dataclass(frozen=True)
class Highlight:
    field: str
    excerpt: str


@dataclass(frozen=True)
class RankedItem:
    """One hit from a single retrieval path, before fusion."""

    item_id: str
    item_type: ItemType
    raw_score: float
    rank: int
    source: ResultSource
    highlights: tuple[Highlight, ...] = ()


@dataclass(frozen=True)
class SearchResult:
    """Fused result with per-path breakdown."""

    item_id: str
    item_type: ItemType
    fused_score: float
    final_rank: int
    highlights: tuple[Highlight, ...] = ()

    # Individual ranks/scores for debugging/tuning
    text_rank: int | None = None
    text_score: float | None = None
    vector_rank: int | None = None
    vector_score: float | None = None
