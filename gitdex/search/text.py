import math
import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass

from gitdex.constants import HIGHLIGHT_ELLIPSIS, HIGHLIGHT_WINDOW
from gitdex.logging import get_logger
from gitdex.search.errors import IndexUnavailable, InvalidQuery, UnknownField
from gitdex.search.filters import ParsedFilter, ensure_parsed
from gitdex.search.store import FILTER_COLUMNS, TEXT_FIELDS, SearchStore, TextHit
from gitdex.search.types import Highlight, RankedItem, ResultSource

_logger = get_logger(__name__)

_WORD_RE = re.compile(r"\w+")
_QUOTED_RE = re.compile(r'"([^"]*)"?')


@dataclass(frozen=True)
class QueryPart:
    """A bare term (one token) or a quoted phrase (contiguous tokens)."""

    tokens: tuple[str, ...]
    phrase: bool = False

    def to_fts(self) -> str:
        return '"' + " ".join(self.tokens).replace('"', '""') + '"'

    def pattern(self) -> re.Pattern:
        body = r"\W+".join(re.escape(t) for t in self.tokens)
        return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


def parse_text_query(text: str) -> list[QueryPart]:
    """Split query text into terms and double-quoted phrases.

    An unterminated quote runs to the end of the text. Quoted text with a
    single token is an ordinary term.
    """
    parts: list[QueryPart] = []
    pos = 0
    for match in _QUOTED_RE.finditer(text):
        parts.extend(QueryPart((t,)) for t in _WORD_RE.findall(text[pos : match.start()]))
        tokens = tuple(_WORD_RE.findall(match.group(1)))
        if tokens:
            parts.append(QueryPart(tokens, phrase=len(tokens) > 1))
        pos = match.end()
    parts.extend(QueryPart((t,)) for t in _WORD_RE.findall(text[pos:]))
    return parts


def build_match_expression(parts: list[QueryPart], fields: Collection[str] | None = None) -> str:
    """FTS5 MATCH expression: implicit AND of phrases, optionally column-filtered."""
    colspec = ""
    if fields is not None and set(fields) != set(TEXT_FIELDS):
        colspec = "{" + " ".join(f for f in TEXT_FIELDS if f in fields) + "} : "
    return " ".join(colspec + part.to_fts() for part in parts)


def extract_highlight(text: str, patterns: list[re.Pattern], window: int = HIGHLIGHT_WINDOW) -> str | None:
    """Excerpt of at most ``window`` characters around the earliest match, or None."""
    matches = [m for p in patterns if (m := p.search(text))]
    if not matches:
        return None
    first = min(matches, key=lambda m: (m.start(), -m.end()))
    start, end = first.span()

    if end - start >= window:
        lo, hi = start, start + window
    else:
        pad = (window - (end - start)) // 2
        lo = max(0, start - pad)
        hi = min(len(text), lo + window)
        lo = max(0, hi - window)

    excerpt = " ".join(text[lo:hi].split())
    if lo > 0:
        excerpt = HIGHLIGHT_ELLIPSIS + excerpt
    if hi < len(text):
        excerpt = excerpt + HIGHLIGHT_ELLIPSIS
    return excerpt


def validate_fields(
    search_fields: Collection[str] | None,
    field_boosts: Mapping[str, float] | None,
) -> None:
    for name in search_fields or ():
        if name not in TEXT_FIELDS:
            raise UnknownField(name, frozenset(TEXT_FIELDS))
    if search_fields is not None and not search_fields:
        raise InvalidQuery("search_fields must not be empty")
    for name, boost in (field_boosts or {}).items():
        if name not in TEXT_FIELDS:
            raise UnknownField(name, frozenset(TEXT_FIELDS))
        if isinstance(boost, bool) or not isinstance(boost, int | float):
            raise InvalidQuery(f"boost for {name!r} must be a number")
        if not math.isfinite(boost) or boost <= 0:
            raise InvalidQuery(f"boost for {name!r} must be positive and finite, got {boost}")


class TextRetrievalEngine:
    def __init__(self, store: SearchStore, highlight_window: int = HIGHLIGHT_WINDOW):
        self.store = store
        self.highlight_window = highlight_window

    async def search(
        self,
        text: str,
        limit: int,
        search_fields: Collection[str] | None = None,
        field_boosts: Mapping[str, float] | None = None,
        filter: str | ParsedFilter | None = None,
    ) -> list[RankedItem]:
        validate_fields(search_fields, field_boosts)
        parsed_filter = ensure_parsed(filter, FILTER_COLUMNS)

        parts = parse_text_query(text)
        if not parts:
            if not self.store.has_fts:
                raise IndexUnavailable("full-text", "build_fts_index() has not been run")
            return []

        match = build_match_expression(parts, search_fields)
        where, params = parsed_filter.to_sql(FILTER_COLUMNS) if parsed_filter else (None, [])
        weights = {f: float((field_boosts or {}).get(f, 1.0)) for f in TEXT_FIELDS}

        hits = await self.store.fts_search(match, weights, limit, where, params)
        _logger.debug("fts search", match=match, hits=len(hits))

        patterns = [part.pattern() for part in parts]
        fields = [f for f in TEXT_FIELDS if search_fields is None or f in search_fields]
        return [
            RankedItem(
                item_id=hit.item_id,
                item_type=hit.item_type,
                raw_score=hit.score,
                rank=rank,
                source=ResultSource.TEXT,
                highlights=self._highlights(hit, patterns, fields),
            )
            for rank, hit in enumerate(hits, start=1)
        ]

    def _highlights(self, hit: TextHit, patterns: list[re.Pattern], fields: list[str]) -> tuple[Highlight, ...]:
        highlights = []
        for name in fields:
            excerpt = extract_highlight(hit.fields.get(name, ""), patterns, self.highlight_window)
            if excerpt is not None:
                highlights.append(Highlight(field=name, excerpt=excerpt))
        return tuple(highlights)
