import pytest

from gitdex.search.errors import IndexUnavailable, InvalidFilter, InvalidQuery, UnknownField
from gitdex.search.store import ItemRecord, SearchStore
from gitdex.search.text import (
    QueryPart,
    TextRetrievalEngine,
    build_match_expression,
    extract_highlight,
    parse_text_query,
)
from gitdex.search.types import ItemType, ResultSource
from tests.conftest import issue


def ids(items) -> list[str]:
    return [i.item_id for i in items]


class TestParseTextQuery:
    def test_terms(self):
        assert parse_text_query("yaml config") == [QueryPart(("yaml",)), QueryPart(("config",))]

    def test_phrase(self):
        parts = parse_text_query('crash "nested anchors" now')
        assert parts == [
            QueryPart(("crash",)),
            QueryPart(("nested", "anchors"), phrase=True),
            QueryPart(("now",)),
        ]

    def test_unterminated_quote_runs_to_end(self):
        assert parse_text_query('fix "nested anchors') == [
            QueryPart(("fix",)),
            QueryPart(("nested", "anchors"), phrase=True),
        ]

    def test_single_word_quote_is_a_term(self):
        assert parse_text_query('"yaml"') == [QueryPart(("yaml",))]

    def test_punctuation_only(self):
        assert parse_text_query("!!! ...") == []


class TestBuildMatchExpression:
    def test_all_fields(self):
        parts = parse_text_query('yaml "nested anchors"')
        assert build_match_expression(parts) == '"yaml" "nested anchors"'

    def test_restricted_fields(self):
        parts = parse_text_query("yaml")
        assert build_match_expression(parts, ["body", "title"]) == '{title body} : "yaml"'


class TestExtractHighlight:
    def test_short_text_is_returned_whole(self):
        patterns = [QueryPart(("anchors",)).pattern()]
        assert extract_highlight("nested anchors here", patterns) == "nested anchors here"

    def test_no_match(self):
        assert extract_highlight("nothing to see", [QueryPart(("yaml",)).pattern()]) is None

    def test_long_text_is_windowed(self):
        text = "a " * 200 + "needle" + " b" * 200
        excerpt = extract_highlight(text, [QueryPart(("needle",)).pattern()], window=40)

        assert "needle" in excerpt
        assert excerpt.startswith("…")
        assert excerpt.endswith("…")
        assert len(excerpt) <= 42

    def test_matches_on_token_boundaries_only(self):
        patterns = [QueryPart(("crash",)).pattern()]
        assert extract_highlight("crashes everywhere", patterns) is None
        assert extract_highlight("a Crash!", patterns) == "a Crash!"

    def test_phrase_allows_punctuation_between_tokens(self):
        patterns = [QueryPart(("nested", "anchors"), phrase=True).pattern()]
        assert extract_highlight("nested, anchors", patterns) == "nested, anchors"


class TestTextRetrievalEngine:
    @pytest.mark.asyncio
    async def test_ranked_results(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)
        items = await engine.search("config", 10)

        assert set(ids(items)) == {"issue:1", "issue:3", "pull_request:4", "repository:5"}
        assert [i.rank for i in items] == [1, 2, 3, 4]
        assert all(i.source == ResultSource.TEXT for i in items)
        scores = [i.raw_score for i in items]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_terms_are_anded(self, indexed_store: SearchStore):
        items = await TextRetrievalEngine(indexed_store).search("yaml crash", 10)
        assert set(ids(items)) == {"issue:1", "pull_request:4"}

    @pytest.mark.asyncio
    async def test_phrase_match(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)

        assert set(ids(await engine.search('"nested anchors"', 10))) == {"issue:1", "pull_request:4"}
        assert await engine.search('"anchors nested"', 10) == []

    @pytest.mark.asyncio
    async def test_limit(self, indexed_store: SearchStore):
        assert len(await TextRetrievalEngine(indexed_store).search("config", 2)) == 2

    @pytest.mark.asyncio
    async def test_field_allow_list(self, indexed_store: SearchStore):
        items = await TextRetrievalEngine(indexed_store).search("config", 10, search_fields=["title"])

        assert set(ids(items)) == {"issue:1", "issue:3"}
        for item in items:
            assert [h.field for h in item.highlights] == ["title"]

    @pytest.mark.asyncio
    async def test_boosts_reorder(self, store: SearchStore):
        await store.upsert(issue(10, "widget", "unrelated words in a longer body"))
        await store.upsert(issue(11, "something else", "widget"))
        await store.build_fts_index()
        engine = TextRetrievalEngine(store)

        by_title = await engine.search("widget", 10, field_boosts={"title": 10.0})
        by_body = await engine.search("widget", 10, field_boosts={"body": 10.0})

        assert ids(by_title) == ["issue:10", "issue:11"]
        assert ids(by_body) == ["issue:11", "issue:10"]

    @pytest.mark.asyncio
    async def test_highlights(self, indexed_store: SearchStore):
        items = await TextRetrievalEngine(indexed_store).search("anchors", 10)
        first = next(i for i in items if i.item_id == "issue:1")

        assert [h.field for h in first.highlights] == ["body"]
        assert "anchors" in first.highlights[0].excerpt

    @pytest.mark.asyncio
    async def test_filter(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)

        items = await engine.search("config", 10, filter="state = 'closed'")
        assert ids(items) == ["issue:3"]

        items = await engine.search("config", 10, filter="item_type IN ('pull_request', 'repository')")
        assert set(ids(items)) == {"pull_request:4", "repository:5"}

    @pytest.mark.asyncio
    async def test_no_matches_is_empty(self, indexed_store: SearchStore):
        assert await TextRetrievalEngine(indexed_store).search("kubernetes", 10) == []

    @pytest.mark.asyncio
    async def test_no_tokens_is_empty(self, indexed_store: SearchStore):
        assert await TextRetrievalEngine(indexed_store).search("!!!", 10) == []

    @pytest.mark.asyncio
    async def test_index_not_built(self, store: SearchStore):
        await store.upsert(issue(1, "crash"))
        engine = TextRetrievalEngine(store)

        with pytest.raises(IndexUnavailable):
            await engine.search("crash", 10)
        with pytest.raises(IndexUnavailable):
            await engine.search("!!!", 10)

    @pytest.mark.asyncio
    async def test_empty_index_is_not_unavailable(self, store: SearchStore):
        await store.build_fts_index()
        assert await TextRetrievalEngine(store).search("crash", 10) == []

    @pytest.mark.asyncio
    async def test_index_tracks_later_writes(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)
        await indexed_store.upsert(
            ItemRecord(item_id="issue:7", item_type=ItemType.ISSUE, title="Kubernetes operator flake")
        )
        assert ids(await engine.search("kubernetes", 10)) == ["issue:7"]

        await indexed_store.delete("issue:7")
        assert await engine.search("kubernetes", 10) == []

    @pytest.mark.asyncio
    async def test_invalid_fields(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)

        with pytest.raises(UnknownField):
            await engine.search("config", 10, search_fields=["summary"])
        with pytest.raises(UnknownField):
            await engine.search("config", 10, field_boosts={"summary": 2.0})
        with pytest.raises(InvalidQuery):
            await engine.search("config", 10, field_boosts={"title": 0})
        with pytest.raises(InvalidQuery):
            await engine.search("config", 10, search_fields=[])

    @pytest.mark.asyncio
    async def test_invalid_filter(self, indexed_store: SearchStore):
        engine = TextRetrievalEngine(indexed_store)

        with pytest.raises(InvalidFilter):
            await engine.search("config", 10, filter="state ==")
        with pytest.raises(UnknownField):
            await engine.search("config", 10, filter="priority = 1")
