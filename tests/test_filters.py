import pytest

from gitdex.search.errors import InvalidFilter, UnknownField
from gitdex.search.filters import (
    And,
    MAX_FILTER_DEPTH,
    Comparison,
    InList,
    IsNull,
    Like,
    Not,
    Or,
    build_filter,
    combine_filters,
    parse_filter,
    quote_literal,
)
from gitdex.search.store import FILTER_COLUMNS


class TestParseFilter:
    def test_simple_comparison(self):
        parsed = parse_filter("state = 'open'")
        assert parsed.expr == Comparison("state", "=", "open")

    def test_numbers_and_booleans(self):
        assert parse_filter("stars >= 100").expr == Comparison("stars", ">=", 100)
        assert parse_filter("stars < 2.5").expr == Comparison("stars", "<", 2.5)
        assert parse_filter("archived = TRUE").expr == Comparison("archived", "=", True)

    def test_not_equal_spellings(self):
        assert parse_filter("state <> 'open'").expr == parse_filter("state != 'open'").expr

    def test_and_binds_tighter_than_or(self):
        parsed = parse_filter("state = 'open' OR stars > 1 AND language = 'Go'")
        assert parsed.expr == Or(
            (
                Comparison("state", "=", "open"),
                And((Comparison("stars", ">", 1), Comparison("language", "=", "Go"))),
            )
        )

    def test_parentheses_and_not(self):
        parsed = parse_filter("NOT (state = 'open' OR state = 'closed')")
        assert isinstance(parsed.expr, Not)
        assert isinstance(parsed.expr.operand, Or)

    def test_in_like_is_null(self):
        assert parse_filter("state IN ('open', 'closed')").expr == InList("state", ("open", "closed"))
        assert parse_filter("state NOT IN ('open')").expr == InList("state", ("open",), negated=True)
        assert parse_filter("labels LIKE '%bug%'").expr == Like("labels", "%bug%")
        assert parse_filter("milestone IS NULL").expr == IsNull("milestone")
        assert parse_filter("closed_at is not null").expr == IsNull("closed_at", negated=True)

    def test_escaped_quote_in_string(self):
        assert parse_filter("title = 'it''s broken'").expr == Comparison("title", "=", "it's broken")

    def test_columns(self):
        parsed = parse_filter("state = 'open' AND (stars > 1 OR language IS NULL)")
        assert parsed.columns == ["state", "stars", "language"]


class TestInvalidFilter:
    @pytest.mark.parametrize(
        "source",
        [
            "",
            "state =",
            "state = 'open' AND",
            "(state = 'open'",
            "state 'open'",
            "state = NULL",
            "state IS 'open'",
            "labels LIKE 5",
            "state = 'open' extra",
            "stars > #",
        ],
    )
    def test_rejected(self, source):
        with pytest.raises(InvalidFilter):
            parse_filter(source)

    def test_reports_position(self):
        with pytest.raises(InvalidFilter) as exc:
            parse_filter("stars > #")
        assert exc.value.position == 8
        assert exc.value.filter == "stars > #"

    def test_deep_nesting(self):
        source = "(" * 2000 + "state = 'x'" + ")" * 2000
        with pytest.raises(InvalidFilter) as exc:
            parse_filter(source)
        assert exc.value.position == MAX_FILTER_DEPTH

        with pytest.raises(InvalidFilter):
            parse_filter("NOT " * 500 + "state = 'x'")

    def test_nesting_within_limit(self):
        depth = MAX_FILTER_DEPTH
        expr = parse_filter("(" * depth + "state = 'x'" + ")" * depth).expr
        assert expr == Comparison("state", "=", "x")

    def test_unknown_column(self):
        with pytest.raises(UnknownField) as exc:
            parse_filter("colour = 'red'", FILTER_COLUMNS)
        assert exc.value.field == "colour"
        assert "state" in exc.value.known


class TestToSql:
    def test_literals_become_parameters(self):
        sql, params = parse_filter("state = 'open' AND stars >= 10").to_sql(FILTER_COLUMNS)

        assert sql == "(i.state = ? AND i.stars >= ?)"
        assert params == ["open", 10]

    def test_injection_stays_a_literal(self):
        sql, params = parse_filter("title = 'x''; DROP TABLE items; --'").to_sql(FILTER_COLUMNS)

        assert "DROP" not in sql
        assert params == ["x'; DROP TABLE items; --"]

    def test_in_and_not(self):
        sql, params = parse_filter("NOT state IN ('open', 'closed')").to_sql(FILTER_COLUMNS)

        assert sql == "NOT (i.state IN (?,?))"
        assert params == ["open", "closed"]


class TestBuildFilter:
    def test_no_facets(self):
        assert build_filter() is None

    def test_facets_are_anded(self):
        source = build_filter(repository="octo/widgets", state="open", label="bug")
        assert source == "repository = 'octo/widgets' AND state = 'open' AND labels LIKE '%bug%'"
        assert parse_filter(source, FILTER_COLUMNS).columns == ["repository", "state", "labels"]

    def test_extra_is_parenthesised(self):
        source = build_filter(state="open", extra="stars > 1 OR forks > 1")
        assert source == "(state = 'open') AND (stars > 1 OR forks > 1)"

    def test_quotes_are_escaped(self):
        assert quote_literal("o'brien") == "'o''brien'"
        assert parse_filter(build_filter(repository="o'brien/x")).expr == Comparison("repository", "=", "o'brien/x")

    def test_combine_skips_empty(self):
        assert combine_filters(None, "", "state = 'open'") == "state = 'open'"
