"""Metadata filter predicates.

Filters are SQL-style boolean expressions over the metadata columns of the
items table, e.g. ``state = 'open' AND stars >= 100``. They are parsed into a
small AST, checked against the known columns, and compiled into a
parameterised WHERE clause; literal values never reach the SQL text.

Supported grammar::

    expr       := and_expr (OR and_expr)*
    and_expr   := not_expr (AND not_expr)*
    not_expr   := NOT not_expr | '(' expr ')' | predicate
    predicate  := column op literal
                | column [NOT] IN '(' literal (',' literal)* ')'
                | column [NOT] LIKE string
                | column IS [NOT] NULL
    op         := = | != | <> | < | <= | > | >=
    literal    := 'string' | number | TRUE | FALSE
"""

import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass

from gitdex.search.errors import InvalidFilter, UnknownField

type Literal = str | int | float | bool

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    | (?P<string>'(?:[^']|'')*')
    | (?P<number>-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    | (?P<op><=|>=|!=|<>|=|<|>)
    | (?P<lparen>\()
    | (?P<rparen>\))
    | (?P<comma>,)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_KEYWORDS = frozenset({"AND", "OR", "NOT", "IN", "LIKE", "IS", "NULL", "TRUE", "FALSE"})

# nesting of parentheses and NOT
MAX_FILTER_DEPTH = 32


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


@dataclass(frozen=True)
class Comparison:
    column: str
    op: str
    value: Literal


@dataclass(frozen=True)
class InList:
    column: str
    values: tuple[Literal, ...]
    negated: bool = False


@dataclass(frozen=True)
class Like:
    column: str
    pattern: str
    negated: bool = False


@dataclass(frozen=True)
class IsNull:
    column: str
    negated: bool = False


@dataclass(frozen=True)
class And:
    operands: tuple["FilterExpr", ...]


@dataclass(frozen=True)
class Or:
    operands: tuple["FilterExpr", ...]


@dataclass(frozen=True)
class Not:
    operand: "FilterExpr"


type FilterExpr = Comparison | InList | Like | IsNull | And | Or | Not


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if not match:
            raise InvalidFilter(source, f"unexpected character {source[pos]!r}", pos)
        kind = match.lastgroup
        value = match.group()
        if kind == "ident" and value.upper() in _KEYWORDS:
            tokens.append(_Token("keyword", value.upper(), pos))
        elif kind != "ws":
            tokens.append(_Token(kind, value, pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.index = 0
        self.depth = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _error(self, reason: str, token: _Token | None = None) -> InvalidFilter:
        token = token or self._peek()
        pos = token.pos if token else len(self.source)
        return InvalidFilter(self.source, reason, pos)

    def _advance(self) -> _Token:
        token = self._peek()
        if token is None:
            raise self._error("unexpected end of filter")
        self.index += 1
        return token

    def _accept_keyword(self, *words: str) -> bool:
        token = self._peek()
        if token and token.kind == "keyword" and token.value in words:
            self.index += 1
            return True
        return False

    def _expect(self, kind: str, what: str) -> _Token:
        token = self._peek()
        if token is None or token.kind != kind:
            raise self._error(f"expected {what}")
        self.index += 1
        return token

    def parse(self) -> FilterExpr:
        if not self.tokens:
            raise InvalidFilter(self.source, "filter is empty")
        expr = self._or()
        if self._peek() is not None:
            raise self._error(f"unexpected token {self._peek().value!r}")
        return expr

    def _or(self) -> FilterExpr:
        operands = [self._and()]
        while self._accept_keyword("OR"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> FilterExpr:
        operands = [self._not()]
        while self._accept_keyword("AND"):
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _nested(self, token: _Token | None) -> None:
        self.depth += 1
        if self.depth > MAX_FILTER_DEPTH:
            raise self._error(f"filter nested deeper than {MAX_FILTER_DEPTH} levels", token)

    def _not(self) -> FilterExpr:
        token = self._peek()
        if self._accept_keyword("NOT"):
            self._nested(token)
            expr = Not(self._not())
            self.depth -= 1
            return expr
        if token and token.kind == "lparen":
            self._nested(token)
            self.index += 1
            expr = self._or()
            self._expect("rparen", "')'")
            self.depth -= 1
            return expr
        return self._predicate()

    def _predicate(self) -> FilterExpr:
        column = self._expect("ident", "column name").value
        token = self._advance()

        if token.kind == "op":
            if self._peek() and self._peek().kind == "keyword" and self._peek().value == "NULL":
                raise self._error("compare with NULL using IS NULL / IS NOT NULL")
            return Comparison(column, "!=" if token.value == "<>" else token.value, self._literal())

        if token.kind != "keyword":
            raise self._error(f"expected operator after {column!r}", token)

        if token.value == "IS":
            negated = self._accept_keyword("NOT")
            if not self._accept_keyword("NULL"):
                raise self._error("expected NULL after IS")
            return IsNull(column, negated)

        negated = token.value == "NOT"
        if negated:
            token = self._advance()
        if token.kind == "keyword" and token.value == "IN":
            self._expect("lparen", "'(' after IN")
            values = [self._literal()]
            while self._peek() and self._peek().kind == "comma":
                self.index += 1
                values.append(self._literal())
            self._expect("rparen", "')' closing IN list")
            return InList(column, tuple(values), negated)
        if token.kind == "keyword" and token.value == "LIKE":
            pattern = self._literal()
            if not isinstance(pattern, str):
                raise self._error("LIKE pattern must be a string")
            return Like(column, pattern, negated)

        raise self._error(f"unexpected token {token.value!r}", token)

    def _literal(self) -> Literal:
        token = self._advance()
        if token.kind == "string":
            return token.value[1:-1].replace("''", "'")
        if token.kind == "number":
            return float(token.value) if any(c in token.value for c in ".eE") else int(token.value)
        if token.kind == "keyword" and token.value in ("TRUE", "FALSE"):
            return token.value == "TRUE"
        raise self._error(f"expected a literal value, got {token.value!r}", token)


def _columns(expr: FilterExpr) -> list[str]:
    match expr:
        case Comparison(column=c) | InList(column=c) | Like(column=c) | IsNull(column=c):
            return [c]
        case And(operands=ops) | Or(operands=ops):
            return [c for op in ops for c in _columns(op)]
        case Not(operand=op):
            return _columns(op)


@dataclass(frozen=True)
class ParsedFilter:
    source: str
    expr: FilterExpr

    @property
    def columns(self) -> list[str]:
        return _columns(self.expr)

    def to_sql(self, column_map: Mapping[str, str]) -> tuple[str, list[Literal]]:
        """Compile to a WHERE clause fragment and its positional parameters.

        ``column_map`` maps filter column names to SQL expressions.
        """
        params: list[Literal] = []
        sql = _compile(self.expr, column_map, params)
        return sql, params


def _compile(expr: FilterExpr, column_map: Mapping[str, str], params: list[Literal]) -> str:
    match expr:
        case Comparison(column=c, op=op, value=v):
            params.append(v)
            return f"{column_map[c]} {op} ?"
        case InList(column=c, values=values, negated=negated):
            params.extend(values)
            placeholders = ",".join("?" * len(values))
            return f"{column_map[c]} {'NOT IN' if negated else 'IN'} ({placeholders})"
        case Like(column=c, pattern=pattern, negated=negated):
            params.append(pattern)
            return f"{column_map[c]} {'NOT LIKE' if negated else 'LIKE'} ?"
        case IsNull(column=c, negated=negated):
            return f"{column_map[c]} IS {'NOT NULL' if negated else 'NULL'}"
        case And(operands=ops):
            return "(" + " AND ".join(_compile(op, column_map, params) for op in ops) + ")"
        case Or(operands=ops):
            return "(" + " OR ".join(_compile(op, column_map, params) for op in ops) + ")"
        case Not(operand=op):
            return f"NOT ({_compile(op, column_map, params)})"


def parse_filter(source: str, known_columns: Collection[str] | None = None) -> ParsedFilter:
    """Parse a filter string; raises InvalidFilter or UnknownField."""
    parsed = ParsedFilter(source, _Parser(source).parse())
    if known_columns is not None:
        for column in parsed.columns:
            if column not in known_columns:
                raise UnknownField(column, frozenset(known_columns))
    return parsed


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def combine_filters(*filters: str | None) -> str | None:
    parts = [f for f in filters if f]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return " AND ".join(f"({p})" for p in parts)


def build_filter(
    repository: str | None = None,
    state: str | None = None,
    label: str | None = None,
    item_type: str | None = None,
    extra: str | None = None,
) -> str | None:
    """Build a filter from the common issue/PR facets, AND-ed with ``extra``."""
    clauses = []
    if repository:
        clauses.append(f"repository = {quote_literal(repository)}")
    if state:
        clauses.append(f"state = {quote_literal(state)}")
    if label:
        escaped = label.replace("'", "''")
        clauses.append(f"labels LIKE '%{escaped}%'")
    if item_type:
        clauses.append(f"item_type = {quote_literal(item_type)}")
    base = " AND ".join(clauses) or None
    return combine_filters(base, extra)


def ensure_parsed(filter: str | ParsedFilter | None, known_columns: Collection[str]) -> ParsedFilter | None:
    if filter is None or isinstance(filter, ParsedFilter):
        return filter
    return parse_filter(filter, known_columns)
