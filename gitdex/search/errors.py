class SearchError(Exception):
    """Base class for request-scoped search failures. Never retried internally."""


class InvalidQuery(SearchError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid query: {reason}")


class EmptyQuery(InvalidQuery):
    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"text is required for {mode} search")


class InvalidFilter(SearchError):
    def __init__(self, filter: str, reason: str, position: int | None = None):
        self.filter = filter
        self.reason = reason
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Invalid filter {filter!r}{where}: {reason}")


class UnknownField(SearchError):
    def __init__(self, field: str, known: tuple[str, ...] | frozenset[str] = ()):
        self.field = field
        self.known = tuple(sorted(known))
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"Unknown field: {field}{hint}")


class InvalidStrategy(SearchError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid rerank strategy: {reason}")


class StrategyDataMismatch(SearchError):
    def __init__(self, strategy: str, missing: str):
        self.strategy = strategy
        self.missing = missing
        super().__init__(f"{strategy} strategy requires {missing} results, but none were retrieved")


class EmbeddingUnavailable(SearchError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Embedding unavailable: {reason}")


class DimensionMismatch(SearchError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: index expects {expected}, got {actual}")


class IndexUnavailable(SearchError):
    def __init__(self, index: str, detail: str | None = None):
        self.index = index
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(f"{index} index is not available{suffix}")
