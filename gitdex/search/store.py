import hashlib
from dataclasses import dataclass, fields
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from gitdex.database import VectorDatabase, blob_dimension
from gitdex.logging import get_logger
from gitdex.search.errors import DimensionMismatch, IndexUnavailable, InvalidQuery
from gitdex.search.types import FilterMode, ItemType

_logger = get_logger(__name__)

# FTS5 column order; bm25() weights are positional in this order
TEXT_FIELDS: tuple[str, ...] = ("title", "body", "labels", "author")

# Metadata columns addressable from filter predicates
FILTER_COLUMNS: dict[str, str] = {
    name: f"i.{name}"
    for name in (
        "item_id",
        "item_type",
        "title",
        "body",
        "labels",
        "author",
        "repository",
        "number",
        "state",
        "assignees",
        "milestone",
        "language",
        "stars",
        "forks",
        "archived",
        "created_at",
        "updated_at",
        "closed_at",
        "merged_at",
    )
}

# sqlite-vec refuses KNN queries with k above this
VEC_MAX_K = 4096

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY,
    item_id TEXT NOT NULL UNIQUE,
    item_type TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    body TEXT NOT NULL DEFAULT '',
    labels TEXT NOT NULL DEFAULT '',
    author TEXT NOT NULL DEFAULT '',
    repository TEXT,
    number INTEGER,
    state TEXT,
    assignees TEXT,
    milestone TEXT,
    language TEXT,
    stars INTEGER,
    forks INTEGER,
    archived INTEGER,
    created_at TEXT,
    updated_at TEXT,
    closed_at TEXT,
    merged_at TEXT,
    data TEXT,
    embedding BLOB,
    content_hash TEXT,
    indexed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_items_type ON items(item_type);
CREATE INDEX IF NOT EXISTS idx_items_repository ON items(repository);

CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT);
"""

_FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
    title, body, labels, author,
    content='items',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS items_ai AFTER INSERT ON items BEGIN
    INSERT INTO items_fts(rowid, title, body, labels, author)
    VALUES (new.id, new.title, new.body, new.labels, new.author);
END;

CREATE TRIGGER IF NOT EXISTS items_ad AFTER DELETE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, title, body, labels, author)
    VALUES ('delete', old.id, old.title, old.body, old.labels, old.author);
END;

CREATE TRIGGER IF NOT EXISTS items_au AFTER UPDATE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, title, body, labels, author)
    VALUES ('delete', old.id, old.title, old.body, old.labels, old.author);
    INSERT INTO items_fts(rowid, title, body, labels, author)
    VALUES (new.id, new.title, new.body, new.labels, new.author);
END;
"""

_SQL_FTS_SEARCH = """
    SELECT i.id, i.item_id, i.item_type, i.title, i.body, i.labels, i.author,
           {bm25} AS score
    FROM items_fts
    JOIN items i ON i.id = items_fts.rowid
    WHERE items_fts MATCH ?{where}
    ORDER BY score, i.id
    LIMIT ?
"""

_SQL_VEC_PREFILTER = """
    SELECT i.id, i.item_id, i.item_type, vec_distance_cosine(v.embedding, ?) AS distance
    FROM items_vec v
    JOIN items i ON i.id = v.item_rowid
    {where}
    ORDER BY distance, i.id
    LIMIT ?
"""

_SQL_VEC_POSTFILTER = """
    SELECT i.id, i.item_id, i.item_type, knn.distance
    FROM (
        SELECT item_rowid, distance
        FROM items_vec
        WHERE embedding MATCH ? AND k = ?
    ) knn
    JOIN items i ON i.id = knn.item_rowid
    {where}
    ORDER BY knn.distance, i.id
    LIMIT ?
"""


@dataclass(frozen=True)
class ItemRecord:
    """Flattened, indexable form of a repository, issue or pull request."""

    item_id: str
    item_type: ItemType
    title: str = ""
    body: str = ""
    labels: str = ""
    author: str = ""
    repository: str | None = None
    number: int | None = None
    state: str | None = None
    assignees: str | None = None
    milestone: str | None = None
    language: str | None = None
    stars: int | None = None
    forks: int | None = None
    archived: bool | None = None
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    merged_at: str | None = None
    data: str | None = None


_RECORD_COLUMNS = tuple(f.name for f in fields(ItemRecord))


@dataclass(frozen=True)
class TextHit:
    row_id: int
    item_id: str
    item_type: ItemType
    score: float
    fields: dict[str, str]


@dataclass(frozen=True)
class VectorHit:
    row_id: int
    item_id: str
    item_type: ItemType
    similarity: float


class SearchStore(VectorDatabase):
    """SQLite-backed inverted index (FTS5) and vector index (sqlite-vec) over one items table.

    Both indexes are built explicitly; querying one that was never built raises
    IndexUnavailable rather than returning an empty result.
    """

    def __init__(self, db_path: Path, embedding_dim: int):
        super().__init__(db_path)
        self.embedding_dim = embedding_dim
        self._has_fts = False
        self._has_vec = False

    async def connect(self) -> None:
        await super().connect()
        await self._init_schema()

    async def _init_schema(self) -> None:
        await self.conn.executescript(SCHEMA)

        stored_dim = await self._get_meta("embedding_dim")
        if stored_dim is not None and int(stored_dim) != self.embedding_dim:
            _logger.info(
                "Embedding dimension changed, dropping vector index (stored=%s, current=%d)",
                stored_dim,
                self.embedding_dim,
            )
            async with self.transaction() as conn:
                await conn.execute("DROP TABLE IF EXISTS items_vec")
                await conn.execute("UPDATE items SET embedding = NULL, content_hash = NULL")
        async with self.transaction():
            await self._set_meta("embedding_dim", str(self.embedding_dim))

        self._has_fts = await self._table_exists("items_fts")
        self._has_vec = await self._table_exists("items_vec")

    async def _table_exists(self, name: str) -> bool:
        rows = await self.conn.execute_fetchall(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        )
        return bool(rows)

    async def _get_meta(self, key: str) -> str | None:
        rows = await self.conn.execute_fetchall("SELECT value FROM meta WHERE key = ?", (key,))
        return rows[0][0] if rows else None

    async def _set_meta(self, key: str, value: str) -> None:
        await self.conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value))

    @property
    def has_fts(self) -> bool:
        return self._has_fts

    @property
    def has_vec(self) -> bool:
        return self._has_vec

    @staticmethod
    def hash_content(record: ItemRecord, embedding: bytes | None) -> str:
        h = hashlib.md5()
        for name in _RECORD_COLUMNS:
            h.update(repr(getattr(record, name)).encode())
        h.update(embedding or b"")
        return h.hexdigest()

    async def build_fts_index(self) -> None:
        await self.conn.executescript(_FTS_SCHEMA)
        async with self.transaction() as conn:
            await conn.execute("INSERT INTO items_fts(items_fts) VALUES ('rebuild')")
        self._has_fts = True

    async def build_vector_index(self) -> None:
        async with self.transaction() as conn:
            await conn.execute(f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS items_vec USING vec0(
                    item_rowid INTEGER PRIMARY KEY,
                    embedding float[{self.embedding_dim}] distance_metric=cosine
                );
            """)
            await conn.execute("DELETE FROM items_vec")
            await conn.execute(
                "INSERT INTO items_vec(item_rowid, embedding) "
                "SELECT id, embedding FROM items WHERE embedding IS NOT NULL"
            )
        self._has_vec = True

    async def drop_indexes(self) -> None:
        await self.conn.executescript("""
            DROP TRIGGER IF EXISTS items_ai;
            DROP TRIGGER IF EXISTS items_ad;
            DROP TRIGGER IF EXISTS items_au;
            DROP TABLE IF EXISTS items_fts;
            DROP TABLE IF EXISTS items_vec;
        """)
        self._has_fts = False
        self._has_vec = False

    async def upsert(self, record: ItemRecord, embedding: bytes | None = None) -> bool:
        if embedding is not None and blob_dimension(embedding) != self.embedding_dim:
            raise DimensionMismatch(self.embedding_dim, blob_dimension(embedding))

        content_hash = self.hash_content(record, embedding)
        existing = await self.conn.execute_fetchall(
            "SELECT id, content_hash FROM items WHERE item_id = ?", (record.item_id,)
        )
        if existing and existing[0]["content_hash"] == content_hash:
            return False

        values = [getattr(record, name) for name in _RECORD_COLUMNS]
        now = datetime.now(UTC).isoformat()

        async with self.transaction() as conn:
            if existing:
                row_id = existing[0]["id"]
                assignments = ", ".join(f"{name} = ?" for name in _RECORD_COLUMNS)
                await conn.execute(
                    f"UPDATE items SET {assignments}, embedding = ?, content_hash = ?, indexed_at = ? WHERE id = ?",
                    (*values, embedding, content_hash, now, row_id),
                )
            else:
                columns = ", ".join(_RECORD_COLUMNS)
                placeholders = ",".join("?" * (len(_RECORD_COLUMNS) + 3))
                cursor = await conn.execute(
                    f"INSERT INTO items ({columns}, embedding, content_hash, indexed_at) VALUES ({placeholders})",
                    (*values, embedding, content_hash, now),
                )
                row_id = cursor.lastrowid

            # vec0 rows are replaced, never updated in place
            if self._has_vec:
                await conn.execute("DELETE FROM items_vec WHERE item_rowid = ?", (row_id,))
                if embedding is not None:
                    await conn.execute(
                        "INSERT INTO items_vec(item_rowid, embedding) VALUES (?, ?)",
                        (row_id, embedding),
                    )
        return True

    async def delete(self, item_id: str) -> bool:
        rows = await self.conn.execute_fetchall("SELECT id FROM items WHERE item_id = ?", (item_id,))
        if not rows:
            return False

        row_id = rows[0]["id"]
        async with self.transaction() as conn:
            if self._has_vec:
                await conn.execute("DELETE FROM items_vec WHERE item_rowid = ?", (row_id,))
            await conn.execute("DELETE FROM items WHERE id = ?", (row_id,))
        return True

    async def get(self, item_id: str) -> ItemRecord | None:
        columns = ", ".join(_RECORD_COLUMNS)
        rows = await self.conn.execute_fetchall(f"SELECT {columns} FROM items WHERE item_id = ?", (item_id,))
        if not rows:
            return None
        row = dict(rows[0])
        row["item_type"] = ItemType(row["item_type"])
        if row["archived"] is not None:
            row["archived"] = bool(row["archived"])
        return ItemRecord(**row)

    async def get_stats(self) -> dict[str, int]:
        rows = await self.conn.execute_fetchall("SELECT item_type, COUNT(*) AS cnt FROM items GROUP BY item_type")
        return {row["item_type"]: row["cnt"] for row in rows}

    async def clear_all(self) -> int:
        async with self.transaction() as conn:
            if self._has_vec:
                await conn.execute("DELETE FROM items_vec")
            cursor = await conn.execute("DELETE FROM items")
        return cursor.rowcount

    async def fts_search(
        self,
        match: str,
        weights: dict[str, float],
        limit: int,
        where: str | None = None,
        params: list | None = None,
    ) -> list[TextHit]:
        if not self._has_fts:
            raise IndexUnavailable("full-text", "build_fts_index() has not been run")

        bm25 = "bm25(items_fts, " + ", ".join(repr(float(weights.get(f, 1.0))) for f in TEXT_FIELDS) + ")"
        sql = _SQL_FTS_SEARCH.format(bm25=bm25, where=f" AND {where}" if where else "")

        try:
            rows = await self.conn.execute_fetchall(sql, [match, *(params or []), limit])
        except aiosqlite.OperationalError as e:
            if "fts5" in str(e):
                raise InvalidQuery(f"full-text expression rejected: {e}") from e
            raise

        # bm25() is lower-is-better
        return [
            TextHit(
                row_id=row["id"],
                item_id=row["item_id"],
                item_type=ItemType(row["item_type"]),
                score=-row["score"],
                fields={f: row[f] or "" for f in TEXT_FIELDS},
            )
            for row in rows
        ]

    async def vector_search(
        self,
        query_embedding: bytes,
        limit: int,
        where: str | None = None,
        params: list | None = None,
        filter_mode: FilterMode = FilterMode.PREFILTER,
        overfetch: int = 1,
    ) -> list[VectorHit]:
        if not self._has_vec:
            raise IndexUnavailable("vector", "build_vector_index() has not been run")

        where_sql = f"WHERE {where}" if where else ""
        if filter_mode == FilterMode.PREFILTER or not where:
            sql = _SQL_VEC_PREFILTER.format(where=where_sql)
            args = [query_embedding, *(params or []), limit]
        else:
            k = min(limit * max(overfetch, 1), VEC_MAX_K)
            sql = _SQL_VEC_POSTFILTER.format(where=where_sql)
            args = [query_embedding, k, *(params or []), limit]

        rows = await self.conn.execute_fetchall(sql, args)
        return [
            VectorHit(
                row_id=row["id"],
                item_id=row["item_id"],
                item_type=ItemType(row["item_type"]),
                similarity=1 - row["distance"],
            )
            for row in rows
        ]
