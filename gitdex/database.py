import contextlib
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import aiosqlite
import numpy as np
import sqlite_vec

PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=30000;",
    "PRAGMA temp_store=MEMORY;",
)

# vec0 float columns are packed little-endian float32
_FLOAT32 = np.dtype("<f4")


def serialize_embedding(embedding: np.ndarray | Sequence[float] | None) -> bytes | None:
    if embedding is None:
        return None
    arr = np.asarray(embedding, dtype=_FLOAT32)
    if arr.ndim != 1:
        raise ValueError(f"embedding must be one-dimensional, got shape {arr.shape}")
    return arr.tobytes()


def deserialize_embedding(data: bytes | None) -> np.ndarray | None:
    if data is None:
        return None
    arr = np.frombuffer(data, dtype=_FLOAT32).astype(np.float32)
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else arr


def blob_dimension(data: bytes) -> int:
    return len(data) // _FLOAT32.itemsize


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        for pragma in PRAGMAS:
            await self._conn.execute(pragma)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError(f"{type(self).__name__} not connected")
        return self._conn

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back on any error (including cancellation)."""
        conn = self.conn
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()


class VectorDatabase(Database):
    async def connect(self) -> None:
        await super().connect()
        await self.conn.enable_load_extension(True)
        await self.conn.load_extension(sqlite_vec.loadable_path())
        await self.conn.enable_load_extension(False)
