import hashlib
from collections.abc import AsyncGenerator
from pathlib import Path

import numpy as np
import pytest_asyncio

from gitdex.database import serialize_embedding
from gitdex.search.store import ItemRecord, SearchStore
from gitdex.search.types import ItemType

TEST_EMBEDDING_DIM = 384


def mock_embedding(text: str) -> np.ndarray:
    h = hashlib.md5(text.encode()).hexdigest()
    # MD5 is 32 chars, repeat to get TEST_EMBEDDING_DIM
    arr = np.array([int(c, 16) / 15.0 for c in h] * (TEST_EMBEDDING_DIM // 32), dtype=np.float32)
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else arr


def direction(*components: float) -> np.ndarray:
    """Unit vector whose leading components are given; the rest are zero."""
    arr = np.zeros(TEST_EMBEDDING_DIM, dtype=np.float32)
    arr[: len(components)] = components
    return arr / np.linalg.norm(arr)


class FakeEmbedder:
    def __init__(self, vectors: dict[str, np.ndarray] | None = None):
        self.vectors = vectors or {}
        self.calls: list[str] = []

    async def embed_one(self, text: str) -> np.ndarray:
        self.calls.append(text)
        return self.vectors.get(text, mock_embedding(text))

    async def embed(self, texts: list[str]) -> np.ndarray:
        return np.array([await self.embed_one(t) for t in texts])


def issue(number: int, title: str, body: str = "", **kwargs) -> ItemRecord:
    kwargs.setdefault("repository", "octo/widgets")
    kwargs.setdefault("state", "open")
    kwargs.setdefault("author", "alice")
    return ItemRecord(
        item_id=f"issue:{number}",
        item_type=ItemType.ISSUE,
        title=title,
        body=body,
        number=number,
        **kwargs,
    )


# (record, embedding direction or None)
CORPUS: list[tuple[ItemRecord, np.ndarray | None]] = [
    (
        issue(
            1,
            "Crash when parsing YAML config",
            "The parser crashes on nested anchors in the config file.",
            labels="bug, parser",
        ),
        direction(1, 0, 0),
    ),
    (
        issue(2, "Add dark mode", "Users want a dark theme for the dashboard.", labels="enhancement, ui"),
        direction(0, 1, 0),
    ),
    (
        issue(
            3,
            "Config loader ignores env vars",
            "Environment variables should override the config file.",
            labels="bug",
            repository="octo/gadgets",
            state="closed",
            author="bob",
        ),
        direction(0.8, 0.2, 0),
    ),
    (
        ItemRecord(
            item_id="pull_request:4",
            item_type=ItemType.PULL_REQUEST,
            title="Fix YAML anchor crash",
            body="Handle nested anchors when parsing config.",
            labels="bug, parser",
            author="carol",
            repository="octo/widgets",
            number=4,
            state="merged",
        ),
        direction(0.9, 0, 0.1),
    ),
    (
        ItemRecord(
            item_id="repository:5",
            item_type=ItemType.REPOSITORY,
            title="octo/widgets",
            body="Widgets toolkit with YAML config",
            labels="yaml, toolkit",
            author="octo",
            repository="octo/widgets",
            language="Python",
            stars=120,
        ),
        direction(0.5, 0.5, 0),
    ),
    (issue(6, "Docs typo", "Fix a typo in the README."), None),
]


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncGenerator[SearchStore]:
    store = SearchStore(tmp_path / "search.db", TEST_EMBEDDING_DIM)
    await store.connect()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def indexed_store(store: SearchStore) -> SearchStore:
    for record, embedding in CORPUS:
        await store.upsert(record, serialize_embedding(embedding))
    await store.build_fts_index()
    await store.build_vector_index()
    return store
