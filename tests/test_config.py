import json

import pytest
import pytest_asyncio
from pydantic import ValidationError

from gitdex import config as config_module
from gitdex.config import Config, get_config
from gitdex.database import serialize_embedding
from gitdex.search.index import SearchIndex
from gitdex.search.query import hybrid, semantic_from_text
from gitdex.search.types import RRF, FilterMode, Linear
from tests.conftest import CORPUS, FakeEmbedder, direction


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "SETTINGS_PATH", tmp_path / "settings.json")
    monkeypatch.setattr(config_module, "GITDEX_DIR", tmp_path)
    for key in ("EMBEDDING_MODEL", "EMBEDDING_DIM", "DEFAULT_STRATEGY", "RRF_K", "FILTER_MODE"):
        monkeypatch.delenv(f"GITDEX_{key}", raising=False)
    return tmp_path / "settings.json"


class TestConfig:
    def test_defaults(self):
        config = Config(_env_file=None)

        assert config.embedding_model == "ollama/all-minilm"
        assert config.embedding_dim == 384
        assert config.default_limit == 10
        assert config.filter_mode == FilterMode.PREFILTER
        assert config.rerank_strategy == Linear(0.7, 0.3)

    def test_embedding_property(self):
        embedding = Config(_env_file=None, embedding_model="ollama/nomic-embed-text").embedding
        assert (embedding.model, embedding.dim) == ("ollama/nomic-embed-text", 768)

    def test_unknown_model_needs_explicit_dim(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, embedding_model="acme/embedder")

        config = Config(_env_file=None, embedding_model="acme/embedder", embedding_dim=256)
        assert config.embedding.dim == 256

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GITDEX_DEFAULT_STRATEGY", "RRF")
        monkeypatch.setenv("GITDEX_RRF_K", "20")
        monkeypatch.setenv("GITDEX_FILTER_MODE", "postfilter")

        config = Config(_env_file=None)

        assert config.rerank_strategy == RRF(k=20.0)
        assert config.filter_mode == FilterMode.POSTFILTER

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"default_limit": 0},
            {"overfetch_factor": -1},
            {"text_weight": -0.1},
            {"rrf_k": float("inf")},
            {"default_strategy": "vector_only"},
            {"filter_mode": "sideways"},
        ],
    )
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValidationError):
            Config(_env_file=None, **kwargs)

    def test_search_db_path(self, tmp_path):
        assert Config(_env_file=None, data_dir=tmp_path).search_db_path == tmp_path / "search.db"


class TestUserSettings:
    def test_missing_file(self):
        assert config_module.load_user_settings() == {}

    def test_corrupt_file(self, isolated_settings):
        isolated_settings.write_text("{not json")
        assert config_module.load_user_settings() == {}

    def test_save_and_get_config(self, isolated_settings):
        config_module.save_user_settings({"default_limit": 25, "text_weight": 0.5, "unrelated": True})

        assert json.loads(isolated_settings.read_text())["default_limit"] == 25
        config = get_config()
        assert config.default_limit == 25
        assert config.text_weight == 0.5


@pytest_asyncio.fixture
async def config_index(tmp_path):
    opened: list[SearchIndex] = []

    async def build(**settings) -> SearchIndex:
        config = Config(_env_file=None, data_dir=tmp_path / str(len(opened)), **settings)
        index = SearchIndex.from_config(config, embedder=FakeEmbedder({"config": direction(1, 0, 0)}))
        await index.connect()
        opened.append(index)
        for record, embedding in CORPUS:
            await index.store.upsert(record, serialize_embedding(embedding))
        await index.build_indices()
        return index

    yield build
    for index in opened:
        await index.close()


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_store_location(self, config_index, tmp_path):
        index = await config_index()
        assert index.store.db_path == tmp_path / "0" / "search.db"
        assert index.store.embedding_dim == 384

    @pytest.mark.asyncio
    async def test_default_strategy_applies_to_hybrid_queries(self, config_index):
        index = await config_index(default_strategy="rrf", rrf_k=1)

        results = await index.search(hybrid("config"))

        assert results == await index.dispatcher.search(hybrid("config", RRF(k=1.0)))
        for r in results:
            ranks = [rank for rank in (r.text_rank, r.vector_rank) if rank is not None]
            assert r.fused_score == pytest.approx(sum(1 / (1 + rank) for rank in ranks))

    @pytest.mark.asyncio
    async def test_linear_weights_from_config(self, config_index):
        index = await config_index(text_weight=1.0, vector_weight=0.0)

        results = await index.search(hybrid("config"))

        assert results == await index.dispatcher.search(hybrid("config", Linear(1.0, 0.0)))

    @pytest.mark.asyncio
    async def test_filter_mode_applies_to_vector_search(self, config_index):
        # issue:2 is the farthest embedded item from "config"
        query = semantic_from_text("config").with_filter("item_id = 'issue:2'").with_limit(1)

        postfilter = await config_index(filter_mode="postfilter", overfetch_factor=2)
        prefilter = await config_index(filter_mode="prefilter")

        assert await postfilter.search(query) == []
        assert [r.item_id for r in await prefilter.search(query)] == ["issue:2"]

    @pytest.mark.asyncio
    async def test_default_limit_applies_to_issue_search(self, config_index):
        index = await config_index(default_limit=2)

        assert len(await index.search_issues("config", semantic=False)) == 2
        assert len(await index.search_issues("config", semantic=False, limit=3)) == 3
