import json
import math
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gitdex.constants import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_LIMIT,
    DEFAULT_TEXT_WEIGHT,
    DEFAULT_VECTOR_WEIGHT,
    EMBEDDING_MODELS,
    HIGHLIGHT_WINDOW,
    RRF_K,
    RRF_OVERFETCH_FACTOR,
)
from gitdex.embedder import EmbeddingConfig
from gitdex.logging import get_logger
from gitdex.search.types import RRF, FilterMode, Linear, RerankStrategy

GITDEX_DIR = Path.home() / ".gitdex"
SETTINGS_PATH = GITDEX_DIR / "settings.json"

_logger = get_logger(__name__)


def load_user_settings() -> dict:
    if not SETTINGS_PATH.exists():
        return {}
    try:
        return json.loads(SETTINGS_PATH.read_text())
    except (json.JSONDecodeError, OSError):
        _logger.warning("Failed to load user settings", exc_info=True)
        return {}


def save_user_settings(settings: dict) -> None:
    GITDEX_DIR.mkdir(exist_ok=True)
    SETTINGS_PATH.write_text(json.dumps(settings, indent=2))


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GITDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    # Embeddings; dim is looked up from EMBEDDING_MODELS unless set explicitly
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dim: int | None = None

    data_dir: Path = GITDEX_DIR

    # Search defaults
    default_limit: int = DEFAULT_LIMIT
    rrf_k: float = RRF_K
    text_weight: float = DEFAULT_TEXT_WEIGHT
    vector_weight: float = DEFAULT_VECTOR_WEIGHT
    default_strategy: str = "linear"
    filter_mode: FilterMode = FilterMode.PREFILTER
    overfetch_factor: int = RRF_OVERFETCH_FACTOR
    highlight_window: int = HIGHLIGHT_WINDOW

    log_level: str = "INFO"

    @model_validator(mode="after")
    def _resolve_embedding_dim(self) -> "Config":
        if self.embedding_dim is None:
            if self.embedding_model not in EMBEDDING_MODELS:
                raise ValueError(
                    f"Unknown embedding model: {self.embedding_model}. "
                    f"Set GITDEX_EMBEDDING_DIM or use one of: {', '.join(EMBEDDING_MODELS)}"
                )
            self.embedding_dim = EMBEDDING_MODELS[self.embedding_model]
        return self

    @field_validator("embedding_dim", "default_limit", "overfetch_factor", "highlight_window")
    @classmethod
    def _validate_positive_int(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("rrf_k", "text_weight", "vector_weight")
    @classmethod
    def _validate_non_negative(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError(f"must be finite and non-negative, got {v}")
        return v

    @field_validator("default_strategy", mode="before")
    @classmethod
    def _validate_strategy(cls, v: str) -> str:
        v = str(v).lower()
        if v not in (RRF.name, Linear.name):
            raise ValueError(f"default_strategy must be '{RRF.name}' or '{Linear.name}', got {v!r}")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return str(v).upper()

    @property
    def embedding(self) -> EmbeddingConfig:
        return EmbeddingConfig(model=self.embedding_model, dim=self.embedding_dim)

    @property
    def rerank_strategy(self) -> RerankStrategy:
        if self.default_strategy == RRF.name:
            return RRF(k=self.rrf_k)
        return Linear(text_weight=self.text_weight, vector_weight=self.vector_weight)

    @property
    def search_db_path(self) -> Path:
        return self.data_dir / "search.db"


PERSIST_KEYS = frozenset(
    {
        "embedding_model",
        "embedding_dim",
        "data_dir",
        "default_limit",
        "rrf_k",
        "text_weight",
        "vector_weight",
        "default_strategy",
        "filter_mode",
        "overfetch_factor",
        "highlight_window",
    }
)


def get_config() -> Config:
    settings = load_user_settings()

    # init args (settings.json) > env vars > defaults
    overrides = {k: settings[k] for k in PERSIST_KEYS if k in settings}
    return Config(**overrides)
