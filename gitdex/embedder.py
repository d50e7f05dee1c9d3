from dataclasses import dataclass
from typing import Protocol

import litellm
import numpy as np
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from gitdex.constants import EMBEDDING_TEXT_LIMIT
from gitdex.logging import get_logger

_logger = get_logger(__name__)

_TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.InternalServerError,
    litellm.ServiceUnavailableError,
)


@dataclass(frozen=True)
class EmbeddingConfig:
    model: str
    dim: int


class EmbeddingProvider(Protocol):
    """Anything that turns free text into a fixed-length vector."""

    async def embed_one(self, text: str) -> np.ndarray: ...


def _log_retry(retry_state) -> None:
    _logger.warning(
        "Embedding call failed (attempt %d/3), retrying: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    )


class Embedder:
    def __init__(self, config: EmbeddingConfig):
        self.config = config

    @property
    def dim(self) -> int:
        return self.config.dim

    def _normalize(self, embeddings: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        return embeddings / np.where(norms == 0, 1, norms)

    def _parse_response(self, response) -> np.ndarray:
        sorted_data = sorted(response.data, key=lambda x: x["index"])
        embeddings = np.array([item["embedding"] for item in sorted_data], dtype=np.float32)
        return self._normalize(embeddings)

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=0.5, max=8, jitter=2),
        reraise=True,
        before_sleep=_log_retry,
    )
    async def _aembedding(self, texts: list[str]):
        return await litellm.aembedding(model=self.config.model, input=texts)

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.array([])
        truncated = [t[:EMBEDDING_TEXT_LIMIT] for t in texts]
        response = await self._aembedding(truncated)
        return self._parse_response(response)

    async def embed_one(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]
