# --- Query Defaults ---

DEFAULT_LIMIT = 10
DEFAULT_OFFSET = 0


# --- Fusion ---

RRF_K = 60.0
DEFAULT_TEXT_WEIGHT = 0.7
DEFAULT_VECTOR_WEIGHT = 0.3
RRF_OVERFETCH_FACTOR = 2  # candidates per engine = (offset + limit) * factor


# --- Text Processing ---

HIGHLIGHT_WINDOW = 160  # chars per highlight excerpt
HIGHLIGHT_ELLIPSIS = "…"
EMBEDDING_TEXT_LIMIT = 8000


# --- Embedding Models ---
# LiteLLM format: model -> dimension

EMBEDDING_MODELS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "ollama/all-minilm": 384,
    "ollama/nomic-embed-text": 768,
}
DEFAULT_EMBEDDING_MODEL = "ollama/all-minilm"
