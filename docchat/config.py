"""Application configuration with sensible defaults."""
import os
from dataclasses import dataclass
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
UPLOADS_DIR = DATA_DIR / "uploads"
INDEX_DIR = DATA_DIR / "indexes"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1024"))  # must match the model
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))

# Vector index
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "faiss")  # faiss | http
VECTOR_SERVICE_URL = os.getenv("VECTOR_SERVICE_URL", "http://localhost:8080")
VECTOR_SERVICE_TOKEN = os.getenv("VECTOR_SERVICE_TOKEN", "")
VECTOR_INDEX_NAME = os.getenv("VECTOR_INDEX_NAME", "documents")
UPSERT_BATCH_SIZE = 100

# Chunking (token estimates, ~4 chars per token)
CHUNK_MAX_TOKENS = 500
CHUNK_OVERLAP_TOKENS = 100
EMBEDDING_BATCH_SIZE = 100

# Retrieval / generation
RETRIEVAL_TOP_K = 10
SIMILARITY_THRESHOLD = 0.3
HISTORY_LIMIT = 10
EXCERPT_CHARS = 200
CHAT_TEMPERATURE = 0.7
CHAT_MAX_OUTPUT_TOKENS = 1000

# Database
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "docchat.sqlite")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass
class Settings:
    """Explicit configuration handed to components at construction time."""

    db_path: Path = DB_PATH
    uploads_dir: Path = UPLOADS_DIR
    index_dir: Path = INDEX_DIR
    ollama_base_url: str = OLLAMA_BASE_URL
    ollama_timeout: float = OLLAMA_TIMEOUT
    chat_model: str = CHAT_MODEL
    embedding_model: str = EMBEDDING_MODEL
    embedding_dimension: int = EMBEDDING_DIMENSION
    vector_backend: str = VECTOR_BACKEND
    vector_service_url: str = VECTOR_SERVICE_URL
    vector_service_token: str = VECTOR_SERVICE_TOKEN
    index_name: str = VECTOR_INDEX_NAME
    upsert_batch_size: int = UPSERT_BATCH_SIZE
    chunk_max_tokens: int = CHUNK_MAX_TOKENS
    chunk_overlap_tokens: int = CHUNK_OVERLAP_TOKENS
    embedding_batch_size: int = EMBEDDING_BATCH_SIZE
    top_k: int = RETRIEVAL_TOP_K
    similarity_threshold: float = SIMILARITY_THRESHOLD
    history_limit: int = HISTORY_LIMIT
    excerpt_chars: int = EXCERPT_CHARS
    temperature: float = CHAT_TEMPERATURE
    max_output_tokens: int = CHAT_MAX_OUTPUT_TOKENS

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the module-level defaults."""
        return cls()
