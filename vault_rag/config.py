"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
NOTES_DIR = Path(os.getenv("NOTES_DIR", str(BASE_DIR / "notes")))
CACHE_PATH = Path(os.getenv("CACHE_PATH", str(DATA_DIR / "embeddings.json")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_API_KEY = os.getenv("OLLAMA_API_KEY")  # Only needed behind an auth proxy
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "60.0"))

# Tried in order when the chat model reports it is overloaded
FALLBACK_MODELS = tuple(
    m.strip()
    for m in os.getenv("FALLBACK_MODELS", "gemma3:4b,llama3.2:3b").split(",")
    if m.strip()
)

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))
MAX_RESULTS = int(os.getenv("MAX_RESULTS", "5"))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))  # raw cosine
INGEST_CONCURRENCY = int(os.getenv("INGEST_CONCURRENCY", "1"))

# Watch notes/ and reindex on change when serving
WATCH_NOTES = os.getenv("WATCH_NOTES", "false").lower() in ("1", "true", "yes")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
