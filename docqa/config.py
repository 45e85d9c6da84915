"""Application configuration with sensible defaults."""
import os
from pathlib import Path
from typing import List

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
UPLOADS_DIR = Path(os.getenv("UPLOADS_DIR", str(BASE_DIR / "uploads")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "mistral")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "120.0"))  # seconds
OLLAMA_TEMPERATURE = float(os.getenv("OLLAMA_TEMPERATURE", "0.1"))
OLLAMA_TOP_P = float(os.getenv("OLLAMA_TOP_P", "0.9"))
OLLAMA_TOP_K = int(os.getenv("OLLAMA_TOP_K", "40"))

# Segmentation (characters for size, sentences for overlap)
FRAGMENT_MAX_SIZE = int(os.getenv("FRAGMENT_MAX_SIZE", "500"))
FRAGMENT_OVERLAP_UNITS = int(os.getenv("FRAGMENT_OVERLAP_UNITS", "1"))
FRAGMENT_MIN_LENGTH = int(os.getenv("FRAGMENT_MIN_LENGTH", "10"))

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "3"))
SIMILARITY_FLOOR = float(os.getenv("SIMILARITY_FLOOR", "0.3"))
STRICT_MODE = os.getenv("STRICT_MODE", "true").lower() in ("1", "true", "yes")
MAX_QUERY_LENGTH = int(os.getenv("MAX_QUERY_LENGTH", "2000"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "4"))

# Uploads
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))

# Database
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "docqa.sqlite")))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def ensure_directories() -> None:
    """Create data and upload directories if missing."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)


def validate_config() -> List[str]:
    """Check configured values at startup.

    Returns:
        List of warnings for values that are legal but questionable

    Raises:
        ValueError: Listing every invalid value
    """
    errors = []
    warnings = []

    if FRAGMENT_MAX_SIZE < 100:
        errors.append(f"FRAGMENT_MAX_SIZE too small: {FRAGMENT_MAX_SIZE} (min 100)")
    elif FRAGMENT_MAX_SIZE > 2000:
        warnings.append(f"FRAGMENT_MAX_SIZE is large ({FRAGMENT_MAX_SIZE}), retrieval may get coarse")

    if FRAGMENT_OVERLAP_UNITS < 0:
        errors.append(f"FRAGMENT_OVERLAP_UNITS must be >= 0, got {FRAGMENT_OVERLAP_UNITS}")

    if FRAGMENT_MIN_LENGTH < 0:
        errors.append(f"FRAGMENT_MIN_LENGTH must be >= 0, got {FRAGMENT_MIN_LENGTH}")

    if RETRIEVAL_TOP_K < 1:
        errors.append(f"RETRIEVAL_TOP_K must be >= 1, got {RETRIEVAL_TOP_K}")
    elif RETRIEVAL_TOP_K > 10:
        warnings.append(f"RETRIEVAL_TOP_K is high ({RETRIEVAL_TOP_K}), may include irrelevant fragments")

    if not -1.0 <= SIMILARITY_FLOOR <= 1.0:
        errors.append(f"SIMILARITY_FLOOR must be within [-1, 1], got {SIMILARITY_FLOOR}")

    if OLLAMA_TIMEOUT <= 0:
        errors.append(f"OLLAMA_TIMEOUT must be positive, got {OLLAMA_TIMEOUT}")
    elif OLLAMA_TIMEOUT < 10:
        warnings.append(f"OLLAMA_TIMEOUT is low ({OLLAMA_TIMEOUT}s), generation may time out")

    if EMBED_CONCURRENCY < 1:
        errors.append(f"EMBED_CONCURRENCY must be >= 1, got {EMBED_CONCURRENCY}")

    if errors:
        raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))

    return warnings
