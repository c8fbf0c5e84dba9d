import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent


class Config:
    """Application configuration settings."""

    # API Keys
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

    # Embedding Configuration
    EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "openai").lower()
    EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    LOCAL_EMBEDDING_MODEL = os.getenv("LOCAL_EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
    EMBEDDING_CHUNK_SIZE = int(os.getenv("EMBEDDING_CHUNK_SIZE", "1000"))
    EMBEDDING_MAX_ATTEMPTS = int(os.getenv("EMBEDDING_MAX_ATTEMPTS", "3"))
    EMBEDDING_RETRY_BASE_DELAY = float(os.getenv("EMBEDDING_RETRY_BASE_DELAY", "1.0"))
    EMBEDDING_RETRY_MAX_DELAY = float(os.getenv("EMBEDDING_RETRY_MAX_DELAY", "10.0"))
    EMBEDDING_REQUEST_TIMEOUT = int(os.getenv("EMBEDDING_REQUEST_TIMEOUT", "60"))

    # Cache Configuration
    CACHE_DIR = os.getenv("CACHE_DIR", "./cache/embeddings")
    CACHE_SCHEMA_VERSION = os.getenv("CACHE_SCHEMA_VERSION", "1.0.0")
    CACHE_ASYNC_PERSIST = os.getenv("CACHE_ASYNC_PERSIST", "true").lower() == "true"

    # Question Bank Configuration
    QUESTION_BANK_PATH = os.getenv(
        "QUESTION_BANK_PATH", str(PACKAGE_DIR / "data" / "technical_questions.json")
    )

    # Pre-computation Configuration
    PRECOMPUTE_BATCH_SIZE = int(os.getenv("PRECOMPUTE_BATCH_SIZE", "16"))
    PRECOMPUTE_MAX_WORKERS = int(os.getenv("PRECOMPUTE_MAX_WORKERS", "4"))

    # Output Configuration
    OUTPUT_DIR = os.getenv("OUTPUT_DIR", "data/evaluation")

    # Logging Configuration
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"


class AppConstants:
    """Application constants."""

    MIN_REFERENCE_ANSWER_CHARS = 10
    MIN_CANDIDATE_ANSWER_CHARS = 5
    DEFAULT_ROLE = "Software Engineer"
    CONNECTIVITY_PROBE_TEXT = "test connectivity"

    LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = None) -> None:
    """Configure root logging from the environment."""
    if level is None:
        level = "DEBUG" if Config.DEBUG_MODE else Config.LOG_LEVEL
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=AppConstants.LOG_FORMAT,
    )


def validate_config():
    """Validate that required configuration is present."""
    if Config.EMBEDDING_PROVIDER == "openai" and not Config.OPENAI_API_KEY:
        raise ValueError("OpenAI API key not found in environment variables")

    return True
