"""
Explicit wiring of backend, embedding service, cache and evaluator.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from tech_eval.config import Config
from tech_eval.embedding_cache import EmbeddingCache
from tech_eval.embedding_service import EmbeddingBackend, EmbeddingService, create_embedding_backend
from tech_eval.evaluator import TechnicalEvaluator
from tech_eval.models import CacheConfig, EmbeddingConfig, EvaluationConfig, RetryPolicy
from tech_eval.question_bank import QuestionSource

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a caller needs, constructed once at startup."""
    service: EmbeddingService
    cache: EmbeddingCache
    evaluator: TechnicalEvaluator

    def close(self) -> None:
        """Wait for pending cache writes and stop the persistence worker."""
        self.cache.close()


def default_embedding_config() -> EmbeddingConfig:
    model = Config.EMBEDDING_MODEL if Config.EMBEDDING_PROVIDER == "openai" else Config.LOCAL_EMBEDDING_MODEL
    return EmbeddingConfig(
        model=model,
        chunk_size=Config.EMBEDDING_CHUNK_SIZE,
        request_timeout=Config.EMBEDDING_REQUEST_TIMEOUT,
        retry=RetryPolicy(
            max_attempts=Config.EMBEDDING_MAX_ATTEMPTS,
            base_delay=Config.EMBEDDING_RETRY_BASE_DELAY,
            max_delay=Config.EMBEDDING_RETRY_MAX_DELAY,
        ),
    )


def build_cache(
    model_tag: Optional[str] = None,
    cache_dir: Optional[str] = None,
    async_persist: Optional[bool] = None,
    rebuild_cache: bool = False,
) -> EmbeddingCache:
    """Construct the embedding cache on its own, without an embedding backend.

    The model tag defaults to the configured embedding model, so maintenance
    commands see the same entries the evaluator writes.
    """
    cache_config = CacheConfig()
    if cache_dir:
        cache_config.cache_dir = str(cache_dir)
    if async_persist is not None:
        cache_config.async_persist = async_persist

    cache = EmbeddingCache(
        model_tag=model_tag or default_embedding_config().model,
        cache_dir=cache_config.cache_dir,
        schema_version=cache_config.schema_version,
        async_persist=cache_config.async_persist,
    )
    if rebuild_cache:
        logger.info("🔄 Rebuilding embedding cache...")
        cache.clear_cache()
    return cache


def build_context(
    evaluation_config: Optional[EvaluationConfig] = None,
    question_source: QuestionSource = None,
    cache_dir: Optional[str] = None,
    backend: Optional[EmbeddingBackend] = None,
    embedding_config: Optional[EmbeddingConfig] = None,
    async_persist: Optional[bool] = None,
    rebuild_cache: bool = False,
) -> AppContext:
    """Construct the application components without initializing the evaluator.

    Args:
        evaluation_config: Default thresholds and weights
        question_source: Question bank path or records; defaults to Config.QUESTION_BANK_PATH
        cache_dir: Cache directory; defaults to Config.CACHE_DIR
        backend: Embedding backend; built from Config when omitted
        embedding_config: Model, timeout and retry settings
        async_persist: Persist the cache on a background thread
        rebuild_cache: Drop every cached embedding before use

    Returns:
        AppContext with service, cache and evaluator
    """
    embedding_config = embedding_config or default_embedding_config()
    if backend is None:
        backend = create_embedding_backend(Config.EMBEDDING_PROVIDER, Config.OPENAI_API_KEY, embedding_config)

    service = EmbeddingService(backend, retry_policy=embedding_config.retry)
    cache = build_cache(service.model_tag, cache_dir, async_persist, rebuild_cache)

    evaluator = TechnicalEvaluator(
        service,
        cache,
        question_source=question_source,
        config=evaluation_config,
    )
    return AppContext(service=service, cache=cache, evaluator=evaluator)
