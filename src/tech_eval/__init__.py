"""
Technical answer evaluation: semantic similarity against reference answers,
blended with keyword coverage, backed by a persistent embedding cache.
"""

from tech_eval.embedding_cache import EmbeddingCache, JsonFileCacheStore, hash_text
from tech_eval.embedding_service import EmbeddingService, create_embedding_backend
from tech_eval.evaluator import TechnicalEvaluator
from tech_eval.models import Band, EvaluationConfig, EvaluationResult

__version__ = "0.1.0"

__all__ = [
    "Band",
    "EmbeddingCache",
    "EmbeddingService",
    "EvaluationConfig",
    "EvaluationResult",
    "JsonFileCacheStore",
    "TechnicalEvaluator",
    "create_embedding_backend",
    "hash_text",
]
