"""
Embedding provider: turns text into fixed-length vectors through a networked
model and provides the similarity primitives used by the rest of the package.

The service owns the retry policy. Backends only perform one raw call.
"""

import re
import time
import logging
from typing import Callable, List, Optional, Protocol, Sequence

import numpy as np
import openai
from langchain_openai import OpenAIEmbeddings
from tenacity import (
    Retrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from tech_eval.config import AppConstants, Config
from tech_eval.errors import ProviderError, ValidationError
from tech_eval.models import EmbeddingConfig, EmbeddingPurpose, RetryPolicy, SimilarityMatch

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Errors of these types never succeed on a retry
NON_TRANSIENT_EXCEPTIONS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.UnprocessableEntityError,
    ValidationError,
)

NON_TRANSIENT_MARKERS = (
    "unauthorized",
    "authentication",
    "api key",
    "permission",
    "quota",
    "malformed",
    "invalid input",
)


def normalize_text(text: str) -> str:
    """Trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", text or "").strip()


def is_finite_vector(vector: Sequence[float]) -> bool:
    """True when every component is a finite number."""
    try:
        return bool(np.all(np.isfinite(np.asarray(vector, dtype=float))))
    except (TypeError, ValueError):
        return False


def is_transient_error(error: BaseException) -> bool:
    """Decide whether a failed provider call is worth retrying."""
    if isinstance(error, NON_TRANSIENT_EXCEPTIONS):
        return False
    if isinstance(error, ProviderError):
        return error.retryable
    message = str(error).lower()
    return not any(marker in message for marker in NON_TRANSIENT_MARKERS)


class EmbeddingBackend(Protocol):
    """One raw call to an embedding model."""

    model_tag: str

    def embed(self, texts: List[str], purpose: EmbeddingPurpose) -> List[List[float]]: ...


class OpenAIEmbeddingBackend:
    """OpenAI embeddings through LangChain."""

    def __init__(self, api_key: str, config: Optional[EmbeddingConfig] = None):
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self.config = config or EmbeddingConfig()
        self.model_tag = self.config.model
        # Retries are handled by EmbeddingService
        self.embeddings = OpenAIEmbeddings(
            api_key=api_key,
            model=self.config.model,
            chunk_size=self.config.chunk_size,
            max_retries=0,
            request_timeout=self.config.request_timeout,
        )

    def embed(self, texts: List[str], purpose: EmbeddingPurpose) -> List[List[float]]:
        if purpose == EmbeddingPurpose.QUERY:
            return [self.embeddings.embed_query(text) for text in texts]
        return self.embeddings.embed_documents(texts)


class SentenceTransformerBackend:
    """Local sentence-transformers model, for offline runs (requires the `local` extra)."""

    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer

        self.model_tag = model_name
        self.model = SentenceTransformer(model_name)

    def embed(self, texts: List[str], purpose: EmbeddingPurpose) -> List[List[float]]:
        vectors = self.model.encode(list(texts))
        return [list(map(float, row)) for row in vectors]


def create_embedding_backend(
    provider: str = None,
    api_key: str = None,
    config: Optional[EmbeddingConfig] = None,
) -> EmbeddingBackend:
    """Build the configured backend.

    Args:
        provider: 'openai' or 'sentence-transformers'
        api_key: API key for hosted providers
        config: Embedding configuration (model name, timeout, chunk size)

    Returns:
        An EmbeddingBackend instance
    """
    provider = (provider or Config.EMBEDDING_PROVIDER).lower()
    if provider == "openai":
        return OpenAIEmbeddingBackend(api_key or Config.OPENAI_API_KEY, config)
    if provider in ("sentence-transformers", "local"):
        model_name = config.model if config else Config.LOCAL_EMBEDDING_MODEL
        return SentenceTransformerBackend(model_name)
    raise ValueError(f"Unknown embedding provider: {provider}")


class EmbeddingService:
    """Embedding generation with validation, retries and similarity math."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the embedding service.

        Args:
            backend: Backend performing the raw embedding call
            retry_policy: Attempts and backoff for transient failures
            sleep: Sleep function used between retries
        """
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self.is_initialized = False

    @property
    def model_tag(self) -> str:
        return self.backend.model_tag

    def initialize(self) -> None:
        """Validate connectivity with a single probe embedding."""
        logger.info("🔧 Initializing embedding service (%s)...", self.model_tag)
        try:
            self.generate_embedding(AppConstants.CONNECTIVITY_PROBE_TEXT)
        except (ProviderError, ValidationError) as e:
            logger.error("❌ Failed to initialize embedding service: %s", e)
            raise ProviderError(f"Embedding service initialization failed: {e}") from e
        self.is_initialized = True
        logger.info("✅ Embedding service initialized successfully")

    def generate_embedding(
        self, text: str, purpose: EmbeddingPurpose = EmbeddingPurpose.DOCUMENT
    ) -> List[float]:
        """Generate the embedding for a single text.

        Args:
            text: Text to embed
            purpose: Whether the text is a reference document or a query

        Returns:
            Embedding vector

        Raises:
            ValidationError: if the text is blank
            ProviderError: if the call fails or returns no vector
        """
        clean_text = normalize_text(text)
        if not clean_text:
            raise ValidationError("Text cannot be empty")

        start_time = time.time()
        vectors = self._call_with_retry(lambda: self.backend.embed([clean_text], purpose))
        duration = (time.time() - start_time) * 1000

        if not vectors or not vectors[0]:
            raise ProviderError("No embedding returned from provider")
        if not is_finite_vector(vectors[0]):
            raise ProviderError("Provider returned an embedding with non-numeric or non-finite values")

        embedding = list(vectors[0])
        logger.debug(
            "⚡ Generated embedding for text (%s...) in %.0fms, vector size: %d",
            clean_text[:50], duration, len(embedding),
        )
        return embedding

    def generate_batch_embeddings(
        self, texts: Sequence[str], purpose: EmbeddingPurpose = EmbeddingPurpose.DOCUMENT
    ) -> List[List[float]]:
        """Generate embeddings for several texts in one call.

        Blank entries are dropped before sending, so the result aligns with the
        non-blank inputs only.

        Raises:
            ValidationError: if no non-blank text remains
            ProviderError: if the call fails, or the response is mismatched or empty
        """
        valid_texts = [normalize_text(t) for t in texts or []]
        valid_texts = [t for t in valid_texts if t]
        if not valid_texts:
            raise ValidationError("No valid texts provided")

        start_time = time.time()
        vectors = self._call_with_retry(lambda: self.backend.embed(valid_texts, purpose))
        duration = (time.time() - start_time) * 1000

        if not vectors or len(vectors) != len(valid_texts):
            raise ProviderError(
                "Mismatch between input texts and returned embeddings "
                f"({len(valid_texts)} sent, {len(vectors or [])} returned)"
            )
        for i, vector in enumerate(vectors):
            if not vector:
                raise ProviderError(f"Empty embedding at position {i} in batch response")
            if not is_finite_vector(vector):
                raise ProviderError(f"Non-numeric or non-finite values in embedding at position {i} in batch response")

        logger.info(
            "⚡ Generated %d embeddings in %.0fms (avg: %.1fms per embedding)",
            len(vectors), duration, duration / len(vectors),
        )
        return [list(v) for v in vectors]

    def _call_with_retry(self, fn):
        policy = self.retry_policy
        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.base_delay, min=policy.base_delay, max=policy.max_delay
            ),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(fn)
        except ProviderError:
            raise
        except RetryError as e:
            raise ProviderError(f"Embedding generation failed: {e}", retryable=True) from e
        except Exception as e:
            transient = is_transient_error(e)
            if transient:
                message = f"Embedding generation failed after {policy.max_attempts} attempts: {e}"
            else:
                message = f"Embedding generation failed: {e}"
            logger.error("❌ Embedding provider error: %s", e)
            raise ProviderError(message, retryable=transient) from e

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        """Cosine similarity clamped into [0, 1].

        Raises:
            ValidationError: if the vectors differ in length or hold non-finite values
        """
        if a is None or b is None:
            raise ValidationError("Both embeddings must be provided")
        if len(a) != len(b):
            raise ValidationError(f"Embedding dimensions must match: {len(a)} vs {len(b)}")

        va = np.asarray(a, dtype=float)
        vb = np.asarray(b, dtype=float)
        if not (is_finite_vector(va) and is_finite_vector(vb)):
            raise ValidationError("Embeddings must contain only finite values")
        norm_a = np.linalg.norm(va)
        norm_b = np.linalg.norm(vb)
        if norm_a == 0 or norm_b == 0:
            return 0.0

        similarity = float(np.dot(va, vb) / (norm_a * norm_b))
        if not np.isfinite(similarity):
            raise ValidationError("Similarity overflowed for the given embeddings")
        return max(0.0, min(1.0, similarity))

    @classmethod
    def find_most_similar(
        cls,
        query: Sequence[float],
        candidates: Sequence[Sequence[float]],
        threshold: float = 0.5,
    ) -> Optional[SimilarityMatch]:
        """Linear scan for the candidate closest to the query.

        Candidates that cannot be compared are logged and skipped; their indices
        are reported in the returned match.

        Returns:
            The best match if it reaches the threshold, else None
        """
        if query is None or not candidates:
            return None

        best_index = -1
        best_similarity = 0.0
        skipped: List[int] = []
        for i, candidate in enumerate(candidates):
            try:
                similarity = cls.cosine_similarity(query, candidate)
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning("⚠️ Could not calculate similarity for candidate %d: %s", i, e)
                skipped.append(i)
                continue
            if similarity > best_similarity or best_index == -1:
                best_index = i
                best_similarity = similarity

        if skipped:
            logger.warning("⚠️ Skipped %d of %d candidates during similarity scan", len(skipped), len(candidates))
        if best_index == -1 or best_similarity < threshold:
            return None
        return SimilarityMatch(index=best_index, similarity=best_similarity, skipped=skipped)

    def get_status(self) -> dict:
        """Get service status and configuration."""
        return {
            "is_initialized": self.is_initialized,
            "model": self.model_tag,
            "max_attempts": self.retry_policy.max_attempts,
            "base_delay": self.retry_policy.base_delay,
        }
