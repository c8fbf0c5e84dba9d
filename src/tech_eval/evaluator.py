"""
Technical answer evaluation engine.

Ties the question bank to the embedding service and cache: reference answers
are embedded once (and cached across restarts), candidate answers are embedded
per request and scored against them.
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pydantic

from tech_eval.calculators import (
    build_error_result,
    build_too_short_result,
    calculate_keyword_coverage,
    classify_score,
    combine_scores,
    generate_feedback,
    is_correct_band,
    to_display_score,
)
from tech_eval.config import AppConstants, Config
from tech_eval.embedding_cache import EmbeddingCache
from tech_eval.embedding_service import EmbeddingService
from tech_eval.errors import (
    CacheError,
    InitializationError,
    NotFoundError,
    ProviderError,
    StateError,
    TechEvalError,
    ValidationError,
)
from tech_eval.models import (
    EmbeddingPurpose,
    EngineState,
    EvaluationConfig,
    EvaluationResult,
    Question,
    QuestionId,
    question_key,
)
from tech_eval.question_bank import QuestionSource, load_question_bank
from tech_eval.selector import select_questions

logger = logging.getLogger(__name__)

ConfigOverride = Union[EvaluationConfig, Mapping[str, Any], None]


def resolve_config(base: EvaluationConfig, override: ConfigOverride = None) -> EvaluationConfig:
    """Merge a per-call override over the engine default.

    Raises:
        ValidationError: if the merged configuration is invalid
    """
    if override is None:
        return base
    if isinstance(override, EvaluationConfig):
        return override
    if not isinstance(override, Mapping):
        raise ValidationError(f"Unsupported evaluation config type: {type(override).__name__}")
    try:
        return EvaluationConfig.model_validate({**base.model_dump(), **dict(override)})
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid evaluation config: {e}") from e


def _parse_batch_item(item: Any) -> Tuple[QuestionId, str]:
    if isinstance(item, Mapping):
        question_id = item.get("question_id", item.get("questionId"))
        answer = item.get("answer", item.get("user_answer", item.get("userAnswer")))
    elif isinstance(item, (tuple, list)) and len(item) == 2:
        question_id, answer = item
    else:
        raise ValidationError(f"Malformed batch item: {item!r}")
    if question_id is None or not isinstance(answer, str):
        raise ValidationError(f"Batch item needs a question id and an answer string: {item!r}")
    return question_id, answer


class TechnicalEvaluator:
    """Scores candidate answers against pre-embedded reference answers."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        embedding_cache: EmbeddingCache,
        question_source: QuestionSource = None,
        config: Optional[EvaluationConfig] = None,
        batch_size: int = None,
        max_workers: int = None,
    ):
        """Initialize the evaluator with its collaborators.

        Args:
            embedding_service: Provider used for reference and candidate embeddings
            embedding_cache: Persistent cache for reference embeddings
            question_source: JSON file path or list of raw question records
            config: Default thresholds and weights
            batch_size: Reference answers per embedding request during initialization
            max_workers: Concurrent embedding requests during initialization
        """
        self.embedding_service = embedding_service
        self.embedding_cache = embedding_cache
        self.question_source = question_source if question_source is not None else Config.QUESTION_BANK_PATH
        self.config = config or EvaluationConfig()
        self.batch_size = max(1, batch_size or Config.PRECOMPUTE_BATCH_SIZE)
        self.max_workers = max(1, max_workers or Config.PRECOMPUTE_MAX_WORKERS)

        self._questions: Dict[str, Question] = {}
        self._state = EngineState.UNINITIALIZED
        self._init_lock = threading.Lock()
        self._failure: Optional[str] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state == EngineState.READY

    def initialize(self) -> None:
        """Load the question bank and make sure every reference answer has an embedding.

        Raises:
            InitializationError: if no valid question remains or the provider fails;
                the engine then stays in the failed state
        """
        with self._init_lock:
            if self._state == EngineState.READY:
                return
            if self._state == EngineState.FAILED:
                raise InitializationError(f"Evaluator initialization previously failed: {self._failure}")

            self._state = EngineState.INITIALIZING
            logger.info("🔧 Initializing Technical Question Evaluator...")
            try:
                self.embedding_cache.initialize()
                self.embedding_service.initialize()

                loaded = load_question_bank(self.question_source)
                if not loaded.ok:
                    raise InitializationError("No valid technical questions found")

                questions = self._precompute_reference_embeddings(loaded.questions)
            except (TechEvalError, pydantic.ValidationError) as e:
                self._state = EngineState.FAILED
                self._failure = str(e)
                logger.error("❌ Failed to initialize Technical Question Evaluator: %s", e)
                if isinstance(e, InitializationError):
                    raise
                raise InitializationError(f"Evaluator initialization failed: {e}") from e
            except Exception as e:
                self._state = EngineState.FAILED
                self._failure = f"{type(e).__name__}: {e}"
                logger.exception("❌ Unexpected error initializing Technical Question Evaluator")
                raise InitializationError(f"Evaluator initialization failed: {self._failure}") from e

            self._questions = {q.key: q for q in questions}
            self._state = EngineState.READY
            logger.info("✅ Technical Question Evaluator initialized with %d questions", len(questions))

    def _precompute_reference_embeddings(self, questions: List[Question]) -> List[Question]:
        """Attach reference embeddings, reusing cached ones whose text still matches."""
        logger.info("⚡ Pre-computing embeddings for reference answers...")
        start_time = time.time()

        embeddings: Dict[str, List[float]] = {}
        pending: List[Question] = []
        for question in questions:
            cached = self.embedding_cache.get_question_embedding(question.id, text=question.reference_answer)
            if cached is not None:
                embeddings[question.key] = list(cached.embedding)
                logger.debug("Using cached embedding for question %s", question.id)
            else:
                pending.append(question)

        hits = len(embeddings)
        logger.info("📊 Cache status: %d cached, %d need computation", hits, len(pending))

        if pending:
            chunks = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
            workers = min(self.max_workers, len(chunks))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="precompute") as executor:
                for chunk_embeddings in executor.map(self._embed_and_cache, chunks):
                    embeddings.update(chunk_embeddings)

        prepared = [replace(q, reference_embedding=embeddings[q.key]) for q in questions]

        dimensions = {len(q.reference_embedding) for q in prepared}
        if len(dimensions) > 1:
            raise InitializationError(f"Reference embeddings have inconsistent dimensions: {sorted(dimensions)}")

        duration = (time.time() - start_time) * 1000
        logger.info("✅ Embedding pre-computation completed in %.0fms", duration)
        logger.info(
            "📈 Cache hit rate: %.1f%% (%d/%d)", hits / len(questions) * 100, hits, len(questions)
        )
        return prepared

    def _embed_and_cache(self, chunk: Sequence[Question]) -> Dict[str, List[float]]:
        """Embed one chunk of reference answers and write it to the cache in one step."""
        vectors = self.embedding_service.generate_batch_embeddings(
            [q.reference_answer for q in chunk], purpose=EmbeddingPurpose.DOCUMENT
        )
        if len(vectors) != len(chunk):
            raise ProviderError(f"Expected {len(chunk)} embeddings, got {len(vectors)}")

        try:
            self.embedding_cache.store_question_embeddings(
                (q.id, q.reference_answer, vector) for q, vector in zip(chunk, vectors)
            )
        except (ValidationError, CacheError) as e:
            logger.warning("⚠️ Reference embeddings not cached: %s", e)

        for q in chunk:
            logger.debug("Generated embedding for question %s (%s)", q.id, q.role)
        return {q.key: vector for q, vector in zip(chunk, vectors)}

    def evaluate_answer(
        self, question_id: QuestionId, candidate_text: str, config: ConfigOverride = None
    ) -> EvaluationResult:
        """Evaluate a candidate answer against one question.

        Args:
            question_id: ID of the technical question
            candidate_text: The candidate's answer
            config: Optional full or partial override of thresholds and weights

        Returns:
            Evaluation result with scores, band and feedback

        Raises:
            StateError: if the evaluator is not ready
            NotFoundError: if the question is unknown
            ValidationError: if the config override is invalid
            ProviderError: if the candidate embedding cannot be computed
        """
        if self._state != EngineState.READY:
            raise StateError("Evaluator not initialized. Call initialize() first.")

        if candidate_text is None or len(candidate_text.strip()) < AppConstants.MIN_CANDIDATE_ANSWER_CHARS:
            return build_too_short_result(question_id)

        question = self._questions.get(question_key(question_id))
        if question is None or not question.reference_embedding:
            raise NotFoundError(f"Question with ID {question_id} not found or missing embedding")

        evaluation_config = resolve_config(self.config, config)

        candidate_embedding = self.embedding_service.generate_embedding(
            candidate_text.strip(), purpose=EmbeddingPurpose.QUERY
        )
        semantic_similarity = EmbeddingService.cosine_similarity(
            question.reference_embedding, candidate_embedding
        )
        keyword_coverage, matched = calculate_keyword_coverage(candidate_text, question.keywords)
        combined_score = combine_scores(semantic_similarity, keyword_coverage, evaluation_config)
        band = classify_score(combined_score, evaluation_config)
        feedback, suggestions = generate_feedback(
            band, semantic_similarity, keyword_coverage, question.keywords, matched
        )

        logger.info(
            "📊 Question %s evaluation: semantic=%.3f, keyword=%.3f, combined=%.3f (%s)",
            question.id, semantic_similarity, keyword_coverage, combined_score, band.value,
        )

        return EvaluationResult(
            question_id=question.id,
            semantic_similarity=semantic_similarity,
            keyword_coverage=keyword_coverage,
            combined_score=combined_score,
            display_score=to_display_score(combined_score, evaluation_config.display_scale),
            band=band,
            is_correct=is_correct_band(band),
            matched_keywords=matched,
            missing_keywords=[k for k in question.keywords if k not in matched],
            feedback=feedback,
            suggestions=suggestions,
        )

    def evaluate_batch(self, items: Iterable[Any], config: ConfigOverride = None) -> List[EvaluationResult]:
        """Evaluate several answers in order; a failing item becomes a zero-score result.

        Args:
            items: (question_id, answer) pairs or {"question_id", "answer"} mappings

        Returns:
            Exactly one result per item
        """
        results = []
        for item in items:
            question_id = None
            try:
                question_id, answer = _parse_batch_item(item)
                results.append(self.evaluate_answer(question_id, answer, config))
            except TechEvalError as e:
                logger.error("Error evaluating question %s: %s", question_id, e)
                results.append(build_error_result(question_id, str(e)))
        return results

    def get_question(self, question_id: QuestionId) -> Optional[Dict[str, Any]]:
        """Get a technical question by ID, without its embedding."""
        question = self._questions.get(question_key(question_id))
        return question.to_public_dict() if question else None

    def get_all_questions(self) -> List[Dict[str, Any]]:
        """All questions, without embeddings."""
        return [q.to_public_dict() for q in self._questions.values()]

    def get_questions_by_role(self, role: str) -> List[Dict[str, Any]]:
        """Questions whose role contains the given text, case-insensitively."""
        needle = (role or "").lower()
        return [q for q in self.get_all_questions() if needle in q["role"].lower()]

    def select_questions(self, job_description: str, count: int = 2) -> List[Dict[str, Any]]:
        return select_questions(job_description, self.get_all_questions(), count)

    def get_status(self) -> Dict[str, Any]:
        """Get evaluator status and statistics."""
        first = next(iter(self._questions.values()), None)
        return {
            "state": self._state.value,
            "is_initialized": self.is_initialized,
            "question_count": len(self._questions),
            "embedding_dimension": len(first.reference_embedding) if first and first.reference_embedding else None,
            "model": self.embedding_service.model_tag,
            "config": self.config.model_dump(),
            "cache": self.embedding_cache.get_status(),
        }
