"""
Scoring utilities: keyword coverage, score blending, band classification,
feedback generation and batch aggregation.
"""

import numpy as np
from typing import Any, Dict, List, Sequence, Tuple

from tech_eval.models import Band, EvaluationConfig, EvaluationResult, QuestionId

# Heuristics comparing semantic similarity with keyword coverage
HIGH_SIMILARITY = 0.7
LOW_COVERAGE = 0.3
LOW_SIMILARITY = 0.5
HIGH_COVERAGE = 0.5
OFF_TOPIC_SIMILARITY = 0.4

BAND_FEEDBACK = {
    Band.EXCELLENT: "Excellent answer! You demonstrate a strong understanding of the concept with clear explanations.",
    Band.GOOD: "Good answer! You covered the main concepts well but could add more detail or clarity.",
    Band.PARTIAL: "Partially correct. Your answer touches on relevant concepts but misses key details.",
    Band.POOR: "The answer appears to be off-topic or missing key concepts. Please review the question carefully.",
}

TOO_SHORT_FEEDBACK = (
    "Answer is too short. Please provide a more detailed explanation with at least a few sentences."
)
TOO_SHORT_SUGGESTIONS = [
    "Provide more detail in your answer",
    "Explain the concept step by step",
    "Include relevant examples or use cases",
]

TECHNICAL_ERROR_FEEDBACK = "Evaluation failed due to a technical error. Please try again."
TECHNICAL_ERROR_SUGGESTIONS = ["Please try again later"]


def calculate_keyword_coverage(answer: str, keywords: Sequence[str]) -> Tuple[float, List[str]]:
    """Fraction of keywords found case-insensitively anywhere in the answer.

    Returns:
        (coverage, matched keywords in keyword order); (0.0, []) without keywords
    """
    if not keywords:
        return 0.0, []

    answer_lower = (answer or "").lower()
    matches = [k for k in keywords if k.lower() in answer_lower]
    return len(matches) / len(keywords), matches


def combine_scores(semantic_similarity: float, keyword_coverage: float, config: EvaluationConfig) -> float:
    """Weighted blend of similarity and coverage, kept inside [0, 1]."""
    combined = (
        semantic_similarity * config.semantic_weight
        + keyword_coverage * config.keyword_weight
    )
    return max(0.0, min(1.0, combined))


def classify_score(combined_score: float, config: EvaluationConfig) -> Band:
    if combined_score >= config.excellent_threshold:
        return Band.EXCELLENT
    if combined_score >= config.good_threshold:
        return Band.GOOD
    if combined_score >= config.partial_threshold:
        return Band.PARTIAL
    return Band.POOR


def is_correct_band(band: Band) -> bool:
    return band in (Band.EXCELLENT, Band.GOOD)


def to_display_score(combined_score: float, scale: float = 10.0) -> float:
    """The single place where the canonical [0, 1] score is scaled for presentation."""
    return round(combined_score * scale, 1)


def generate_feedback(
    band: Band,
    semantic_similarity: float,
    keyword_coverage: float,
    keywords: Sequence[str],
    matched_keywords: Sequence[str],
) -> Tuple[str, List[str]]:
    """Canned feedback for the band plus suggestions naming the missing keywords.

    Returns:
        (feedback sentence, ordered suggestions)
    """
    matched = set(matched_keywords)
    missing = [k for k in keywords if k not in matched]
    suggestions: List[str] = []

    if band == Band.EXCELLENT:
        if missing:
            suggestions.append("Consider mentioning these key terms: " + ", ".join(missing))

    elif band == Band.GOOD:
        suggestions.append("Expand on your explanation with more specific details")
        if keyword_coverage < 0.5 and missing:
            suggestions.append("Include these important concepts: " + ", ".join(missing[:3]))

    elif band == Band.PARTIAL:
        suggestions.append("Review the core concepts and provide a more comprehensive explanation")
        if missing:
            suggestions.append("Include these key terms: " + ", ".join(missing[:3]))
        if semantic_similarity < OFF_TOPIC_SIMILARITY:
            suggestions.append("Your answer may be addressing a different aspect of the question")

    else:
        suggestions.append("Read the question carefully and focus on the main concept being asked")
        if missing:
            suggestions.append("Key concepts to address: " + ", ".join(missing[:5]))
        suggestions.append("Consider reviewing the fundamentals of this topic")

    if keywords and semantic_similarity > HIGH_SIMILARITY and keyword_coverage < LOW_COVERAGE:
        suggestions.append(
            "Your explanation is conceptually sound but could use more precise technical terminology"
        )
    elif semantic_similarity < LOW_SIMILARITY and keyword_coverage > HIGH_COVERAGE:
        suggestions.append(
            "You mentioned relevant keywords but the overall explanation needs better structure and clarity"
        )

    return BAND_FEEDBACK[band], suggestions


def build_too_short_result(question_id: QuestionId) -> EvaluationResult:
    """Canned minimal result for answers too short to be worth embedding."""
    return EvaluationResult(
        question_id=question_id,
        semantic_similarity=0.0,
        keyword_coverage=0.0,
        combined_score=0.0,
        display_score=0.0,
        band=Band.POOR,
        is_correct=False,
        feedback=TOO_SHORT_FEEDBACK,
        suggestions=list(TOO_SHORT_SUGGESTIONS),
    )


def build_error_result(question_id: QuestionId, error: str) -> EvaluationResult:
    """Degraded zero-score result standing in for a failed batch item."""
    return EvaluationResult(
        question_id=question_id,
        semantic_similarity=0.0,
        keyword_coverage=0.0,
        combined_score=0.0,
        display_score=0.0,
        band=Band.POOR,
        is_correct=False,
        feedback=TECHNICAL_ERROR_FEEDBACK,
        suggestions=list(TECHNICAL_ERROR_SUGGESTIONS),
        error=error,
    )


def calculate_aggregate_metrics(results: Sequence[EvaluationResult]) -> Dict[str, Any]:
    """Calculate aggregate metrics from individual results."""
    if not results:
        return {}

    by_band = {band.value: 0 for band in Band}
    for r in results:
        by_band[r.band.value] += 1

    return {
        "total_questions": len(results),
        "correct_answers": sum(1 for r in results if r.is_correct),
        "failed_evaluations": sum(1 for r in results if r.error),
        "average_combined_score": float(np.mean([r.combined_score for r in results])),
        "average_display_score": float(np.mean([r.display_score for r in results])),
        "average_similarity": float(np.mean([r.semantic_similarity for r in results])),
        "average_keyword_coverage": float(np.mean([r.keyword_coverage for r in results])),
        "by_band": by_band,
    }
