"""
Scoring presets for the evaluation engine.
"""

from tech_eval.models import EvaluationConfig


def get_default_config() -> EvaluationConfig:
    """Get default evaluation configuration."""
    return EvaluationConfig(
        excellent_threshold=0.85,
        good_threshold=0.70,
        partial_threshold=0.50,
        semantic_weight=0.7,
        keyword_weight=0.3,
    )


def get_strict_config() -> EvaluationConfig:
    """Get configuration with higher bars and more weight on terminology."""
    return EvaluationConfig(
        excellent_threshold=0.90,
        good_threshold=0.78,
        partial_threshold=0.60,
        semantic_weight=0.6,
        keyword_weight=0.4,
    )


def get_lenient_config() -> EvaluationConfig:
    """Get configuration for screening rounds (meaning over exact wording)."""
    return EvaluationConfig(
        excellent_threshold=0.80,
        good_threshold=0.62,
        partial_threshold=0.40,
        semantic_weight=0.8,
        keyword_weight=0.2,
    )


PRESETS = {
    "default": get_default_config,
    "strict": get_strict_config,
    "lenient": get_lenient_config,
}


def get_config(name: str = "default") -> EvaluationConfig:
    """Look up a preset by name.

    Raises:
        ValueError: if the preset is unknown
    """
    try:
        return PRESETS[name]()
    except KeyError:
        raise ValueError(f"Unknown preset '{name}'. Choose from: {', '.join(PRESETS)}") from None
