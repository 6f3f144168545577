"""Normalization of completion-service payloads into story value types."""

from storywright.c2_response_normalization.response_normalization import (
    require_object,
    clamp_score,
    clean_text,
    clean_strings,
    pad_criteria,
    normalize_priority_factors,
    normalize_priority_recommendation,
    normalize_bulk_recommendations,
    normalize_refinement,
    normalize_generated_stories,
    normalize_estimate,
    normalize_bulk_estimates,
    normalize_detected_dependencies,
)

__all__ = [
    "require_object",
    "clamp_score",
    "clean_text",
    "clean_strings",
    "pad_criteria",
    "normalize_priority_factors",
    "normalize_priority_recommendation",
    "normalize_bulk_recommendations",
    "normalize_refinement",
    "normalize_generated_stories",
    "normalize_estimate",
    "normalize_bulk_estimates",
    "normalize_detected_dependencies",
]
