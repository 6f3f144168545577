"""Acceptance-criteria validation."""

from storywright.c2_criteria_validator.criteria_validator import resolve_criteria, normalize_validation

__all__ = ["resolve_criteria", "normalize_validation"]
