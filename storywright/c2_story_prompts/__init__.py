"""Prompt builders for the story workflow."""

from storywright.c2_story_prompts.story_prompts import (
    build_memory_context,
    refinement_prompts,
    validation_prompts,
    priority_prompts,
    bulk_priority_prompts,
    generation_prompts,
    estimate_prompts,
    bulk_estimate_prompts,
    dependency_analysis_prompts,
)

__all__ = [
    "build_memory_context",
    "refinement_prompts",
    "validation_prompts",
    "priority_prompts",
    "bulk_priority_prompts",
    "generation_prompts",
    "estimate_prompts",
    "bulk_estimate_prompts",
    "dependency_analysis_prompts",
]
