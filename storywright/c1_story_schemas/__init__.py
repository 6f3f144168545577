"""Story workflow value types for Storywright."""

from storywright.c1_story_schemas.story_schemas import (
    QUALITY_THRESHOLD,
    FIBONACCI_POINTS,
    new_id,
    AcceptanceCriterion,
    QualityCheck,
    PriorityFactor,
    PriorityRecommendation,
    EstimateFactor,
    StoryEstimate,
    RefinementQuestion,
    RefinementAnswer,
    UpdatedStory,
    RefinementResult,
    ValidationIssue,
    CriterionResult,
    ValidationResult,
    GeneratedStory,
    DetectedDependency,
)

__all__ = [
    "QUALITY_THRESHOLD",
    "FIBONACCI_POINTS",
    "new_id",
    "AcceptanceCriterion",
    "QualityCheck",
    "PriorityFactor",
    "PriorityRecommendation",
    "EstimateFactor",
    "StoryEstimate",
    "RefinementQuestion",
    "RefinementAnswer",
    "UpdatedStory",
    "RefinementResult",
    "ValidationIssue",
    "CriterionResult",
    "ValidationResult",
    "GeneratedStory",
    "DetectedDependency",
]
