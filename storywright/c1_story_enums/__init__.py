"""Story workflow enums for Storywright."""

from storywright.c1_story_enums.story_enums import (
    StoryPriority,
    StoryStatus,
    FactorCategory,
    FactorImpact,
    FactorWeight,
    IssueSeverity,
    IssueCategory,
    StorySize,
    EstimateConfidence,
    TemplateCategory,
    MemoryCategory,
    QualityCheckType,
    coerce_enum,
)

__all__ = [
    "StoryPriority",
    "StoryStatus",
    "FactorCategory",
    "FactorImpact",
    "FactorWeight",
    "IssueSeverity",
    "IssueCategory",
    "StorySize",
    "EstimateConfidence",
    "TemplateCategory",
    "MemoryCategory",
    "QualityCheckType",
    "coerce_enum",
]
