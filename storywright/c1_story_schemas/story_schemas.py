"""Value types exchanged by the story workflow.

These are request/response shapes and JSON column payloads, not tables.
Derived flags (``meets_threshold``, ``is_valid``, ``all_valid``) are
computed from the fields they depend on, so a stored or returned value
can never disagree with its inputs.
"""

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from storywright.c1_story_enums import (
    EstimateConfidence,
    FactorCategory,
    FactorImpact,
    FactorWeight,
    IssueCategory,
    IssueSeverity,
    QualityCheckType,
    StoryPriority,
    StorySize,
)

QUALITY_THRESHOLD = 80
FIBONACCI_POINTS = (1, 2, 3, 5, 8, 13)
BLOCKING_SEVERITIES = (IssueSeverity.ERROR.value, IssueSeverity.WARNING.value)


def new_id(prefix: str, length: int = 12) -> str:
    """Generate a prefixed random identifier, e.g. ``story-3f9a1c...``."""
    return f"{prefix}-{uuid.uuid4().hex[:length]}"


class _StoryModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class AcceptanceCriterion(_StoryModel):
    """A single pass/fail condition attached to a story."""

    id: str = Field(default_factory=lambda: new_id("ac", 8))
    description: str
    passed: bool = False


class QualityCheck(_StoryModel):
    """A quality gate declared on a PRD."""

    id: str = Field(default_factory=lambda: new_id("qc", 8))
    type: QualityCheckType = QualityCheckType.CUSTOM
    name: str
    command: str
    timeout: Optional[int] = Field(default=None, ge=1, description="Seconds before the check is aborted")
    required: bool = True
    enabled: bool = True


class PriorityFactor(_StoryModel):
    factor: str
    category: FactorCategory = FactorCategory.SCOPE
    impact: FactorImpact = FactorImpact.NEUTRAL
    weight: FactorWeight = FactorWeight.MODERATE


class PriorityRecommendation(_StoryModel):
    """AI-suggested priority for one story. Replaced wholesale, never patched."""

    story_id: str
    suggested_priority: StoryPriority
    current_priority: StoryPriority
    confidence: int = Field(ge=0, le=100)
    factors: List[PriorityFactor] = Field(default_factory=list)
    explanation: str
    is_manual_override: bool = False


class EstimateFactor(_StoryModel):
    factor: str
    impact: FactorImpact = FactorImpact.NEUTRAL
    weight: FactorWeight = FactorWeight.MODERATE


class StoryEstimate(_StoryModel):
    size: StorySize
    story_points: int
    confidence: EstimateConfidence
    confidence_score: int = Field(ge=0, le=100)
    factors: List[EstimateFactor] = Field(default_factory=list)
    reasoning: str = ""
    suggested_breakdown: Optional[List[str]] = None
    is_manual_override: bool = False

    @field_validator("story_points")
    @classmethod
    def points_on_scale(cls, v):
        if v not in FIBONACCI_POINTS:
            raise ValueError(f"story_points must be one of {FIBONACCI_POINTS}")
        return v


class RefinementQuestion(_StoryModel):
    id: str = Field(default_factory=lambda: new_id("q", 8))
    question: str
    context: str = ""
    suggested_answers: Optional[List[str]] = None


class RefinementAnswer(_StoryModel):
    question_id: str
    answer: str


class UpdatedStory(_StoryModel):
    title: str
    description: str
    acceptance_criteria: List[str]
    priority: StoryPriority


class RefinementResult(_StoryModel):
    """Outcome of one refinement exchange for a story."""

    story_id: str
    quality_score: int = Field(ge=0, le=100)
    quality_explanation: str
    questions: List[RefinementQuestion] = Field(default_factory=list)
    updated_story: Optional[UpdatedStory] = None
    improvements: Optional[List[str]] = None

    @computed_field
    @property
    def meets_threshold(self) -> bool:
        return self.quality_score >= QUALITY_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        exclude = {name for name in ("updated_story", "improvements") if getattr(self, name) is None}
        data = self.model_dump(mode="json", exclude=exclude)
        for question in data["questions"]:
            if question.get("suggested_answers") is None:
                question.pop("suggested_answers", None)
        return data


class ValidationIssue(_StoryModel):
    criterion_index: int
    criterion_text: str
    severity: IssueSeverity = IssueSeverity.WARNING
    category: IssueCategory = IssueCategory.VAGUE
    message: str
    suggested_replacement: Optional[str] = None


class CriterionResult(_StoryModel):
    index: int
    text: str
    issues: List[ValidationIssue] = Field(default_factory=list)
    suggested_replacement: Optional[str] = None

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not any(issue.severity in BLOCKING_SEVERITIES for issue in self.issues)


class ValidationResult(_StoryModel):
    """Per-criterion verdicts for a story's acceptance criteria."""

    story_id: str
    overall_score: int = Field(ge=0, le=100)
    summary: str
    criteria: List[CriterionResult] = Field(default_factory=list)

    @computed_field
    @property
    def all_valid(self) -> bool:
        return all(result.is_valid for result in self.criteria)


class GeneratedStory(_StoryModel):
    title: str
    description: str = ""
    acceptance_criteria: List[str] = Field(default_factory=list)
    priority: StoryPriority = StoryPriority.MEDIUM


class DetectedDependency(_StoryModel):
    """An edge proposed by dependency analysis: ``from_story_id`` waits on ``to_story_id``."""

    from_story_id: str
    to_story_id: str
    reason: Optional[str] = None
    auto_detected: bool = True
