"""Normalization of completion-service payloads.

The completion service is advisory: its payloads are parsed JSON of unknown
quality. Each ``normalize_*`` function below is the single place where one
response type is coerced into a value type, with every enum-shaped field
defaulted rather than rejected and every derived flag recomputed.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from storywright.c1_story_enums import (
    EstimateConfidence,
    FactorCategory,
    FactorImpact,
    FactorWeight,
    StoryPriority,
    StorySize,
    coerce_enum,
)
from storywright.c1_story_schemas import (
    FIBONACCI_POINTS,
    DetectedDependency,
    EstimateFactor,
    GeneratedStory,
    PriorityFactor,
    PriorityRecommendation,
    RefinementQuestion,
    RefinementResult,
    StoryEstimate,
    UpdatedStory,
)
from storywright.core.exceptions import MalformedUpstreamResponseError

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_CONFIDENCE = 60
DEFAULT_QUALITY_SCORE = 50
DEFAULT_PRIORITY_EXPLANATION = "Priority recommendation based on story analysis."
DEFAULT_BULK_EXPLANATION = "Priority based on story analysis."
DEFAULT_QUALITY_EXPLANATION = "No explanation provided."
DEFAULT_ESTIMATE_REASONING = "Estimate based on story content analysis."
MAX_FACTORS = 6

POINTS_BY_SIZE = {"small": 2, "medium": 5, "large": 8}
SCORE_BY_CONFIDENCE = {"high": 85, "medium": 60, "low": 30}


def require_object(payload: Any, what: str) -> Dict[str, Any]:
    """Return ``payload`` if it is a JSON object, else raise MalformedUpstreamResponseError."""
    if not isinstance(payload, dict):
        raise MalformedUpstreamResponseError(
            f"AI {what} response was not a JSON object (got {type(payload).__name__})"
        )
    return payload


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_score(value: Any, default: int) -> int:
    """Round a numeric score into [0, 100]; non-numeric values become ``default``."""
    if not is_number(value):
        return default
    return max(0, min(100, int(round(value))))


def clean_text(value: Any, default: str = "") -> str:
    """Trimmed string value, or ``default`` when missing, blank or not a string."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def clean_strings(values: Any) -> List[str]:
    """Keep non-blank strings from a list, trimmed; anything but a list yields []."""
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def pad_criteria(criteria: Iterable[str], minimum: int) -> List[str]:
    """Append placeholder criteria until at least ``minimum`` are present."""
    padded = list(criteria)
    while len(padded) < minimum:
        padded.append(f"Needs acceptance criterion {len(padded) + 1}")
    return padded


def _raw_factors(raw: Any, limit: int) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    kept = [f for f in raw if isinstance(f, dict) and clean_text(f.get("factor"))]
    return kept[:limit]


def normalize_priority_factors(raw: Any, limit: int = MAX_FACTORS) -> List[PriorityFactor]:
    return [
        PriorityFactor(
            factor=clean_text(f.get("factor")),
            category=coerce_enum(FactorCategory, f.get("category"), FactorCategory.SCOPE),
            impact=coerce_enum(FactorImpact, f.get("impact"), FactorImpact.NEUTRAL),
            weight=coerce_enum(FactorWeight, f.get("weight"), FactorWeight.MODERATE),
        )
        for f in _raw_factors(raw, limit)
    ]


def normalize_priority_recommendation(
    raw: Any,
    story_id: str,
    current_priority: str,
    default_explanation: str = DEFAULT_PRIORITY_EXPLANATION,
    max_factors: int = MAX_FACTORS,
) -> PriorityRecommendation:
    """Coerce one priority suggestion.

    Unknown priority -> medium, confidence clamped (non-numeric -> 60), factor
    enums defaulted to scope/neutral/moderate, at most ``max_factors`` factors.
    """
    raw = require_object(raw, "priority")
    return PriorityRecommendation(
        story_id=story_id,
        suggested_priority=coerce_enum(StoryPriority, raw.get("suggestedPriority"), StoryPriority.MEDIUM),
        current_priority=coerce_enum(StoryPriority, current_priority, StoryPriority.MEDIUM),
        confidence=clamp_score(raw.get("confidence"), DEFAULT_PRIORITY_CONFIDENCE),
        factors=normalize_priority_factors(raw.get("factors"), max_factors),
        explanation=clean_text(raw.get("explanation"), default_explanation),
        is_manual_override=False,
    )


def normalize_bulk_recommendations(
    raw: Any,
    current_priorities: Mapping[str, str],
    max_factors: int = MAX_FACTORS,
) -> List[PriorityRecommendation]:
    """Coerce a bulk priority payload; entries for unknown story ids are ignored."""
    raw = require_object(raw, "bulk priority")
    entries = raw.get("recommendations")
    if not isinstance(entries, list):
        raise MalformedUpstreamResponseError("AI bulk priority response has no recommendations array")

    recommendations: Dict[str, PriorityRecommendation] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        story_id = entry.get("storyId")
        if not isinstance(story_id, str) or story_id not in current_priorities:
            logger.debug(f"Ignoring recommendation for unknown story {story_id!r}")
            continue
        recommendations[story_id] = normalize_priority_recommendation(
            entry,
            story_id,
            current_priorities[story_id],
            default_explanation=DEFAULT_BULK_EXPLANATION,
            max_factors=max_factors,
        )
    return list(recommendations.values())


def _normalize_questions(raw: Any, limit: int) -> List[RefinementQuestion]:
    if not isinstance(raw, list):
        return []
    questions = []
    for entry in raw:
        if not isinstance(entry, dict) or not clean_text(entry.get("question")):
            continue
        suggested = entry.get("suggestedAnswers")
        fields = {
            "question": clean_text(entry.get("question")),
            "context": clean_text(entry.get("context")),
            "suggested_answers": clean_strings(suggested) if isinstance(suggested, list) else None,
        }
        question_id = clean_text(entry.get("id"))
        if question_id:
            fields["id"] = question_id
        questions.append(RefinementQuestion(**fields))
        if len(questions) == limit:
            break
    return questions


def _normalize_updated_story(raw: Any, story: Mapping[str, Any]) -> Optional[UpdatedStory]:
    if not isinstance(raw, dict):
        return None
    current_criteria = [
        c.get("description", "") for c in story.get("acceptance_criteria") or [] if isinstance(c, dict)
    ]
    criteria = clean_strings(raw.get("acceptanceCriteria"))
    if not criteria:
        criteria = [c for c in current_criteria if c.strip()]
    current_priority = coerce_enum(StoryPriority, story.get("priority"), StoryPriority.MEDIUM)
    description = raw.get("description")
    return UpdatedStory(
        title=clean_text(raw.get("title"), story["title"]),
        description=description if isinstance(description, str) else story.get("description", ""),
        acceptance_criteria=criteria,
        priority=coerce_enum(StoryPriority, raw.get("priority"), current_priority),
    )


def normalize_refinement(
    raw: Any,
    story: Mapping[str, Any],
    max_questions: int = 5,
) -> RefinementResult:
    """Coerce a refinement payload for ``story`` (a ``Story.to_dict()`` record).

    The upstream ``meetsThreshold`` is ignored; the result derives it from
    the normalized score.
    """
    raw = require_object(raw, "refinement")
    improvements = raw.get("improvements")
    return RefinementResult(
        story_id=story["id"],
        quality_score=clamp_score(raw.get("qualityScore"), DEFAULT_QUALITY_SCORE),
        quality_explanation=clean_text(raw.get("qualityExplanation"), DEFAULT_QUALITY_EXPLANATION),
        questions=_normalize_questions(raw.get("questions"), max_questions),
        updated_story=_normalize_updated_story(raw.get("updatedStory"), story),
        improvements=[i for i in improvements if isinstance(i, str)] if isinstance(improvements, list) else None,
    )


def normalize_generated_stories(raw: Any, min_criteria: int = 3) -> List[GeneratedStory]:
    """Coerce a generation payload: a JSON array of stories, or ``{"stories": [...]}``.

    Raises:
        MalformedUpstreamResponseError: No array, or no usable story in it
    """
    entries = raw.get("stories") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise MalformedUpstreamResponseError("AI generation response was not a JSON array of stories")

    stories = []
    for entry in entries:
        if not isinstance(entry, dict) or not clean_text(entry.get("title")):
            continue
        stories.append(GeneratedStory(
            title=clean_text(entry.get("title")),
            description=clean_text(entry.get("description")),
            acceptance_criteria=pad_criteria(clean_strings(entry.get("acceptanceCriteria")), min_criteria),
            priority=coerce_enum(StoryPriority, entry.get("priority"), StoryPriority.MEDIUM),
        ))

    if not stories:
        raise MalformedUpstreamResponseError("AI generated no valid stories")
    return stories


def normalize_estimate(raw: Any, max_factors: int = MAX_FACTORS) -> StoryEstimate:
    """Coerce an estimation payload.

    Points off the Fibonacci scale are derived from size; a missing
    confidence score is derived from the confidence band; a breakdown is
    only kept for stories of 8 points or more.
    """
    raw = require_object(raw, "estimate")
    size = coerce_enum(StorySize, raw.get("size"), StorySize.MEDIUM)
    points = raw.get("storyPoints")
    if not (is_number(points) and points in FIBONACCI_POINTS):
        points = POINTS_BY_SIZE[size.value]
    confidence = coerce_enum(EstimateConfidence, raw.get("confidence"), EstimateConfidence.MEDIUM)

    breakdown = None
    if points >= 8 and isinstance(raw.get("suggestedBreakdown"), list):
        breakdown = clean_strings(raw.get("suggestedBreakdown"))

    return StoryEstimate(
        size=size,
        story_points=int(points),
        confidence=confidence,
        confidence_score=clamp_score(raw.get("confidenceScore"), SCORE_BY_CONFIDENCE[confidence.value]),
        factors=[
            EstimateFactor(
                factor=clean_text(f.get("factor")),
                impact=coerce_enum(FactorImpact, f.get("impact"), FactorImpact.NEUTRAL),
                weight=coerce_enum(FactorWeight, f.get("weight"), FactorWeight.MODERATE),
            )
            for f in _raw_factors(raw.get("factors"), max_factors)
        ],
        reasoning=clean_text(raw.get("reasoning"), DEFAULT_ESTIMATE_REASONING),
        suggested_breakdown=breakdown,
        is_manual_override=False,
    )


def normalize_bulk_estimates(
    raw: Any,
    story_ids: Iterable[str],
    max_factors: int = MAX_FACTORS,
) -> Dict[str, StoryEstimate]:
    """Coerce a bulk estimation payload into estimates keyed by story id.

    Accepts a bare array or an object with an ``estimates`` array. Entries for
    stories outside ``story_ids`` are ignored; each kept entry is coerced like
    a single estimate.
    """
    entries = raw.get("estimates") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise MalformedUpstreamResponseError("AI bulk estimate response has no estimates array")

    wanted = set(story_ids)
    estimates: Dict[str, StoryEstimate] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        story_id = entry.get("storyId")
        if not isinstance(story_id, str) or story_id not in wanted:
            logger.debug(f"Ignoring estimate for unrequested story {story_id!r}")
            continue
        estimates[story_id] = normalize_estimate(entry, max_factors)
    return estimates


def normalize_detected_dependencies(raw: Any, story_ids: Iterable[str]) -> List[DetectedDependency]:
    """Coerce a dependency analysis payload.

    Accepts a bare array or an object with a ``dependencies`` array. Edges
    naming unknown stories, self edges and repeated edges are dropped.
    """
    entries = raw.get("dependencies") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise MalformedUpstreamResponseError("AI dependency analysis response has no dependencies array")

    known = set(story_ids)
    seen = set()
    detected: List[DetectedDependency] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        from_id, to_id = entry.get("fromStoryId"), entry.get("toStoryId")
        if not (isinstance(from_id, str) and isinstance(to_id, str)):
            continue
        if from_id not in known or to_id not in known or from_id == to_id or (from_id, to_id) in seen:
            logger.debug(f"Ignoring detected dependency {from_id!r} -> {to_id!r}")
            continue
        seen.add((from_id, to_id))
        detected.append(DetectedDependency(
            from_story_id=from_id,
            to_story_id=to_id,
            reason=clean_text(entry.get("reason")) or None,
        ))
    return detected
