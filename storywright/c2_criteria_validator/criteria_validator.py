"""Acceptance-criteria validation rules."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from storywright.c1_story_enums import IssueCategory, IssueSeverity, coerce_enum
from storywright.c1_story_schemas import CriterionResult, ValidationIssue, ValidationResult
from storywright.c2_response_normalization import clamp_score, clean_text, require_object
from storywright.core.exceptions import ErrorContext, InvalidRequestError

logger = logging.getLogger(__name__)

DEFAULT_OVERALL_SCORE = 50
DEFAULT_SUMMARY = "Validation complete."


def resolve_criteria(
    requested: Optional[Sequence[str]],
    stored: Sequence[Dict[str, Any]],
    story_id: str = "",
) -> List[str]:
    """Pick the criteria to validate: the caller's list, else the story's stored criteria.

    Raises:
        InvalidRequestError: Neither source yields a criterion
    """
    criteria = [c for c in (requested or []) if isinstance(c, str) and c.strip()]
    if not criteria:
        criteria = [c["description"] for c in stored if (c.get("description") or "").strip()]
    if not criteria:
        raise InvalidRequestError(
            "No acceptance criteria to validate",
            context=ErrorContext(operation="validate_criteria", story_id=story_id),
        )
    return criteria


def _normalize_issues(raw_issues: Any, index: int, text: str) -> List[ValidationIssue]:
    if not isinstance(raw_issues, list):
        return []
    issues = []
    for raw in raw_issues:
        if not isinstance(raw, dict) or not clean_text(raw.get("message")):
            continue
        issues.append(ValidationIssue(
            criterion_index=index,
            criterion_text=clean_text(raw.get("criterionText"), text),
            severity=coerce_enum(IssueSeverity, raw.get("severity"), IssueSeverity.WARNING),
            category=coerce_enum(IssueCategory, raw.get("category"), IssueCategory.VAGUE),
            message=clean_text(raw.get("message")),
            suggested_replacement=clean_text(raw.get("suggestedReplacement")) or None,
        ))
    return issues


def _entries_by_index(raw_entries: Any, count: int) -> Dict[int, Dict[str, Any]]:
    """Map each upstream entry to an input position, by its ``index`` or else its position."""
    if not isinstance(raw_entries, list):
        return {}
    placed: Dict[int, Dict[str, Any]] = {}
    for position, entry in enumerate(raw_entries):
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        if not (isinstance(index, int) and not isinstance(index, bool) and 0 <= index < count):
            index = position
        if index < count and index not in placed:
            placed[index] = entry
    return placed


def normalize_validation(raw: Any, criteria: Sequence[str], story_id: str) -> ValidationResult:
    """Coerce a validation payload into one CriterionResult per input criterion.

    Criteria the upstream skipped come back with no issues. Validity flags
    are derived from issue severities, never read from the payload.
    """
    raw = require_object(raw, "validation")
    entries = _entries_by_index(raw.get("criteria"), len(criteria))

    results = []
    for index, text in enumerate(criteria):
        entry = entries.get(index, {})
        results.append(CriterionResult(
            index=index,
            text=text,
            issues=_normalize_issues(entry.get("issues"), index, text),
            suggested_replacement=clean_text(entry.get("suggestedReplacement")) or None,
        ))

    if len(entries) < len(criteria):
        logger.debug(f"Validation response covered {len(entries)} of {len(criteria)} criteria")

    return ValidationResult(
        story_id=story_id,
        overall_score=clamp_score(raw.get("overallScore"), DEFAULT_OVERALL_SCORE),
        summary=clean_text(raw.get("summary"), DEFAULT_SUMMARY),
        criteria=results,
    )
