"""Service layer for story size estimates."""

import logging
from collections import Counter
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from storywright.c1_database_session import get_db
from storywright.c1_story_enums import EstimateConfidence
from storywright.c1_story_schemas import StoryEstimate
from storywright.c2_response_normalization import normalize_bulk_estimates, normalize_estimate
from storywright.c2_story_prompts import bulk_estimate_prompts, estimate_prompts
from storywright.c2_story_service.story_helpers import (
    load_prd,
    load_story,
    memory_context,
    request_json,
    resolve_provider,
    touch_prd,
)
from storywright.core.config import get_settings
from storywright.core.exceptions import ErrorContext, InvalidRequestError
from storywright.interfaces import CompletionProviderInterface

logger = logging.getLogger(__name__)

MANUAL_CONFIDENCE_SCORE = 100
MANUAL_REASONING = "Manual estimate."


def is_manual_estimate(estimate: Optional[Mapping[str, Any]]) -> bool:
    return bool(estimate) and bool(estimate.get("is_manual_override"))


def estimate_summary(prd_id: str, estimates: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """Per-story estimates of a PRD with point totals, size counts and average confidence."""
    values = list(estimates.values())
    total_points = sum(e["story_points"] for e in values)
    sizes = Counter(e["size"] for e in values)
    return {
        "prd_id": prd_id,
        "estimates": [{"story_id": story_id, **estimate} for story_id, estimate in estimates.items()],
        "summary": {
            "total_points": total_points,
            "average_points": round(total_points / len(values), 1) if values else 0,
            "small_count": sizes.get("small", 0),
            "medium_count": sizes.get("medium", 0),
            "large_count": sizes.get("large", 0),
            "average_confidence": round(sum(e["confidence_score"] for e in values) / len(values)) if values else 0,
        },
    }


class EstimationService:
    """Service for AI and manual story estimates."""

    @staticmethod
    async def estimate_story(
        prd_id: str,
        story_id: str,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Ask the AI for a size estimate and store it on the story.

        Already-estimated stories in the same PRD are sent along for calibration.

        Returns:
            The stored estimate
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "estimate_story")
            story = load_story(db, prd_id, story_id, "estimate_story")
            prd_data = prd.to_dict()
            story_data = story.to_dict()
            siblings = [s.to_dict() for s in prd.stories if s.id != story_id]
            memory = memory_context(db, prd.workspace_path)

        system_prompt, user_prompt = estimate_prompts(prd_data, story_data, siblings, memory)
        payload = await request_json(resolve_provider(provider), system_prompt, user_prompt)
        estimate = normalize_estimate(payload, get_settings().workflow.max_factors)

        with get_db() as db:
            story = load_story(db, prd_id, story_id, "estimate_story")
            story.estimate = estimate.to_dict()
            touch_prd(story.prd)

        logger.info(f"Estimated {story_id}: {estimate.size} / {estimate.story_points} points")
        return estimate.to_dict()

    @staticmethod
    async def estimate_prd(
        prd_id: str,
        re_estimate: bool = False,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Estimate the stories of a PRD relative to each other in one AI exchange.

        Stories with a manual estimate are skipped unless ``re_estimate`` is
        set; unestimated stories and AI-estimated ones are estimated again.
        When nothing needs estimating the stored estimates are summarized
        without calling the AI.

        Returns:
            Dictionary with prd_id, the estimates (each with its story_id) and
            a summary of points, size counts and average confidence

        Raises:
            NotFoundError: Unknown PRD
            InvalidRequestError: The PRD has no stories
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "estimate_prd")
            prd_data = prd.to_dict()
            stories = [s.to_dict() for s in prd.stories]
            memory = memory_context(db, prd.workspace_path)

        if not stories:
            raise InvalidRequestError(
                "PRD has no stories to estimate",
                context=ErrorContext(operation="estimate_prd", prd_id=prd_id),
            )

        target_ids = [s["id"] for s in stories if re_estimate or not is_manual_estimate(s.get("estimate"))]
        if not target_ids:
            logger.info(f"All stories of PRD {prd_id} carry manual estimates; nothing to estimate")
            return estimate_summary(prd_id, {s["id"]: s["estimate"] for s in stories if s.get("estimate")})

        system_prompt, user_prompt = bulk_estimate_prompts(prd_data, stories, target_ids, memory)
        payload = await request_json(
            resolve_provider(provider),
            system_prompt,
            user_prompt,
            max_tokens=get_settings().llm.generation_max_tokens,
        )
        estimates = normalize_bulk_estimates(payload, target_ids, get_settings().workflow.max_factors)

        with get_db() as db:
            prd = load_prd(db, prd_id, "estimate_prd")
            current = {}
            for story in prd.stories:
                estimate = estimates.get(story.id)
                if estimate is not None:
                    story.estimate = estimate.to_dict()
                    current[story.id] = estimate.to_dict()
                elif story.estimate:
                    current[story.id] = dict(story.estimate)
            touch_prd(prd)

        logger.info(f"Estimated {len(estimates)} of {len(target_ids)} requested stories in PRD {prd_id}")
        return estimate_summary(prd_id, current)

    @staticmethod
    def save_manual_estimate(
        prd_id: str,
        story_id: str,
        size: str,
        story_points: int,
        reasoning: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Store a human estimate, keeping the factors of any previous estimate.

        Raises:
            InvalidRequestError: Size not small/medium/large or points off the Fibonacci scale
        """
        with get_db() as db:
            story = load_story(db, prd_id, story_id, "save_manual_estimate")
            previous = story.estimate or {}
            try:
                estimate = StoryEstimate(
                    size=size,
                    story_points=story_points,
                    confidence=EstimateConfidence.HIGH,
                    confidence_score=MANUAL_CONFIDENCE_SCORE,
                    factors=previous.get("factors") or [],
                    reasoning=reasoning or MANUAL_REASONING,
                    suggested_breakdown=None,
                    is_manual_override=True,
                )
            except ValidationError as e:
                raise InvalidRequestError(
                    "Invalid estimate: size must be small, medium or large and "
                    "story points one of 1, 2, 3, 5, 8, 13",
                    context=ErrorContext(operation="save_manual_estimate", prd_id=prd_id, story_id=story_id),
                    cause=e,
                )
            story.estimate = estimate.to_dict()
            touch_prd(story.prd)
            logger.info(f"Saved manual estimate for {story_id}: {size} / {story_points} points")
            return estimate.to_dict()
