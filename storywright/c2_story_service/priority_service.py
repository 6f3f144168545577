"""Service layer for AI priority recommendations."""

import logging
from collections import Counter
from typing import Any, Dict, Optional

from storywright.c1_database_session import get_db
from storywright.c1_story_schemas import PriorityRecommendation
from storywright.c2_response_normalization import (
    normalize_bulk_recommendations,
    normalize_priority_recommendation,
)
from storywright.c2_story_graph import affected_by_priority_change, neighbors
from storywright.c2_story_prompts import bulk_priority_prompts, priority_prompts
from storywright.c2_story_service.story_helpers import (
    clear_recommendations,
    load_prd,
    load_story,
    memory_context,
    request_json,
    require_priority,
    resolve_provider,
    touch_prd,
)
from storywright.core.config import get_settings
from storywright.core.exceptions import ErrorContext, InvalidRequestError
from storywright.interfaces import CompletionProviderInterface

logger = logging.getLogger(__name__)


class PriorityService:
    """Service for recommending, accepting and overriding story priorities."""

    @staticmethod
    async def recommend_priority(
        prd_id: str,
        story_id: str,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Ask the AI for a priority recommendation on one story and store it.

        The story's own priority is left alone; only its recommendation is replaced.

        Returns:
            The stored recommendation
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "recommend_priority")
            story = load_story(db, prd_id, story_id, "recommend_priority")
            stories = [s.to_dict() for s in prd.stories]
            prd_data = prd.to_dict()
            story_data = story.to_dict()
            memory = memory_context(db, prd.workspace_path)

        by_id = {s["id"]: s for s in stories}
        related = neighbors(story_id, stories)
        system_prompt, user_prompt = priority_prompts(
            prd_data,
            story_data,
            blocks=[by_id[sid] for sid in related.blocked_by if sid in by_id],
            blocked_by=[by_id[sid] for sid in related.depends_on if sid in by_id],
            siblings=[s for s in stories if s["id"] != story_id],
            memory_context=memory,
        )
        payload = await request_json(resolve_provider(provider), system_prompt, user_prompt)
        recommendation = normalize_priority_recommendation(
            payload,
            story_id,
            story_data["priority"],
            max_factors=get_settings().workflow.max_factors,
        )

        with get_db() as db:
            story = load_story(db, prd_id, story_id, "recommend_priority")
            story.priority_recommendation = recommendation.to_dict()
            touch_prd(story.prd)

        logger.info(
            f"Priority for {story_id}: {recommendation.suggested_priority} "
            f"(confidence {recommendation.confidence})"
        )
        return recommendation.to_dict()

    @staticmethod
    async def recommend_priorities(
        prd_id: str,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Recommend priorities for every story of a PRD in one AI exchange.

        Returns:
            Dictionary with prd_id, recommendations, and a summary holding
            per-priority counts and how many suggestions differ from the
            current priority
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "recommend_priorities")
            stories = [s.to_dict() for s in prd.stories]
            prd_data = prd.to_dict()
            memory = memory_context(db, prd.workspace_path)

        if not stories:
            raise InvalidRequestError(
                "PRD has no stories to prioritize",
                context=ErrorContext(operation="recommend_priorities", prd_id=prd_id),
            )

        system_prompt, user_prompt = bulk_priority_prompts(prd_data, stories, memory)
        payload = await request_json(
            resolve_provider(provider),
            system_prompt,
            user_prompt,
            max_tokens=get_settings().llm.generation_max_tokens,
        )
        recommendations = normalize_bulk_recommendations(
            payload,
            {s["id"]: s["priority"] for s in stories},
            max_factors=get_settings().workflow.max_factors,
        )

        with get_db() as db:
            prd = load_prd(db, prd_id, "recommend_priorities")
            by_id = {s.id: s for s in prd.stories}
            stored = []
            for recommendation in recommendations:
                # A story deleted while the AI was thinking is skipped
                story = by_id.get(recommendation.story_id)
                if story is None:
                    continue
                story.priority_recommendation = recommendation.to_dict()
                stored.append(recommendation)
            touch_prd(prd)

        counts = Counter(r.suggested_priority for r in stored)
        summary = {
            "critical_count": counts.get("critical", 0),
            "high_count": counts.get("high", 0),
            "medium_count": counts.get("medium", 0),
            "low_count": counts.get("low", 0),
            "changed_count": sum(1 for r in stored if r.suggested_priority != r.current_priority),
        }
        logger.info(f"Bulk priority for PRD {prd_id}: {len(stored)} recommendations, {summary['changed_count']} changes")
        return {
            "prd_id": prd_id,
            "recommendations": [r.to_dict() for r in stored],
            "summary": summary,
        }

    @staticmethod
    def accept_priority(prd_id: str, story_id: str, priority: str, accept: bool = True) -> Dict[str, Any]:
        """
        Accept the AI suggestion or override it with a chosen priority.

        Sets the story's priority, marks the stored recommendation as
        overridden when ``accept`` is false, and clears the recommendations
        of the story's graph neighbours when the priority actually changes.

        Returns:
            The updated story
        """
        require_priority(priority)
        with get_db() as db:
            story = load_story(db, prd_id, story_id, "accept_priority")
            previous = story.priority
            story.priority = priority

            if story.priority_recommendation:
                stored = dict(story.priority_recommendation)
                stored["current_priority"] = priority
                stored["is_manual_override"] = not accept
                story.priority_recommendation = PriorityRecommendation(**stored).to_dict()

            if previous != priority:
                stories = [s.to_dict() for s in story.prd.stories]
                clear_recommendations(db, affected_by_priority_change(story_id, stories))

            touch_prd(story.prd)
            db.flush()
            action = "Accepted" if accept else "Overrode"
            logger.info(f"{action} priority {priority} for story {story_id} (was {previous})")
            return story.to_dict()
