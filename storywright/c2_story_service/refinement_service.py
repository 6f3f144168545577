"""Service layer for AI story refinement and criteria validation."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from storywright.c1_database_session import get_db
from storywright.c1_story_schemas import RefinementAnswer
from storywright.c2_criteria_validator import normalize_validation, resolve_criteria
from storywright.c2_response_normalization import normalize_refinement
from storywright.c2_story_prompts import refinement_prompts, validation_prompts
from storywright.c2_story_service.story_helpers import (
    apply_story_updates,
    load_prd,
    load_story,
    memory_context,
    request_json,
    resolve_provider,
    touch_prd,
)
from storywright.core.config import get_settings
from storywright.core.exceptions import InvalidRequestError
from storywright.interfaces import CompletionProviderInterface

logger = logging.getLogger(__name__)


def _answers(raw: Optional[Sequence[Any]]) -> List[Dict[str, str]]:
    answers = []
    for entry in raw or []:
        try:
            answer = entry if isinstance(entry, RefinementAnswer) else RefinementAnswer(**entry)
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid refinement answer: {e}", cause=e)
        answers.append(answer.to_dict())
    return answers


class RefinementService:
    """Service for the refinement and validation exchanges."""

    @staticmethod
    async def refine_story(
        prd_id: str,
        story_id: str,
        answers: Optional[Sequence[Mapping[str, Any]]] = None,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Score a story and ask clarifying questions, or fold answers back in.

        Without answers the story is never modified. With answers, the
        story is rewritten from the AI's updated story (criteria reset to
        not passed) and a priority change clears neighbouring
        recommendations.

        Args:
            prd_id: PRD that owns the story
            story_id: Story to refine
            answers: Answers to earlier questions, each {question_id, answer}
            provider: Completion provider, the configured one when omitted

        Returns:
            The refinement result
        """
        answers = _answers(answers)
        with get_db() as db:
            prd = load_prd(db, prd_id, "refine_story")
            story = load_story(db, prd_id, story_id, "refine_story")
            prd_data = prd.to_dict()
            story_data = story.to_dict()
            siblings = [s.to_dict() for s in prd.stories if s.id != story_id]
            memory = memory_context(db, prd.workspace_path)

        max_questions = get_settings().workflow.max_questions
        system_prompt, user_prompt = refinement_prompts(
            prd_data, story_data, siblings, memory, answers=answers, max_questions=max_questions
        )
        payload = await request_json(resolve_provider(provider), system_prompt, user_prompt)
        result = normalize_refinement(payload, story_data, max_questions=max_questions)

        if answers and result.updated_story is not None:
            updated = result.updated_story
            with get_db() as db:
                story = load_story(db, prd_id, story_id, "refine_story")
                apply_story_updates(db, story, {
                    "title": updated.title,
                    "description": updated.description,
                    "acceptance_criteria": updated.acceptance_criteria,
                    "priority": updated.priority,
                })
                touch_prd(story.prd)
            logger.info(f"Applied refined story {story_id} (quality {result.quality_score})")
        else:
            logger.info(
                f"Refinement of {story_id}: quality {result.quality_score}, "
                f"{len(result.questions)} questions"
            )
        return result.to_dict()

    @staticmethod
    async def validate_criteria(
        prd_id: str,
        story_id: str,
        criteria: Optional[Sequence[str]] = None,
        story_title: Optional[str] = None,
        story_description: Optional[str] = None,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Review acceptance criteria for quality problems. Nothing is persisted.

        Args:
            criteria: Criteria texts to check; the story's stored criteria when omitted
            story_title: Title to judge against, for unsaved edits
            story_description: Description to judge against, for unsaved edits
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "validate_criteria")
            story = load_story(db, prd_id, story_id, "validate_criteria")
            stored = list(story.acceptance_criteria or [])
            title = story_title or story.title
            description = story_description if story_description is not None else (story.description or "")
            prd_name = prd.name
            memory = memory_context(db, prd.workspace_path)

        texts = resolve_criteria(criteria, stored, story_id)
        system_prompt, user_prompt = validation_prompts(texts, title, description, prd_name, memory)
        payload = await request_json(resolve_provider(provider), system_prompt, user_prompt)
        result = normalize_validation(payload, texts, story_id)
        logger.info(f"Validated {len(texts)} criteria on {story_id}: score {result.overall_score}")
        return result.to_dict()
