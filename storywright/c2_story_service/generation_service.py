"""Service layer for bulk story generation and template instantiation."""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from storywright.c1_database_session import get_db
from storywright.c2_response_normalization import normalize_generated_stories
from storywright.c2_story_prompts import generation_prompts
from storywright.c2_story_service.prd_service import build_story
from storywright.c2_story_service.story_helpers import (
    load_prd,
    memory_context,
    next_sort_order,
    request_json,
    resolve_provider,
    touch_prd,
)
from storywright.c2_template_library import TemplateService, instantiate_template
from storywright.core.config import get_settings
from storywright.core.exceptions import ErrorContext, InvalidRequestError
from storywright.interfaces import CompletionProviderInterface

logger = logging.getLogger(__name__)

MAX_GENERATE_COUNT = 20


class GenerationService:
    """Service for creating stories in bulk, from the AI or from templates."""

    @staticmethod
    async def generate_stories(
        prd_id: str,
        description: Optional[str] = None,
        context: Optional[str] = None,
        count: Optional[int] = None,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Draft stories for a PRD from a product description.

        Drafts are returned for review and not stored; see ``accept_generated``.

        Args:
            prd_id: Target PRD
            description: Product description; the PRD description when omitted
            context: Extra context passed through to the prompt
            count: Number of stories to ask for
            provider: Completion provider, the configured one when omitted

        Returns:
            Dictionary with prd_id and the drafted stories
        """
        workflow = get_settings().workflow
        if count is None:
            count = workflow.default_generate_count
        if count < 1 or count > MAX_GENERATE_COUNT:
            raise InvalidRequestError(f"count must be between 1 and {MAX_GENERATE_COUNT}")

        with get_db() as db:
            prd = load_prd(db, prd_id, "generate_stories")
            source = (description or "").strip() or (prd.description or "").strip()
            existing_titles = [s.title for s in prd.stories]
            prd_name = prd.name
            memory = memory_context(db, prd.workspace_path)

        if not source:
            raise InvalidRequestError(
                "A description is required: provide one or set the PRD description",
                context=ErrorContext(operation="generate_stories", prd_id=prd_id),
            )

        system_prompt, user_prompt = generation_prompts(
            source, count, existing_titles, prd_name, context, memory
        )
        payload = await request_json(
            resolve_provider(provider),
            system_prompt,
            user_prompt,
            max_tokens=get_settings().llm.generation_max_tokens,
        )
        stories = normalize_generated_stories(payload, workflow.min_acceptance_criteria)
        logger.info(f"Generated {len(stories)} draft stories for PRD {prd_id}")
        return {"prd_id": prd_id, "stories": [s.to_dict() for s in stories]}

    @staticmethod
    def accept_generated(prd_id: str, stories: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Store reviewed draft stories at the end of a PRD, in the order given.

        Returns:
            Dictionary with prd_id and the created stories
        """
        if not stories:
            raise InvalidRequestError("No stories to accept")

        with get_db() as db:
            prd = load_prd(db, prd_id, "accept_generated")
            start = next_sort_order(db, prd_id=prd_id)
            created = []
            for offset, fields in enumerate(stories):
                story = build_story(
                    prd,
                    None,
                    fields.get("title"),
                    fields.get("description", ""),
                    fields.get("acceptance_criteria"),
                    fields.get("priority") or "medium",
                    sort_order=start + offset,
                )
                db.add(story)
                created.append(story)
            touch_prd(prd)
            db.flush()
            logger.info(f"Accepted {len(created)} generated stories into PRD {prd_id}")
            return {"prd_id": prd_id, "stories": [s.to_dict() for s in created]}

    @staticmethod
    def create_story_from_template(
        prd_id: str,
        template_id: str,
        variables: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Instantiate a template into a new story appended to a PRD."""
        with get_db() as db:
            TemplateService.ensure_built_in_templates(db)
            template = TemplateService.load_template(db, template_id).to_dict()
            prd = load_prd(db, prd_id, "create_story_from_template")
            fields = instantiate_template(template, variables)
            story = build_story(
                prd,
                None,
                fields["title"],
                fields["description"],
                fields["acceptance_criteria"],
                fields["priority"],
                sort_order=next_sort_order(db, prd_id=prd_id),
            )
            db.add(story)
            touch_prd(prd)
            db.flush()
            logger.info(f"Created story {story.id} from template {template_id}")
            return story.to_dict()

    @staticmethod
    def preview_template(template_id: str, variables: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Story fields a template would produce, without storing anything."""
        template = TemplateService.get_template(template_id)
        return instantiate_template(template, variables)
