"""Service layer for dependency edges between stories of one PRD."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Set

from storywright.c1_database_session import get_db
from storywright.c2_response_normalization import normalize_detected_dependencies
from storywright.c2_story_graph import (
    affected_by_dependency_rewrite,
    affected_by_edge_change,
    build_dependency_graph,
    merge_detected_edges,
    validate_execution_order,
    would_create_cycle,
)
from storywright.c2_story_prompts import dependency_analysis_prompts
from storywright.c2_story_service.story_helpers import (
    clear_recommendations,
    load_prd,
    load_story,
    memory_context,
    request_json,
    resolve_provider,
    touch_prd,
)
from storywright.core.exceptions import ErrorContext, InvalidRequestError
from storywright.interfaces import CompletionProviderInterface

logger = logging.getLogger(__name__)


class DependencyService:
    """Service for editing and inspecting the dependency graph of a PRD.

    An edge ``story_id -> depends_on_id`` means ``story_id`` cannot start
    before ``depends_on_id`` completes. Every edge change clears the priority
    recommendation of both endpoints in the same transaction.
    """

    @staticmethod
    def add_dependency(
        prd_id: str,
        story_id: str,
        depends_on_id: str,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Add a dependency edge.

        Args:
            prd_id: PRD that owns both stories
            story_id: The dependent story
            depends_on_id: The prerequisite story
            reason: Optional human-readable reason for the edge

        Returns:
            The updated dependent story

        Raises:
            NotFoundError: Either story is not in the PRD
            InvalidRequestError: Self edge or an edge that would close a cycle
        """
        context = ErrorContext(operation="add_dependency", prd_id=prd_id, story_id=story_id)
        if story_id == depends_on_id:
            raise InvalidRequestError("A story cannot depend on itself", context=context)

        with get_db() as db:
            prd = load_prd(db, prd_id, "add_dependency")
            story = load_story(db, prd_id, story_id, "add_dependency")
            load_story(db, prd_id, depends_on_id, "add_dependency")

            depends_on = list(story.depends_on or [])
            if depends_on_id not in depends_on:
                records = [s.to_dict() for s in prd.stories]
                if would_create_cycle(records, story_id, depends_on_id):
                    raise InvalidRequestError(
                        f"Adding this dependency would create a circular dependency "
                        f"({depends_on_id} already depends on {story_id})",
                        context=context,
                    )
                story.depends_on = depends_on + [depends_on_id]

            if reason and reason.strip():
                reasons = dict(story.dependency_reasons or {})
                reasons[depends_on_id] = reason.strip()
                story.dependency_reasons = reasons

            clear_recommendations(db, affected_by_edge_change(story_id, depends_on_id))
            story.updated_at = datetime.utcnow()
            touch_prd(prd)
            db.flush()
            logger.info(f"Story {story_id} now depends on {depends_on_id}")
            return story.to_dict()

    @staticmethod
    def remove_dependency(prd_id: str, story_id: str, depends_on_id: str) -> Dict[str, Any]:
        """
        Remove a dependency edge.

        Removing an edge that does not exist changes nothing and is not an error.

        Raises:
            NotFoundError: The story is not in the PRD
        """
        with get_db() as db:
            story = load_story(db, prd_id, story_id, "remove_dependency")
            depends_on = list(story.depends_on or [])
            if depends_on_id not in depends_on:
                logger.debug(f"Story {story_id} does not depend on {depends_on_id}; nothing to remove")
                return story.to_dict()
            story.depends_on = [d for d in depends_on if d != depends_on_id]
            story.dependency_reasons = {
                k: v for k, v in (story.dependency_reasons or {}).items() if k != depends_on_id
            }
            clear_recommendations(db, affected_by_edge_change(story_id, depends_on_id))
            story.updated_at = datetime.utcnow()
            touch_prd(story.prd)
            db.flush()
            logger.info(f"Removed dependency {story_id} -> {depends_on_id}")
            return story.to_dict()

    @staticmethod
    def update_dependency_reason(
        prd_id: str,
        story_id: str,
        depends_on_id: str,
        reason: Optional[str],
    ) -> Dict[str, Any]:
        """Set the reason on an existing edge; an empty reason deletes it."""
        with get_db() as db:
            story = load_story(db, prd_id, story_id, "update_dependency_reason")
            if depends_on_id not in (story.depends_on or []):
                raise InvalidRequestError(
                    f"Story {story_id} does not depend on {depends_on_id}",
                    context=ErrorContext(operation="update_dependency_reason", prd_id=prd_id, story_id=story_id),
                )
            reasons = dict(story.dependency_reasons or {})
            if reason and reason.strip():
                reasons[depends_on_id] = reason.strip()
            else:
                reasons.pop(depends_on_id, None)
            story.dependency_reasons = reasons
            story.updated_at = datetime.utcnow()
            db.flush()
            return story.to_dict()

    @staticmethod
    def get_dependency_graph(prd_id: str) -> Dict[str, Any]:
        """Nodes, edges and structural warnings for a PRD's stories."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "get_dependency_graph")
            return build_dependency_graph([s.to_dict() for s in prd.stories], prd_id)

    @staticmethod
    def validate_dependencies(prd_id: str) -> Dict[str, Any]:
        """Check that the PRD's stories can be executed in their current sort order."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "validate_dependencies")
            result = validate_execution_order([s.to_dict() for s in prd.stories])
            result["prd_id"] = prd_id
            return result

    @staticmethod
    async def analyze_dependencies(
        prd_id: str,
        replace_auto_detected: bool = False,
        provider: Optional[CompletionProviderInterface] = None,
    ) -> Dict[str, Any]:
        """
        Detect dependencies between a PRD's stories with the AI and merge them into the graph.

        Existing edges and their reasons are kept unless ``replace_auto_detected``
        is set, in which case the detected edges replace the graph. A detected
        edge that would close a cycle is dropped. A detected reason never
        overwrites an existing one unless replacing. Every story whose edges
        or reasons change has its recommendation cleared, together with its
        old and new prerequisites when the edge list itself changed.

        Args:
            prd_id: PRD to analyze
            replace_auto_detected: Replace all edges instead of merging into them
            provider: Completion provider, the configured one when omitted

        Returns:
            Dictionary with prd_id, the detected dependencies, the ids of the
            stories that changed, and the resulting dependency graph

        Raises:
            NotFoundError: Unknown PRD
            InvalidRequestError: Fewer than two stories
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "analyze_dependencies")
            prd_data = prd.to_dict()
            stories = [s.to_dict() for s in prd.stories]
            memory = memory_context(db, prd.workspace_path)

        if len(stories) < 2:
            raise InvalidRequestError(
                "Need at least 2 stories to analyze dependencies",
                context=ErrorContext(operation="analyze_dependencies", prd_id=prd_id),
            )

        system_prompt, user_prompt = dependency_analysis_prompts(prd_data, stories, memory)
        payload = await request_json(resolve_provider(provider), system_prompt, user_prompt)
        detected = normalize_detected_dependencies(payload, [s["id"] for s in stories])
        detected_reasons = {(d.from_story_id, d.to_story_id): d.reason for d in detected if d.reason}

        with get_db() as db:
            prd = load_prd(db, prd_id, "analyze_dependencies")
            current = list(prd.stories)
            merged = merge_detected_edges(
                [s.to_dict() for s in current],
                [(d.from_story_id, d.to_story_id) for d in detected],
                keep_existing=not replace_auto_detected,
            )

            stale: Set[str] = set()
            changed = []
            for story in current:
                old_deps = list(story.depends_on or [])
                old_reasons = dict(story.dependency_reasons or {})
                new_deps = merged[story.id]

                reasons = dict(old_reasons)
                for dep_id in new_deps:
                    reason = detected_reasons.get((story.id, dep_id))
                    if reason and (replace_auto_detected or not reasons.get(dep_id)):
                        reasons[dep_id] = reason
                reasons = {k: v for k, v in reasons.items() if k in new_deps}

                edges_changed = set(new_deps) != set(old_deps)
                if not edges_changed and reasons == old_reasons:
                    continue
                story.depends_on = new_deps
                story.dependency_reasons = reasons
                story.updated_at = datetime.utcnow()
                changed.append(story.id)
                stale.add(story.id)
                if edges_changed:
                    stale |= affected_by_dependency_rewrite(story.id, old_deps, new_deps)

            clear_recommendations(db, stale)
            touch_prd(prd)
            db.flush()
            graph = build_dependency_graph([s.to_dict() for s in current], prd_id)

        logger.info(
            f"Dependency analysis for PRD {prd_id}: {len(detected)} detected, {len(changed)} stories changed"
        )
        return {
            "prd_id": prd_id,
            "dependencies": [d.to_dict() for d in detected],
            "changed_story_ids": changed,
            "graph": graph,
        }
