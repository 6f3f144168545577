"""Shared persistence helpers for the story workflow services."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy import func

from storywright.c1_prd_models import PRD, Story, WorkspaceMemory
from storywright.c1_story_enums import StoryPriority, StoryStatus
from storywright.c1_story_schemas import AcceptanceCriterion
from storywright.c2_story_graph import (
    affected_by_dependency_rewrite,
    affected_by_priority_change,
    would_create_cycle,
)
from storywright.c2_story_prompts import build_memory_context
from storywright.core.config import get_settings
from storywright.core.exceptions import ErrorContext, InvalidRequestError, NotFoundError
from storywright.interfaces import CompletionProviderInterface, get_completion_provider, parse_json_payload

logger = logging.getLogger(__name__)

PRIORITIES = tuple(p.value for p in StoryPriority)
STATUSES = tuple(s.value for s in StoryStatus)

# Plain columns a story update may set directly
STORY_SCALAR_FIELDS = (
    "title",
    "description",
    "status",
    "task_id",
    "agent_id",
    "conversation_id",
    "commit_sha",
    "attempts",
    "max_attempts",
    "external_status",
    "external_ref",
)


def load_prd(db, prd_id: str, operation: str = "") -> PRD:
    prd = db.query(PRD).filter_by(id=prd_id).first()
    if not prd:
        raise NotFoundError("PRD not found", context=ErrorContext(operation=operation, prd_id=prd_id))
    return prd


def load_story(db, prd_id: str, story_id: str, operation: str = "") -> Story:
    """Load a story that belongs to ``prd_id``."""
    story = db.query(Story).filter_by(id=story_id, prd_id=prd_id).first()
    if not story:
        raise NotFoundError(
            "Story not found",
            context=ErrorContext(operation=operation, prd_id=prd_id, story_id=story_id),
        )
    return story


def scope_stories(db, story: Story) -> List[Story]:
    """All stories sharing ``story``'s parent scope: its PRD, or its workspace when standalone."""
    if story.prd_id:
        query = db.query(Story).filter_by(prd_id=story.prd_id)
    else:
        query = db.query(Story).filter(Story.prd_id.is_(None), Story.workspace_path == story.workspace_path)
    return query.order_by(Story.sort_order.asc()).all()


def next_sort_order(db, prd_id: Optional[str] = None, workspace_path: Optional[str] = None) -> int:
    """Sort order for a story appended to a PRD, or to a workspace's standalone stories."""
    query = db.query(func.max(Story.sort_order))
    if prd_id:
        query = query.filter(Story.prd_id == prd_id)
    else:
        query = query.filter(Story.prd_id.is_(None), Story.workspace_path == workspace_path)
    current = query.scalar()
    return (current if current is not None else -1) + 1


def touch_prd(prd: Optional[PRD]):
    if prd is not None:
        prd.updated_at = datetime.utcnow()


def criteria_from_texts(texts: Iterable[Any]) -> List[Dict[str, Any]]:
    """Build fresh acceptance-criterion records (``passed=False``) from strings or criterion dicts."""
    criteria = []
    for entry in texts or []:
        if isinstance(entry, dict):
            description = entry.get("description")
            passed = bool(entry.get("passed", False))
            criterion_id = entry.get("id")
        else:
            description, passed, criterion_id = entry, False, None
        if not isinstance(description, str) or not description.strip():
            continue
        fields = {"description": description.strip(), "passed": passed}
        if criterion_id:
            fields["id"] = criterion_id
        criteria.append(AcceptanceCriterion(**fields).to_dict())
    return criteria


def require_priority(priority: Any) -> str:
    if priority not in PRIORITIES:
        raise InvalidRequestError("Invalid priority. Must be: critical, high, medium, or low")
    return priority


def require_status(status: Any) -> str:
    if status not in STATUSES:
        raise InvalidRequestError(f"Invalid status. Must be one of: {', '.join(STATUSES)}")
    return status


def clear_recommendations(db, story_ids: Iterable[str]) -> Set[str]:
    """Null the priority recommendation of each listed story; returns the ids actually cleared."""
    story_ids = set(story_ids)
    if not story_ids:
        return set()
    cleared = set()
    for story in db.query(Story).filter(Story.id.in_(story_ids)).all():
        if story.priority_recommendation is not None:
            story.priority_recommendation = None
            cleared.add(story.id)
    if cleared:
        logger.debug(f"Cleared priority recommendations on {sorted(cleared)}")
    return cleared


def check_dependencies(story_id: str, depends_on: Iterable[Any], scope: List[Story]) -> List[str]:
    """Validate a full replacement edge list for ``story_id`` within its scope.

    Raises:
        InvalidRequestError: Self edge, unknown target, or an edge that closes a cycle
    """
    if not isinstance(depends_on, (list, tuple)) or not all(isinstance(d, str) for d in depends_on):
        raise InvalidRequestError("depends_on must be a list of story ids")
    depends_on = list(dict.fromkeys(depends_on))
    known = {s.id for s in scope}
    records = [{"id": s.id, "depends_on": list(s.depends_on or [])} for s in scope if s.id != story_id]
    for dep in depends_on:
        if dep == story_id:
            raise InvalidRequestError("A story cannot depend on itself")
        if dep not in known:
            raise InvalidRequestError(f"Dependency target {dep} not found in the same PRD or workspace")
        if would_create_cycle(records, story_id, dep):
            raise InvalidRequestError(f"Adding dependency on {dep} would create a circular dependency")
    return depends_on


def apply_story_updates(db, story: Story, updates: Mapping[str, Any]) -> List[str]:
    """Apply a whitelisted partial update to a story, with recommendation invalidation.

    A ``depends_on`` rewrite clears the story itself and every old and new
    prerequisite; a priority change clears the story's graph neighbours but
    not the story. ``add_learning`` appends one learning.

    Returns:
        Names of the fields that changed
    """
    changed = []
    scope = scope_stories(db, story)

    for key in STORY_SCALAR_FIELDS:
        if key in updates and updates[key] is not None:
            value = updates[key]
            if key == "title" and not str(value).strip():
                raise InvalidRequestError("Story title cannot be empty")
            if key == "status":
                require_status(value)
            setattr(story, key, value)
            changed.append(key)

    if updates.get("acceptance_criteria") is not None:
        story.acceptance_criteria = criteria_from_texts(updates["acceptance_criteria"])
        changed.append("acceptance_criteria")

    if updates.get("learnings") is not None:
        story.learnings = [str(item) for item in updates["learnings"]]
        changed.append("learnings")
    if updates.get("add_learning"):
        story.learnings = list(story.learnings or []) + [str(updates["add_learning"])]
        changed.append("learnings")

    if updates.get("dependency_reasons") is not None:
        story.dependency_reasons = {
            k: v for k, v in dict(updates["dependency_reasons"]).items() if v
        }
        changed.append("dependency_reasons")

    if updates.get("depends_on") is not None:
        old_deps = list(story.depends_on or [])
        new_deps = check_dependencies(story.id, updates["depends_on"], scope)
        if set(new_deps) != set(old_deps):
            story.depends_on = new_deps
            reasons = dict(story.dependency_reasons or {})
            story.dependency_reasons = {k: v for k, v in reasons.items() if k in new_deps}
            clear_recommendations(db, affected_by_dependency_rewrite(story.id, old_deps, new_deps))
            changed.append("depends_on")

    if updates.get("priority") is not None:
        new_priority = require_priority(updates["priority"])
        if new_priority != story.priority:
            story.priority = new_priority
            records = [s.to_dict() for s in scope]
            clear_recommendations(db, affected_by_priority_change(story.id, records))
            changed.append("priority")

    if changed:
        story.updated_at = datetime.utcnow()
    return changed


def load_memory_entries(db, workspace_path: Optional[str]) -> List[Dict[str, Any]]:
    """Workspace memory usable as prompt context, filtered by the confidence floor."""
    if not workspace_path:
        return []
    workflow = get_settings().workflow
    rows = (
        db.query(WorkspaceMemory)
        .filter(
            WorkspaceMemory.workspace_path == workspace_path,
            WorkspaceMemory.confidence >= workflow.memory_confidence_floor,
        )
        .order_by(WorkspaceMemory.category.asc(), WorkspaceMemory.times_seen.desc())
        .limit(workflow.memory_entry_limit)
        .all()
    )
    return [row.to_dict() for row in rows]


def memory_context(db, workspace_path: Optional[str]) -> str:
    return build_memory_context(load_memory_entries(db, workspace_path))


def resolve_provider(provider: Optional[CompletionProviderInterface]) -> CompletionProviderInterface:
    return provider if provider is not None else get_completion_provider()


async def request_json(
    provider: CompletionProviderInterface,
    system_prompt: str,
    user_prompt: str,
    max_tokens: Optional[int] = None,
) -> Any:
    """One completion round trip, parsed as JSON."""
    text = await provider.complete(system_prompt, user_prompt, max_tokens=max_tokens)
    return parse_json_payload(text)
