"""Service layer for PRDs and the stories they own."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from storywright.c1_database_session import get_db
from storywright.c1_prd_models import PRD, Story
from storywright.c1_story_schemas import QualityCheck, new_id
from storywright.c2_ralph_format import build_ralph_document, parse_ralph_document
from storywright.c2_story_graph import affected_by_priority_change
from storywright.c2_story_service.story_helpers import (
    apply_story_updates,
    check_dependencies,
    clear_recommendations,
    criteria_from_texts,
    load_prd,
    load_story,
    next_sort_order,
    require_priority,
    require_status,
    touch_prd,
)
from storywright.core.exceptions import ErrorContext, InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

PRD_EDITABLE_FIELDS = ("name", "description", "branch_name", "quality_checks", "external_ref")


def _quality_checks(raw: Optional[List[Any]]) -> List[Dict[str, Any]]:
    try:
        return [QualityCheck(**check).to_dict() if isinstance(check, dict) else check.to_dict() for check in raw or []]
    except (TypeError, ValueError) as e:
        raise InvalidRequestError(f"Invalid quality check: {e}", cause=e)


def build_story(
    prd: Optional[PRD],
    workspace_path: Optional[str],
    title: str,
    description: str = "",
    acceptance_criteria: Optional[List[Any]] = None,
    priority: str = "medium",
    status: str = "pending",
    sort_order: int = 0,
) -> Story:
    """Build a new, unsaved story row after validating its caller-supplied fields."""
    if not title or not str(title).strip():
        raise InvalidRequestError("Story title is required")
    return Story(
        id=new_id("story"),
        prd_id=prd.id if prd is not None else None,
        workspace_path=prd.workspace_path if prd is not None else workspace_path,
        title=str(title).strip(),
        description=description or "",
        acceptance_criteria=criteria_from_texts(acceptance_criteria or []),
        priority=require_priority(priority or "medium"),
        status=require_status(status or "pending"),
        depends_on=[],
        dependency_reasons={},
        learnings=[],
        attempts=0,
        max_attempts=3,
        sort_order=sort_order,
    )


class PRDService:
    """Service for PRD and PRD-story operations."""

    @staticmethod
    def list_prds(workspace_path: Optional[str] = None) -> List[Dict[str, Any]]:
        """List PRDs, newest first, each with its story count."""
        with get_db() as db:
            query = db.query(PRD)
            if workspace_path:
                query = query.filter_by(workspace_path=workspace_path)
            prds = query.order_by(PRD.updated_at.desc()).all()
            result = []
            for prd in prds:
                data = prd.to_dict()
                data["story_count"] = len(prd.stories)
                data["completed_count"] = sum(1 for s in prd.stories if s.status == "completed")
                result.append(data)
            return result

    @staticmethod
    def get_prd(prd_id: str) -> Dict[str, Any]:
        """Get a PRD with its stories in sort order."""
        with get_db() as db:
            return load_prd(db, prd_id, "get_prd").to_dict(include_stories=True)

    @staticmethod
    def create_prd(
        workspace_path: str,
        name: str,
        description: str = "",
        branch_name: Optional[str] = None,
        quality_checks: Optional[List[Any]] = None,
        stories: Optional[List[Mapping[str, Any]]] = None,
        external_ref: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a PRD, optionally with initial stories.

        Args:
            workspace_path: Workspace that owns the PRD
            name: PRD name
            description: Free-form product description
            branch_name: Git branch the PRD is executed on
            quality_checks: Quality gates as dicts
            stories: Initial stories (title, description, acceptance_criteria, priority)
            external_ref: Reference to an external tracker

        Returns:
            The created PRD with its stories

        Raises:
            InvalidRequestError: Missing workspace/name or invalid story fields
        """
        if not workspace_path or not name or not name.strip():
            raise InvalidRequestError("workspace_path and name are required")

        with get_db() as db:
            prd = PRD(
                id=new_id("prd"),
                workspace_path=workspace_path,
                name=name.strip(),
                description=description or "",
                branch_name=branch_name,
                quality_checks=_quality_checks(quality_checks),
                external_ref=external_ref,
            )
            db.add(prd)
            for position, story_fields in enumerate(stories or []):
                prd.stories.append(build_story(
                    prd,
                    None,
                    story_fields.get("title"),
                    story_fields.get("description", ""),
                    story_fields.get("acceptance_criteria"),
                    story_fields.get("priority") or "medium",
                    story_fields.get("status") or "pending",
                    sort_order=position,
                ))
            db.flush()
            logger.info(f"Created PRD {prd.id} ({prd.name}) with {len(stories or [])} stories")
            return prd.to_dict(include_stories=True)

    @staticmethod
    def update_prd(prd_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Update PRD metadata."""
        changes = {k: v for k, v in updates.items() if k in PRD_EDITABLE_FIELDS and v is not None}
        if not changes:
            raise InvalidRequestError("No fields to update")
        if "name" in changes and not str(changes["name"]).strip():
            raise InvalidRequestError("PRD name cannot be empty")
        if "quality_checks" in changes:
            changes["quality_checks"] = _quality_checks(changes["quality_checks"])

        with get_db() as db:
            prd = load_prd(db, prd_id, "update_prd")
            for key, value in changes.items():
                setattr(prd, key, value)
            touch_prd(prd)
            db.flush()
            return prd.to_dict()

    @staticmethod
    def delete_prd(prd_id: str) -> Dict[str, Any]:
        """Delete a PRD; its stories go with it."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "delete_prd")
            story_count = len(prd.stories)
            db.delete(prd)
            logger.info(f"Deleted PRD {prd_id} and {story_count} stories")
            return {"deleted": prd_id, "stories_deleted": story_count}

    @staticmethod
    def add_story(
        prd_id: str,
        title: str,
        description: str = "",
        acceptance_criteria: Optional[List[Any]] = None,
        priority: str = "medium",
        depends_on: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Append a story to a PRD."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "add_story")
            story = build_story(
                prd, None, title, description, acceptance_criteria, priority,
                sort_order=next_sort_order(db, prd_id=prd_id),
            )
            if depends_on:
                story.depends_on = check_dependencies(story.id, depends_on, list(prd.stories))
                clear_recommendations(db, story.depends_on)
            db.add(story)
            touch_prd(prd)
            db.flush()
            logger.info(f"Added story {story.id} to PRD {prd_id}")
            return story.to_dict()

    @staticmethod
    def update_story(prd_id: str, story_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Partially update a PRD story.

        Changing ``depends_on`` or ``priority`` clears the priority
        recommendations the change makes stale.
        """
        with get_db() as db:
            story = load_story(db, prd_id, story_id, "update_story")
            changed = apply_story_updates(db, story, updates)
            if not changed:
                raise InvalidRequestError("No fields to update")
            touch_prd(story.prd)
            db.flush()
            logger.debug(f"Updated story {story_id}: {', '.join(changed)}")
            return story.to_dict()

    @staticmethod
    def delete_story(prd_id: str, story_id: str) -> Dict[str, Any]:
        """Delete a story and strip it from the edge lists of stories that depended on it."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "delete_story")
            story = load_story(db, prd_id, story_id, "delete_story")
            records = [s.to_dict() for s in prd.stories]
            stale = affected_by_priority_change(story_id, records)
            for other in prd.stories:
                if other.id != story_id and story_id in (other.depends_on or []):
                    other.depends_on = [d for d in other.depends_on if d != story_id]
                    other.dependency_reasons = {
                        k: v for k, v in (other.dependency_reasons or {}).items() if k != story_id
                    }
            clear_recommendations(db, stale)
            db.delete(story)
            touch_prd(prd)
            logger.info(f"Deleted story {story_id} from PRD {prd_id}")
            return {"deleted": story_id}

    @staticmethod
    def reorder_stories(prd_id: str, story_ids: List[str]) -> Dict[str, Any]:
        """
        Reorder a PRD's stories.

        Listed stories take positions 0..n-1; stories left out keep their
        relative order after them.
        """
        with get_db() as db:
            prd = load_prd(db, prd_id, "reorder_stories")
            by_id = {s.id: s for s in prd.stories}
            unknown = [sid for sid in story_ids if sid not in by_id]
            if unknown:
                raise InvalidRequestError(
                    f"Stories not in PRD: {', '.join(unknown)}",
                    context=ErrorContext(operation="reorder_stories", prd_id=prd_id),
                )
            ordered = list(dict.fromkeys(story_ids))
            ordered += [s.id for s in sorted(prd.stories, key=lambda s: s.sort_order) if s.id not in ordered]
            for position, sid in enumerate(ordered):
                by_id[sid].sort_order = position
            touch_prd(prd)
            return {"prd_id": prd_id, "order": ordered}

    @staticmethod
    def import_ralph(workspace_path: str, document: Union[str, Mapping[str, Any]]) -> Dict[str, Any]:
        """Create a PRD from a Ralph-format document."""
        parsed = parse_ralph_document(document)
        result = PRDService.create_prd(
            workspace_path=workspace_path,
            name=parsed["name"],
            description=parsed["description"],
            branch_name=parsed["branch_name"],
            stories=parsed["stories"],
        )
        logger.info(f"Imported Ralph PRD {result['id']} with {len(parsed['stories'])} stories")
        return result

    @staticmethod
    def export_ralph(prd_id: str) -> Dict[str, Any]:
        """Render a PRD and its stories as a Ralph-format document."""
        with get_db() as db:
            prd = load_prd(db, prd_id, "export_ralph")
            stories = [s.to_dict() for s in prd.stories]
            return build_ralph_document(prd.to_dict(), stories)


class StandaloneStoryService:
    """Service for stories that live directly in a workspace, outside any PRD."""

    @staticmethod
    def _load(db, story_id: str, operation: str) -> Story:
        story = db.query(Story).filter(Story.id == story_id, Story.prd_id.is_(None)).first()
        if not story:
            raise NotFoundError("Story not found", context=ErrorContext(operation=operation, story_id=story_id))
        return story

    @staticmethod
    def list_stories(workspace_path: str) -> List[Dict[str, Any]]:
        with get_db() as db:
            stories = (
                db.query(Story)
                .filter(Story.prd_id.is_(None), Story.workspace_path == workspace_path)
                .order_by(Story.sort_order.asc())
                .all()
            )
            return [s.to_dict() for s in stories]

    @staticmethod
    def create_story(
        workspace_path: str,
        title: str,
        description: str = "",
        acceptance_criteria: Optional[List[Any]] = None,
        priority: str = "medium",
    ) -> Dict[str, Any]:
        if not workspace_path:
            raise InvalidRequestError("workspace_path is required")
        with get_db() as db:
            story = build_story(
                None, workspace_path, title, description, acceptance_criteria, priority,
                sort_order=next_sort_order(db, workspace_path=workspace_path),
            )
            db.add(story)
            db.flush()
            logger.info(f"Created standalone story {story.id} in {workspace_path}")
            return story.to_dict()

    @staticmethod
    def update_story(story_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
        with get_db() as db:
            story = StandaloneStoryService._load(db, story_id, "update_story")
            if not apply_story_updates(db, story, updates):
                raise InvalidRequestError("No fields to update")
            db.flush()
            return story.to_dict()

    @staticmethod
    def delete_story(story_id: str) -> Dict[str, Any]:
        with get_db() as db:
            story = StandaloneStoryService._load(db, story_id, "delete_story")
            siblings = (
                db.query(Story)
                .filter(Story.prd_id.is_(None), Story.workspace_path == story.workspace_path)
                .all()
            )
            for other in siblings:
                if other.id != story_id and story_id in (other.depends_on or []):
                    other.depends_on = [d for d in other.depends_on if d != story_id]
                    other.dependency_reasons = {
                        k: v for k, v in (other.dependency_reasons or {}).items() if k != story_id
                    }
                    other.updated_at = datetime.utcnow()
            clear_recommendations(db, affected_by_priority_change(story_id, [s.to_dict() for s in siblings]))
            db.delete(story)
            return {"deleted": story_id}
