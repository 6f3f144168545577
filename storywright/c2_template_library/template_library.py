"""Story template library: built-in catalog, substitution and CRUD."""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from storywright.c1_database_session import get_db
from storywright.c1_prd_models import StoryTemplate
from storywright.c1_story_enums import StoryPriority, TemplateCategory
from storywright.c1_story_schemas import new_id
from storywright.core.exceptions import ErrorContext, InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Stable ids make seeding idempotent: the primary key rejects a second copy.
BUILT_IN_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "builtin-feature",
        "name": "Feature",
        "description": "A new user-facing feature or capability",
        "category": "feature",
        "title_template": "As a {{user_role}}, I want to {{action}} so that {{benefit}}",
        "description_template": (
            "Implement a new feature that allows {{user_role}} to {{action}}.\n\n"
            "## Context\nDescribe why this feature is needed and how it fits into the larger product.\n\n"
            "## Scope\n- What is included in this feature\n- What is explicitly out of scope\n\n"
            "## Technical Notes\nAny implementation guidance, API changes, or architectural considerations."
        ),
        "acceptance_criteria_templates": [
            "User can {{primary_action}} from the {{location}} page",
            "System validates {{input}} before processing",
            "Success/error feedback is displayed to the user",
            "Feature is accessible via keyboard navigation",
            "Unit tests cover the core logic with >80% coverage",
        ],
        "priority": "medium",
        "tags": ["feature", "user-facing"],
    },
    {
        "id": "builtin-bug",
        "name": "Bug Fix",
        "description": "Fix a defect or unexpected behavior in existing functionality",
        "category": "bug",
        "title_template": "Fix: {{brief_description_of_bug}}",
        "description_template": (
            "## Bug Description\nDescribe the incorrect behavior that users are experiencing.\n\n"
            "## Steps to Reproduce\n1. Go to {{location}}\n2. Perform {{action}}\n3. Observe {{incorrect_result}}\n\n"
            "## Expected Behavior\nDescribe what should happen instead.\n\n"
            "## Actual Behavior\nDescribe what currently happens.\n\n"
            "## Environment\n- Browser/OS: \n- Version: \n- User role: "
        ),
        "acceptance_criteria_templates": [
            "The reported bug no longer occurs when following the reproduction steps",
            "Existing related functionality is not broken (regression check)",
            "A regression test is added to prevent this bug from recurring",
            "The fix works across supported browsers/environments",
        ],
        "priority": "high",
        "tags": ["bug", "fix", "defect"],
    },
    {
        "id": "builtin-tech-debt",
        "name": "Technical Debt",
        "description": "Refactoring, cleanup, or infrastructure improvement",
        "category": "tech_debt",
        "title_template": "Tech Debt: {{area}} - {{improvement}}",
        "description_template": (
            "## Current State\nDescribe the current technical issue or suboptimal implementation.\n\n"
            "## Problem\nExplain why this technical debt is problematic "
            "(performance, maintainability, scalability, etc.).\n\n"
            "## Proposed Solution\nDescribe the refactoring or improvement to be made.\n\n"
            "## Impact\n- Code quality: \n- Performance: \n- Developer experience: \n\n"
            "## Migration Plan\nIf applicable, describe how to migrate existing data or code."
        ),
        "acceptance_criteria_templates": [
            "Code is refactored according to the proposed solution",
            "All existing tests continue to pass",
            "No user-facing behavior changes (unless explicitly intended)",
            "Code review confirms improved readability/maintainability",
            "Performance benchmarks show no regression (or improvement if applicable)",
        ],
        "priority": "low",
        "tags": ["tech-debt", "refactor", "infrastructure"],
    },
    {
        "id": "builtin-spike",
        "name": "Research Spike",
        "description": "Time-boxed investigation to reduce uncertainty or evaluate options",
        "category": "spike",
        "title_template": "Spike: Investigate {{topic_or_question}}",
        "description_template": (
            "## Research Question\nWhat specific question(s) need to be answered?\n\n"
            "## Background\nWhat context led to this research need? What do we already know?\n\n"
            "## Options to Evaluate\n1. {{option_1}}\n2. {{option_2}}\n3. {{option_3}}\n\n"
            "## Time Box\nThis spike is limited to {{duration}} of effort.\n\n"
            "## Success Criteria\nWhat deliverables are expected from this research?"
        ),
        "acceptance_criteria_templates": [
            "A written summary document with findings is produced",
            "At least {{number}} options are evaluated with pros/cons",
            "A recommendation is made with clear rationale",
            "Identified risks and unknowns are documented",
            "Follow-up stories are created based on findings",
        ],
        "priority": "medium",
        "tags": ["spike", "research", "investigation"],
    },
]

EDITABLE_FIELDS = (
    "name",
    "description",
    "category",
    "title_template",
    "description_template",
    "acceptance_criteria_templates",
    "priority",
    "tags",
)


def apply_template_variables(text: str, variables: Optional[Mapping[str, str]]) -> str:
    """Replace each ``{{key}}`` with ``variables[key]``; unknown keys stay verbatim."""
    variables = variables or {}

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    return PLACEHOLDER_PATTERN.sub(substitute, text or "")


def instantiate_template(template: Mapping[str, Any], variables: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    """Produce story fields from a template dict.

    Returns:
        Dictionary with title, description, acceptance_criteria (strings) and priority
    """
    return {
        "title": apply_template_variables(template["title_template"], variables),
        "description": apply_template_variables(template["description_template"], variables),
        "acceptance_criteria": [
            apply_template_variables(text, variables)
            for text in template.get("acceptance_criteria_templates") or []
        ],
        "priority": template.get("priority") or StoryPriority.MEDIUM.value,
    }


def _validated(field_name: str, value: Any) -> Any:
    if field_name == "category" and value not in {c.value for c in TemplateCategory}:
        raise InvalidRequestError(f"Invalid template category: {value}")
    if field_name == "priority" and value not in {p.value for p in StoryPriority}:
        raise InvalidRequestError(f"Invalid priority: {value}")
    if field_name in ("acceptance_criteria_templates", "tags"):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise InvalidRequestError(f"{field_name} must be a list of strings")
        return list(value)
    return value


class TemplateService:
    """Service for the story template catalog."""

    @staticmethod
    def ensure_built_in_templates(db) -> int:
        """Insert any missing built-in template into the open session.

        Must run before other changes are made in the session, since a
        concurrent seed is resolved by rolling the session back.

        Returns:
            Number of templates inserted
        """
        existing = {
            row[0]
            for row in db.query(StoryTemplate.id).filter(StoryTemplate.is_built_in.is_(True)).all()
        }
        missing = [template for template in BUILT_IN_TEMPLATES if template["id"] not in existing]
        if not missing:
            return 0

        for template in missing:
            db.add(StoryTemplate(is_built_in=True, **template))
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.debug("Built-in templates were seeded concurrently")
            return 0
        logger.info(f"Seeded {len(missing)} built-in story templates")
        return len(missing)

    @staticmethod
    def list_templates(category: Optional[str] = None) -> List[Dict[str, Any]]:
        """List templates, built-ins first, then by name."""
        with get_db() as db:
            TemplateService.ensure_built_in_templates(db)
            query = db.query(StoryTemplate)
            if category:
                query = query.filter_by(category=category)
            templates = query.order_by(StoryTemplate.is_built_in.desc(), StoryTemplate.name.asc()).all()
            return [t.to_dict() for t in templates]

    @staticmethod
    def get_template(template_id: str) -> Dict[str, Any]:
        with get_db() as db:
            TemplateService.ensure_built_in_templates(db)
            return TemplateService.load_template(db, template_id).to_dict()

    @staticmethod
    def load_template(db, template_id: str) -> StoryTemplate:
        template = db.query(StoryTemplate).filter_by(id=template_id).first()
        if not template:
            raise NotFoundError(
                "Template not found",
                context=ErrorContext(operation="load_template", extra={"template_id": template_id}),
            )
        return template

    @staticmethod
    def create_template(
        name: str,
        category: str,
        description: str = "",
        title_template: str = "",
        description_template: str = "",
        acceptance_criteria_templates: Optional[List[str]] = None,
        priority: str = "medium",
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Create a custom template.

        Raises:
            InvalidRequestError: Missing name/category or invalid enum values
        """
        if not name or not name.strip() or not category:
            raise InvalidRequestError("Name and category are required")

        fields = {
            "name": name.strip(),
            "category": _validated("category", category),
            "description": description or "",
            "title_template": title_template or "",
            "description_template": description_template or "",
            "acceptance_criteria_templates": _validated(
                "acceptance_criteria_templates", acceptance_criteria_templates or []
            ),
            "priority": _validated("priority", priority),
            "tags": _validated("tags", tags or []),
        }
        with get_db() as db:
            template = StoryTemplate(id=new_id("template"), is_built_in=False, **fields)
            db.add(template)
            db.flush()
            logger.info(f"Created story template {template.id} ({template.name})")
            return template.to_dict()

    @staticmethod
    def update_template(template_id: str, updates: Mapping[str, Any]) -> Dict[str, Any]:
        """Update editable fields of a template."""
        changes = {k: _validated(k, v) for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None}
        if not changes:
            raise InvalidRequestError("No fields to update")
        if "name" in changes and not str(changes["name"]).strip():
            raise InvalidRequestError("Template name cannot be empty")

        with get_db() as db:
            TemplateService.ensure_built_in_templates(db)
            template = TemplateService.load_template(db, template_id)
            for key, value in changes.items():
                setattr(template, key, value)
            template.updated_at = datetime.utcnow()
            db.flush()
            return template.to_dict()

    @staticmethod
    def delete_template(template_id: str) -> Dict[str, Any]:
        """Delete a custom template.

        Raises:
            InvalidRequestError: The template is built in
        """
        with get_db() as db:
            TemplateService.ensure_built_in_templates(db)
            template = TemplateService.load_template(db, template_id)
            if template.is_built_in:
                raise InvalidRequestError(
                    "Cannot delete built-in templates",
                    context=ErrorContext(operation="delete_template", extra={"template_id": template_id}),
                )
            db.delete(template)
            logger.info(f"Deleted story template {template_id}")
            return {"deleted": template_id}
