"""Ralph-format PRD interchange.

Ralph documents look like::

    {"project": ..., "branchName": ..., "description": ...,
     "userStories": [{"id": "US-001", "title": ..., "description": ...,
                      "acceptanceCriteria": [...], "priority": 1, "passes": false}]}

Priority is numeric (1 = critical ... 4 = low) and status is reduced to the
boolean ``passes``. Both directions are pure mappings.
"""

import json
import re
from typing import Any, Dict, List, Mapping, Sequence, Union

from storywright.c1_story_enums import StoryPriority, StoryStatus, coerce_enum
from storywright.core.exceptions import InvalidRequestError

RALPH_PRIORITY = {
    StoryPriority.CRITICAL.value: 1,
    StoryPriority.HIGH.value: 2,
    StoryPriority.MEDIUM.value: 3,
    StoryPriority.LOW.value: 4,
}
DEFAULT_RALPH_PRIORITY = 3
DEFAULT_PROJECT_NAME = "Imported PRD"


def priority_from_ralph(value: Any) -> str:
    """Map a Ralph priority to a story priority (<=1 critical, 2 high, 3 medium, else low)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 1:
            return StoryPriority.CRITICAL.value
        if value == 2:
            return StoryPriority.HIGH.value
        if value == 3:
            return StoryPriority.MEDIUM.value
        return StoryPriority.LOW.value
    return coerce_enum(StoryPriority, value, StoryPriority.MEDIUM).value


def priority_to_ralph(priority: str) -> int:
    return RALPH_PRIORITY.get(priority, DEFAULT_RALPH_PRIORITY)


def ralph_story_id(position: int) -> str:
    """External id for the story at 0-based ``position`` in sort order."""
    return f"US-{position + 1:03d}"


def default_branch_name(name: str) -> str:
    return "ralph/" + re.sub(r"\s+", "-", (name or "").lower())


def _criteria_texts(raw: Any) -> List[str]:
    texts = []
    for entry in raw or []:
        text = entry.get("description") if isinstance(entry, dict) else entry
        if isinstance(text, str) and text.strip():
            texts.append(text)
    return texts


def parse_ralph_document(document: Union[str, Mapping[str, Any]]) -> Dict[str, Any]:
    """Convert a Ralph document (object or JSON text) into PRD and story fields.

    Returns:
        Dictionary with name, description, branch_name and stories, each story
        holding title, description, acceptance_criteria (strings), priority, status

    Raises:
        InvalidRequestError: Unparseable JSON, not an object, or a story without a title
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise InvalidRequestError("prd_json is not valid JSON", cause=e)
    if not isinstance(document, dict):
        raise InvalidRequestError("prd_json must be a JSON object")

    raw_stories = document.get("userStories") or document.get("stories") or []
    if not isinstance(raw_stories, list):
        raise InvalidRequestError("userStories must be a list")

    stories = []
    for position, raw in enumerate(raw_stories):
        if not isinstance(raw, dict) or not isinstance(raw.get("title"), str) or not raw["title"].strip():
            raise InvalidRequestError(f"Story {position + 1} has no title")
        stories.append({
            "title": raw["title"],
            "description": raw.get("description") or "",
            "acceptance_criteria": _criteria_texts(raw.get("acceptanceCriteria")),
            "priority": priority_from_ralph(raw.get("priority")),
            "status": StoryStatus.COMPLETED.value if raw.get("passes") is True else StoryStatus.PENDING.value,
        })

    return {
        "name": document.get("project") or document.get("name") or DEFAULT_PROJECT_NAME,
        "description": document.get("description") or "",
        "branch_name": document.get("branchName"),
        "stories": stories,
    }


def build_ralph_document(prd: Mapping[str, Any], stories: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Render a PRD and its stories (already in sort order) as a Ralph document."""
    return {
        "project": prd["name"],
        "branchName": prd.get("branch_name") or default_branch_name(prd["name"]),
        "description": prd.get("description") or "",
        "userStories": [
            {
                "id": ralph_story_id(position),
                "title": story["title"],
                "description": story.get("description") or "",
                "acceptanceCriteria": _criteria_texts(story.get("acceptance_criteria")),
                "priority": priority_to_ralph(story.get("priority")),
                "passes": story.get("status") == StoryStatus.COMPLETED.value,
                "notes": "",
            }
            for position, story in enumerate(stories)
        ],
    }
